import random
from collections import Counter

import pytest

from packvault import models, prize_pool
from packvault.errors import (
    MalformedPullRates,
    NoCardsInPrizePool,
    NoCardsInTierError,
    NoPullRatesConfigured,
)
from packvault.selector import CatalogPool, PrizePool, draw_pack, pick_card, pick_tier

from conftest import FixedRandom


def _table(**shares):
    return [models.PullRate(pack_type="test", card_tier=t, probability=p) for t, p in shares.items()]


def test_pick_tier_walks_cumulative_shares():
    table = _table(D=90, C=10)

    assert pick_tier(table, FixedRandom(0.05)) == "D"
    assert pick_tier(table, FixedRandom(0.95)) == "C"


def test_pick_tier_falls_back_to_last_row():
    table = _table(C=50, B=49.995)
    assert pick_tier(table, FixedRandom(0.99999)) == "B"


def test_pick_tier_without_rates():
    with pytest.raises(NoPullRatesConfigured):
        pick_tier([], FixedRandom(0.5))


def test_pick_tier_refuses_malformed_table():
    with pytest.raises(MalformedPullRates):
        pick_tier(_table(C=60, B=30), FixedRandom(0.5))


def test_pick_tier_matches_configured_shares():
    table = _table(D=70, C=20, B=8, A=2)
    rng = random.Random(1234)
    draws = 100_000

    counts = Counter(pick_tier(table, rng) for _ in range(draws))

    for rate in table:
        observed = counts[rate.card_tier] / draws * 100
        assert abs(observed - rate.probability) < 0.5, rate.card_tier


def test_pick_card_uniform_index():
    cards = ["a", "b", "c", "d"]
    assert pick_card(cards, FixedRandom(0.0)) == "a"
    assert pick_card(cards, FixedRandom(0.6)) == "c"
    assert pick_card(cards, FixedRandom(0.999)) == "d"


def test_pick_card_empty_tier():
    with pytest.raises(NoCardsInTierError):
        pick_card([], FixedRandom(0.5))


def test_catalog_draw_puts_hit_last(db, catalog):
    commons, hits = catalog
    table = _table(C=70, B=25, A=4, S=1)

    drawn = draw_pack(CatalogPool(db), FixedRandom(0.5), 8, rates=table)

    assert [d.position for d in drawn] == list(range(9))
    assert all(d.card.tier == "D" and not d.is_hit for d in drawn[:8])
    assert drawn[8].is_hit
    assert drawn[8].card.id == hits["C"].id


def test_catalog_draw_skips_inactive_cards(db, make_card):
    make_card("Retired", "D", is_active=False)
    with pytest.raises(NoCardsInTierError):
        draw_pack(CatalogPool(db), FixedRandom(0.0), 1, rates=_table(D=100))


def test_catalog_draw_with_empty_hit_tier(db, make_card):
    make_card("Common", "D")
    with pytest.raises(NoCardsInTierError):
        draw_pack(CatalogPool(db), FixedRandom(0.5), 2, rates=_table(SSS=100))


def test_prize_pool_draw_consumes_stock(db, make_card, make_pack):
    common = make_card("Common", "D")
    hit = make_card("Hit", "A")
    pack = make_pack(kind="mystery", prizes={common: 10, hit: 1})

    drawn = draw_pack(PrizePool(db, pack.id), FixedRandom(0.3), 7)
    db.commit()

    assert [d.card.id for d in drawn] == [common.id] * 7 + [hit.id]
    assert prize_pool.total(db, pack.id) == 3


def test_prize_pool_without_hits_draws_extra_common(db, make_card, make_pack):
    common = make_card("Common", "D")
    pack = make_pack(kind="mystery", prizes={common: 20})

    drawn = draw_pack(PrizePool(db, pack.id), FixedRandom(0.3), 7)

    assert len(drawn) == 8
    assert not any(d.is_hit for d in drawn)
    assert all(d.card.tier == "D" for d in drawn)


def test_prize_pool_runs_out_of_commons(db, make_card, make_pack):
    common = make_card("Common", "D")
    pack = make_pack(kind="mystery", prizes={common: 3})

    with pytest.raises(NoCardsInPrizePool):
        draw_pack(PrizePool(db, pack.id), FixedRandom(0.3), 7)
