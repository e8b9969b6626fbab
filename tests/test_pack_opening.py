from decimal import Decimal

import pytest

from packvault import ledger, models, pack_opening, prize_pool
from packvault.errors import (
    InsufficientCredits,
    NoCardsInTierError,
    PackNotFoundOrAlreadyOpened,
    PackSoldOut,
)

from conftest import FixedRandom


def _holdings(db, user):
    return {
        h.card_id: h.quantity
        for h in db.query(models.UserCard).filter(models.UserCard.user_id == user.id).all()
    }


def test_regular_pack_forced_common_hit(db, make_user, make_card, make_pack, give_pack, rates):
    user = make_user()
    common = make_card("Common", "D")
    make_card("Rare", "C")
    rates("custom", {"D": 90, "C": 10})
    pack = make_pack(type="custom", kind="regular")
    user_pack = give_pack(user, pack)

    result = pack_opening.open_pack(db, user_pack.id, user.id, rng=FixedRandom(0.05))

    assert result.kind == "regular"
    assert result.pack_type == "custom"
    assert len(result.pack_cards) == 9
    assert result.hit_card_position == 8
    assert result.pack_cards[8].is_hit
    assert result.pack_cards[8].tier == "D"
    assert _holdings(db, user) == {common.id: 9}
    assert db.query(models.GlobalFeed).count() == 0


def test_regular_pack_forced_rare_hit(db, make_user, make_card, make_pack, give_pack, rates):
    user = make_user()
    common = make_card("Common", "D")
    rare = make_card("Rare", "C", credits="4.00")
    rates("custom", {"D": 90, "C": 10})
    pack = make_pack(type="custom", kind="regular")
    user_pack = give_pack(user, pack)

    result = pack_opening.open_pack(db, user_pack.id, user.id, rng=FixedRandom(0.95))

    assert result.pack_cards[8].tier == "C"
    assert result.pack_cards[8].market_value == Decimal("4.00")
    assert all(c.tier == "D" for c in result.pack_cards[:8])
    assert _holdings(db, user) == {common.id: 8, rare.id: 1}

    feed = db.query(models.GlobalFeed).one()
    assert (feed.card_id, feed.tier, feed.game_type) == (rare.id, "C", "pack")

    db.refresh(user_pack)
    assert user_pack.is_opened
    assert user_pack.opened_at is not None


def test_pack_opens_at_most_once(db, make_user, catalog, make_pack, give_pack, rates):
    user = make_user()
    rates("pokeball", {"C": 100})
    user_pack = give_pack(user, make_pack())

    pack_opening.open_pack(db, user_pack.id, user.id, rng=FixedRandom(0.1))
    with pytest.raises(PackNotFoundOrAlreadyOpened):
        pack_opening.open_pack(db, user_pack.id, user.id, rng=FixedRandom(0.1))

    assert sum(_holdings(db, user).values()) == 9


def test_pack_of_another_user_is_not_found(db, make_user, catalog, make_pack, give_pack, rates):
    owner = make_user("owner")
    thief = make_user("thief")
    rates("pokeball", {"C": 100})
    user_pack = give_pack(owner, make_pack())

    with pytest.raises(PackNotFoundOrAlreadyOpened):
        pack_opening.open_pack(db, user_pack.id, thief.id)


def test_failed_opening_changes_nothing(db, make_user, make_card, make_pack, give_pack, rates):
    user = make_user()
    make_card("Common", "D")
    rates("pokeball", {"SSS": 100})
    user_pack = give_pack(user, make_pack())

    with pytest.raises(NoCardsInTierError):
        pack_opening.open_pack(db, user_pack.id, user.id, rng=FixedRandom(0.5))

    db.refresh(user_pack)
    assert not user_pack.is_opened
    assert _holdings(db, user) == {}
    assert db.query(models.ActivityLog).count() == 0


def test_mystery_pack_draws_from_prize_pool(db, make_user, make_card, make_pack, give_pack):
    user = make_user()
    common = make_card("Common", "D")
    hit = make_card("Hit", "S", credits="25.00")
    pack = make_pack(type="mystery-ultra", kind="mystery", prizes={common: 20, hit: 2})
    user_pack = give_pack(user, pack)
    before = prize_pool.total(db, pack.id)

    result = pack_opening.open_pack(db, user_pack.id, user.id, rng=FixedRandom(0.2))

    assert result.kind == "mystery"
    assert len(result.pack_cards) == 8
    assert result.hit_card_position == 7
    assert result.pack_cards[7].id == hit.id
    assert prize_pool.total(db, pack.id) == before - 8
    assert _holdings(db, user) == {common.id: 7, hit.id: 1}
    holding = db.query(models.UserCard).filter(models.UserCard.card_id == hit.id).one()
    assert holding.source_pack_id == pack.id
    assert holding.pull_value == Decimal("25.00")


def test_mystery_pack_with_empty_hit_pool(db, make_user, make_card, make_pack, give_pack):
    user = make_user()
    common = make_card("Common", "D")
    pack = make_pack(kind="mystery", prizes={common: 20})
    user_pack = give_pack(user, pack)

    result = pack_opening.open_pack(db, user_pack.id, user.id, rng=FixedRandom(0.2))

    assert len(result.pack_cards) == 8
    assert all(c.tier == "D" for c in result.pack_cards)
    assert not any(c.is_hit for c in result.pack_cards)
    assert prize_pool.total(db, pack.id) == 12


def test_classic_pack_charges_and_opens(db, make_user, make_card, make_pack):
    user = make_user(credits="30.00")
    common = make_card("Common", "D")
    hit = make_card("Hit", "B")
    pack = make_pack(type="classic-1", kind="classic", price="12.00", total_packs=2,
                     prizes={common: 14, hit: 2})

    result = pack_opening.purchase_and_open_classic(db, pack.id, user.id, rng=FixedRandom(0.0))

    assert result.kind == "classic"
    assert result.credits_spent == Decimal("12.00")
    assert len(result.pack_cards) == 8
    assert ledger.balance(db, user.id) == Decimal("18.00")
    txn = db.query(models.Transaction).one()
    assert (txn.type, txn.amount, txn.pack_id) == ("pack_purchase", Decimal("-12.00"), pack.id)
    db.refresh(pack)
    assert pack.total_packs == 1
    assert db.query(models.GlobalFeed).one().game_type == "classic"


def test_classic_pack_sold_out(db, make_user, make_card, make_pack):
    user = make_user(credits="30.00")
    common = make_card("Common", "D")
    pack = make_pack(kind="classic", price="5.00", total_packs=0, prizes={common: 10})

    with pytest.raises(PackSoldOut):
        pack_opening.purchase_and_open_classic(db, pack.id, user.id)

    assert ledger.balance(db, user.id) == Decimal("30.00")


def test_classic_pack_insufficient_credits_rolls_back(db, make_user, make_card, make_pack):
    user = make_user(credits="3.00")
    common = make_card("Common", "D")
    pack = make_pack(kind="classic", price="5.00", total_packs=4, prizes={common: 10})

    with pytest.raises(InsufficientCredits):
        pack_opening.purchase_and_open_classic(db, pack.id, user.id)

    db.refresh(pack)
    assert pack.total_packs == 4
    assert prize_pool.total(db, pack.id) == 10
    assert _holdings(db, user) == {}
