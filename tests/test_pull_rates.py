import pytest

from packvault import models, pull_rates
from packvault.errors import InvalidPullRates


def test_get_rates_in_rarity_order(db, rates):
    rates("pokeball", {"S": 1, "C": 70, "A": 4, "B": 25})

    rows = pull_rates.get_rates(db, "pokeball")

    assert [r.card_tier for r in rows] == ["C", "B", "A", "S"]


def test_set_rates_replaces_active_table(db, rates):
    rates("greatball", {"C": 50, "B": 50})
    rates("greatball", {"B": 60, "A": 40})

    active = pull_rates.get_rates(db, "greatball")
    assert {r.card_tier: r.probability for r in active} == {"B": 60, "A": 40}
    assert db.query(models.PullRate).filter(models.PullRate.is_active.is_(False)).count() == 2


def test_unknown_pack_type_has_no_rates(db):
    assert pull_rates.get_rates(db, "premierball") == []


def test_validate_rates_accepts_rounding_slop():
    cleaned = pull_rates.validate_rates(
        [{"card_tier": "C", "probability": 33.33}, {"card_tier": "B", "probability": 33.33},
         {"card_tier": "A", "probability": 33.34}]
    )
    assert len(cleaned) == 3


@pytest.mark.parametrize(
    "table",
    [
        [{"card_tier": "C", "probability": 60}, {"card_tier": "B", "probability": 30}],
        [{"card_tier": "Z", "probability": 100}],
        [{"card_tier": "C", "probability": 50}, {"card_tier": "C", "probability": 50}],
        [{"card_tier": "C", "probability": 120}, {"card_tier": "B", "probability": -20}],
        [{"card_tier": "C", "probability": "many"}],
    ],
)
def test_validate_rates_rejects_bad_tables(table):
    with pytest.raises(InvalidPullRates):
        pull_rates.validate_rates(table)


def test_default_rates_seeded_once(db):
    pull_rates.ensure_default_rates(db)
    pull_rates.ensure_default_rates(db)

    for pack_type, table in pull_rates.DEFAULT_PULL_RATES.items():
        rows = pull_rates.get_rates(db, pack_type)
        assert {r.card_tier: r.probability for r in rows} == table
        assert abs(sum(r.probability for r in rows) - 100) <= pull_rates.RATE_TOLERANCE
