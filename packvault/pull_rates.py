import logging
from typing import Iterable, List

from sqlalchemy.orm import Session

from . import models
from .errors import InvalidPullRates

logger = logging.getLogger(__name__)

RATE_TOLERANCE = 0.01

DEFAULT_PULL_RATES = {
    "pokeball": {"C": 70, "B": 25, "A": 4, "S": 1},
    "greatball": {"C": 45, "B": 40, "A": 12, "S": 3},
    "ultraball": {"B": 50, "A": 35, "S": 12, "SS": 3},
    "masterball": {"A": 50, "S": 35, "SS": 12, "SSS": 3},
}


def tier_rank(tier: str) -> int:
    return models.TIERS.index(tier) if tier in models.TIERS else len(models.TIERS)


def get_rates(db: Session, pack_type: str) -> List[models.PullRate]:
    rows = (
        db.query(models.PullRate)
        .filter(models.PullRate.pack_type == pack_type, models.PullRate.is_active.is_(True))
        .all()
    )
    return sorted(rows, key=lambda r: (tier_rank(r.card_tier), r.id))


def all_rates(db: Session) -> List[models.PullRate]:
    rows = db.query(models.PullRate).filter(models.PullRate.is_active.is_(True)).all()
    return sorted(rows, key=lambda r: (r.pack_type, tier_rank(r.card_tier)))


def validate_rates(rates: Iterable[dict]) -> List[dict]:
    """Admin-side check run before ``set_rates``: known unique tiers, 0..100 each, total 100."""
    cleaned = []
    seen = set()
    for rate in rates:
        tier = rate.get("card_tier")
        try:
            probability = float(rate.get("probability"))
        except (TypeError, ValueError):
            raise InvalidPullRates(f"Invalid probability for tier {tier}")
        if tier not in models.TIERS:
            raise InvalidPullRates(f"Unknown card tier {tier}")
        if tier in seen:
            raise InvalidPullRates(f"Duplicate card tier {tier}")
        if probability < 0 or probability > 100:
            raise InvalidPullRates(f"Invalid probability for tier {tier}")
        seen.add(tier)
        cleaned.append({"card_tier": tier, "probability": probability})
    total = sum(r["probability"] for r in cleaned)
    if abs(total - 100) > RATE_TOLERANCE:
        raise InvalidPullRates(f"Probabilities must sum to 100% (currently {total:g}%)")
    return cleaned


def set_rates(
    db: Session, pack_type: str, rates: Iterable[dict], updated_by: str | None = None
) -> List[models.PullRate]:
    """Replace the active table for ``pack_type``; runs inside the caller's unit of work."""
    db.query(models.PullRate).filter(
        models.PullRate.pack_type == pack_type, models.PullRate.is_active.is_(True)
    ).update({models.PullRate.is_active: False}, synchronize_session="fetch")
    rows = [
        models.PullRate(
            pack_type=pack_type,
            card_tier=rate["card_tier"],
            probability=float(rate["probability"]),
            is_active=True,
            updated_by=updated_by,
        )
        for rate in rates
    ]
    db.add_all(rows)
    db.flush()
    logger.info("Pull rates for %s replaced by %s (%d tiers)", pack_type, updated_by, len(rows))
    return rows


def ensure_default_rates(db: Session) -> None:
    for pack_type, table in DEFAULT_PULL_RATES.items():
        if get_rates(db, pack_type):
            continue
        set_rates(
            db,
            pack_type,
            [{"card_tier": t, "probability": p} for t, p in table.items()],
            updated_by="system",
        )
    db.commit()
