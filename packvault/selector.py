"""Tier-weighted random selection.

A draw is two-staged: a tier is picked from a pull-rate table, then a card is
picked uniformly among the candidates of that tier. Where the candidates come
from is a strategy: ``CatalogPool`` is the global card inventory, ``PrizePool``
is the finite stock of one pack.
"""
import logging
import random
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Sequence

from sqlalchemy.orm import Session

from . import models, prize_pool
from .errors import (
    MalformedPullRates,
    NoCardsInPrizePool,
    NoCardsInTierError,
    NoPullRatesConfigured,
)
from .pull_rates import RATE_TOLERANCE

logger = logging.getLogger(__name__)


@dataclass
class DrawnCard:
    card: models.Card
    is_hit: bool
    position: int


def pick_tier(rates: Sequence[models.PullRate], rng: random.Random) -> str:
    """Walk ``rates`` in order and return the first tier whose cumulative share covers the roll."""
    if not rates:
        raise NoPullRatesConfigured()
    total = sum(rate.probability for rate in rates)
    if abs(total - 100) > RATE_TOLERANCE:
        logger.error("Refusing to draw from a pull-rate table summing to %s", total)
        raise MalformedPullRates()
    roll = rng.random() * 100
    cumulative = 0.0
    for rate in rates:
        cumulative += rate.probability
        if roll <= cumulative:
            return rate.card_tier
    return rates[-1].card_tier


def pick_card(candidates: Sequence[models.Card], rng: random.Random) -> models.Card:
    if not candidates:
        raise NoCardsInTierError()
    return candidates[int(rng.random() * len(candidates))]


class CatalogPool:
    """Every active card of the catalog. Drawing never changes the catalog."""

    source_pack_id = None

    def __init__(self, db: Session):
        self.db = db
        self._by_tier: Dict[str, List[models.Card]] = {}

    def cards_in_tier(self, tiers: Sequence[str]) -> List[models.Card]:
        missing = [t for t in tiers if t not in self._by_tier]
        if missing:
            for tier in missing:
                self._by_tier[tier] = []
            rows = (
                self.db.query(models.Card)
                .filter(models.Card.tier.in_(missing), models.Card.is_active.is_(True))
                .order_by(models.Card.id)
                .all()
            )
            for card in rows:
                self._by_tier[card.tier].append(card)
        return [card for t in tiers for card in self._by_tier[t]]

    def empty(self, tiers: Sequence[str]) -> Exception:
        return NoCardsInTierError(f"No available cards in tier {'/'.join(tiers)}")

    def take(self, card: models.Card) -> None:
        pass

    def settle(self) -> None:
        pass


class PrizePool:
    """The stock of one pack; each copy drawn is taken out of the pool."""

    def __init__(self, db: Session, pack_id: int):
        self.db = db
        self.source_pack_id = pack_id
        self.entries = prize_pool.entries(db, pack_id, lock=True)
        self.remaining = {entry.card_id: entry.quantity for entry in self.entries}
        self.drawn: Counter = Counter()

    def cards_in_tier(self, tiers: Sequence[str]) -> List[models.Card]:
        return [
            entry.card
            for entry in self.entries
            if entry.card.tier in tiers and self.remaining[entry.card_id] > 0
        ]

    def empty(self, tiers: Sequence[str]) -> Exception:
        return NoCardsInPrizePool(f"No cards of tier {'/'.join(tiers)} left in prize pool")

    def take(self, card: models.Card) -> None:
        self.remaining[card.id] -= 1
        self.drawn[card.id] += 1

    def settle(self) -> None:
        prize_pool.take(self.db, self.source_pack_id, dict(self.drawn))


def _draw_from(pool, tiers: Sequence[str], rng: random.Random) -> models.Card:
    candidates = pool.cards_in_tier(tiers)
    if not candidates:
        raise pool.empty(tiers)
    card = pick_card(candidates, rng)
    pool.take(card)
    return card


def draw_pack(
    pool,
    rng: random.Random,
    commons: int,
    rates: Sequence[models.PullRate] | None = None,
) -> List[DrawnCard]:
    """Draw ``commons`` tier-D cards followed by one hit in the last slot.

    With ``rates`` the hit tier comes from the pull-rate table and an empty tier
    fails the draw. Without it the hit is any card of a hit tier in the pool,
    and a pool holding no hit tiers yields one more common instead.
    """
    hit_tier = pick_tier(rates, rng) if rates is not None else None
    drawn = [
        DrawnCard(_draw_from(pool, [models.COMMON_TIER], rng), is_hit=False, position=i)
        for i in range(commons)
    ]
    if hit_tier is not None:
        drawn.append(DrawnCard(_draw_from(pool, [hit_tier], rng), is_hit=True, position=commons))
    elif pool.cards_in_tier(models.HIT_TIERS):
        drawn.append(DrawnCard(_draw_from(pool, models.HIT_TIERS, rng), is_hit=True, position=commons))
    else:
        logger.info("Pack %s has no hit-tier cards left, drawing an extra common", pool.source_pack_id)
        drawn.append(
            DrawnCard(_draw_from(pool, [models.COMMON_TIER], rng), is_hit=False, position=commons)
        )
    pool.settle()
    return drawn
