"""Pack-scoped prize pools: the finite stock of each card a mystery or classic pack can yield."""
import logging
from typing import Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from . import models
from .errors import NoCardsInPrizePool, PackNotFound

logger = logging.getLogger(__name__)


def entries(db: Session, pack_id: int, lock: bool = False) -> List[models.PrizePoolEntry]:
    query = (
        db.query(models.PrizePoolEntry)
        .options(joinedload(models.PrizePoolEntry.card))
        .filter(models.PrizePoolEntry.pack_id == pack_id, models.PrizePoolEntry.quantity > 0)
        .order_by(models.PrizePoolEntry.card_id)
    )
    if lock:
        query = query.with_for_update(of=models.PrizePoolEntry)
    return query.all()


def total(db: Session, pack_id: int) -> int:
    return int(
        db.query(func.coalesce(func.sum(models.PrizePoolEntry.quantity), 0))
        .filter(models.PrizePoolEntry.pack_id == pack_id)
        .scalar()
    )


def take(db: Session, pack_id: int, counts: Dict[int, int]) -> None:
    """Decrement one row per card id; a row without enough stock aborts the draw."""
    for card_id in sorted(counts):
        count = counts[card_id]
        updated = (
            db.query(models.PrizePoolEntry)
            .filter(
                models.PrizePoolEntry.pack_id == pack_id,
                models.PrizePoolEntry.card_id == card_id,
                models.PrizePoolEntry.quantity >= count,
            )
            .update(
                {models.PrizePoolEntry.quantity: models.PrizePoolEntry.quantity - count},
                synchronize_session="fetch",
            )
        )
        if updated != 1:
            logger.warning("Prize pool of pack %s ran out of card %s", pack_id, card_id)
            raise NoCardsInPrizePool()


def restore(db: Session, pack_id: int, counts: Dict[int, int]) -> int:
    """Give refunded copies back; cards no longer in the pool are skipped. Returns rows touched."""
    restored = 0
    for card_id in sorted(counts):
        restored += (
            db.query(models.PrizePoolEntry)
            .filter(
                models.PrizePoolEntry.pack_id == pack_id,
                models.PrizePoolEntry.card_id == card_id,
            )
            .update(
                {models.PrizePoolEntry.quantity: models.PrizePoolEntry.quantity + counts[card_id]},
                synchronize_session="fetch",
            )
        )
    return restored


def restock(db: Session, pack_id: int, card_id: int, quantity: int) -> models.PrizePoolEntry:
    if db.get(models.Pack, pack_id) is None:
        raise PackNotFound()
    entry = (
        db.query(models.PrizePoolEntry)
        .filter(
            models.PrizePoolEntry.pack_id == pack_id,
            models.PrizePoolEntry.card_id == card_id,
        )
        .with_for_update()
        .first()
    )
    if entry is None:
        entry = models.PrizePoolEntry(pack_id=pack_id, card_id=card_id, quantity=quantity)
    else:
        entry.quantity += quantity
    db.add(entry)
    db.flush()
    return entry
