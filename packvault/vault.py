import logging
from collections import Counter, defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Sequence

from sqlalchemy.orm import Session, joinedload

from . import ledger, models, prize_pool
from .config import get_settings
from .database import SessionLocal, unit_of_work
from .errors import NothingToRefund

logger = logging.getLogger(__name__)


def add_holding(
    db: Session,
    user_id: int,
    card: models.Card,
    count: int = 1,
    source_pack_id: int | None = None,
) -> models.UserCard:
    """Merge ``count`` copies into the user's active holding of ``card``, or open a new one.

    Holdings are kept apart per source pack, so a refund gives every copy back
    to the prize pool it was drawn from. A new holding locks the card's
    current credit value as its pull value; merging keeps the value locked by
    the first pull.
    """
    if source_pack_id is None:
        same_source = models.UserCard.source_pack_id.is_(None)
    else:
        same_source = models.UserCard.source_pack_id == source_pack_id
    holding = (
        db.query(models.UserCard)
        .filter(
            models.UserCard.user_id == user_id,
            models.UserCard.card_id == card.id,
            same_source,
            models.UserCard.is_refunded.is_(False),
            models.UserCard.is_shipped.is_(False),
        )
        .with_for_update()
        .first()
    )
    if holding is not None:
        holding.quantity = models.UserCard.quantity + count
        holding.pulled_at = datetime.utcnow()
    else:
        holding = models.UserCard(
            user_id=user_id,
            card_id=card.id,
            quantity=count,
            pull_value=card.credits,
            source_pack_id=source_pack_id,
        )
    db.add(holding)
    db.flush()
    return holding


def list_vault(db: Session, user_id: int) -> List[models.UserCard]:
    return (
        db.query(models.UserCard)
        .options(joinedload(models.UserCard.card))
        .filter(
            models.UserCard.user_id == user_id,
            models.UserCard.is_refunded.is_(False),
            models.UserCard.is_shipped.is_(False),
        )
        .order_by(models.UserCard.pulled_at.desc(), models.UserCard.id.desc())
        .all()
    )


def notify(db: Session, user_id: int, type: str, title: str, message: str) -> models.Notification:
    note = models.Notification(user_id=user_id, type=type, title=title, message=message)
    db.add(note)
    return note


def refund(db: Session, holding_ids: Sequence[int], user_id: int) -> Decimal:
    """Turn holdings back into credits. Runs inside the caller's unit of work.

    Holdings that are not the user's, or are already refunded or shipped, are
    left alone; if nothing refundable remains the call is rejected. Returns
    the credited total.
    """
    ids = sorted(set(holding_ids))
    holdings = (
        db.query(models.UserCard)
        .filter(
            models.UserCard.id.in_(ids),
            models.UserCard.user_id == user_id,
            models.UserCard.is_refunded.is_(False),
            models.UserCard.is_shipped.is_(False),
        )
        .order_by(models.UserCard.id)
        .with_for_update()
        .all()
    )
    if not holdings:
        raise NothingToRefund()

    rate = get_settings().refund_rate
    total = ledger.to_money(
        sum((ledger.to_money(h.pull_value) * h.quantity for h in holdings), Decimal("0")) * rate
    )

    # Catalog draws have no source pack and never came out of a pool.
    restock: Dict[int, Counter] = defaultdict(Counter)
    for holding in holdings:
        if holding.source_pack_id is not None:
            restock[holding.source_pack_id][holding.card_id] += holding.quantity
    for pack_id, counts in restock.items():
        prize_pool.restore(db, pack_id, dict(counts))

    flipped = (
        db.query(models.UserCard)
        .filter(
            models.UserCard.id.in_([h.id for h in holdings]),
            models.UserCard.is_refunded.is_(False),
            models.UserCard.is_shipped.is_(False),
        )
        .update({models.UserCard.is_refunded: True}, synchronize_session="fetch")
    )
    if flipped != len(holdings):
        # Another request refunded or shipped some of these in the meantime.
        raise NothingToRefund("Cards changed while refunding, please retry")

    if total > ledger.ZERO:
        ledger.credit(db, user_id, total)
    copies = sum(h.quantity for h in holdings)
    ledger.record(db, user_id, "refund", total, f"Refunded {copies} cards")
    logger.info("User %s refunded %d holdings (%d cards) for %s", user_id, len(holdings), copies, total)
    return total


def refund_in_background(
    holding_ids: Sequence[int],
    user_id: int,
    session_factory: Callable[[], Session] = SessionLocal,
) -> None:
    """Refund outside the request cycle; the user always gets a closing notification."""
    db = session_factory()
    try:
        try:
            with unit_of_work(db):
                total = refund(db, holding_ids, user_id)
                notify(db, user_id, "refund", "Cards Refunded", f"Refunded {len(holding_ids)} cards for {total} credits")
        except Exception as exc:
            logger.exception("Deferred refund for user %s failed", user_id)
            with unit_of_work(db):
                notify(db, user_id, "refund_failed", "Refund Failed", f"Your refund could not be processed: {exc}")
    finally:
        db.close()
