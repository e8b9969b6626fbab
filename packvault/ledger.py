"""Credit ledger.

Balances only move through the functions below. Each one issues a single
UPDATE against ``users`` and leaves committing to the caller's unit of work,
so the balance change and its ``Transaction`` row land together with whatever
business effect they pay for.
"""
import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from sqlalchemy.orm import Session

from . import models
from .errors import InsufficientCredits, InvalidAmount, UserNotFound

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    try:
        amount = Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount() from exc
    return amount


def _positive(value) -> Decimal:
    amount = to_money(value)
    if amount <= ZERO:
        raise InvalidAmount()
    return amount


def balance(db: Session, user_id: int) -> Decimal:
    credits = db.query(models.User.credits).filter(models.User.id == user_id).scalar()
    if credits is None:
        raise UserNotFound()
    return to_money(credits)


def deduct(db: Session, user_id: int, amount) -> bool:
    """Subtract ``amount`` only if the balance covers it; report whether it did."""
    amount = _positive(amount)
    updated = (
        db.query(models.User)
        .filter(models.User.id == user_id, models.User.credits >= amount)
        .update(
            {
                models.User.credits: models.User.credits - amount,
                models.User.updated_at: datetime.utcnow(),
            },
            synchronize_session="fetch",
        )
    )
    return updated == 1


def credit(db: Session, user_id: int, amount, count_as_spent: bool = False) -> None:
    amount = _positive(amount)
    values = {
        models.User.credits: models.User.credits + amount,
        models.User.updated_at: datetime.utcnow(),
    }
    if count_as_spent:
        values[models.User.total_spent] = models.User.total_spent + amount
    updated = (
        db.query(models.User)
        .filter(models.User.id == user_id)
        .update(values, synchronize_session="fetch")
    )
    if updated != 1:
        raise UserNotFound()


def set_absolute(db: Session, user_id: int, amount) -> Decimal:
    """Admin override: returns the signed delta applied to the balance."""
    amount = to_money(amount)
    if amount < ZERO:
        raise InvalidAmount()
    user = (
        db.query(models.User)
        .filter(models.User.id == user_id)
        .with_for_update()
        .first()
    )
    if user is None:
        raise UserNotFound()
    delta = amount - to_money(user.credits)
    user.credits = amount
    user.updated_at = datetime.utcnow()
    db.add(user)
    return delta


def record(
    db: Session,
    user_id: int,
    type: str,
    amount,
    description: str | None = None,
    pack_id: int | None = None,
) -> models.Transaction:
    txn = models.Transaction(
        user_id=user_id,
        type=type,
        amount=to_money(amount),
        description=description,
        pack_id=pack_id,
    )
    db.add(txn)
    return txn


def spend(
    db: Session,
    user_id: int,
    amount,
    type: str,
    description: str,
    pack_id: int | None = None,
) -> Decimal:
    amount = _positive(amount)
    if not deduct(db, user_id, amount):
        logger.info("Rejected %s of %s for user %s: insufficient credits", type, amount, user_id)
        raise InsufficientCredits()
    record(db, user_id, type, -amount, description, pack_id=pack_id)
    return amount


def top_up(db: Session, user_id: int, amount, description: str) -> Decimal:
    amount = _positive(amount)
    credit(db, user_id, amount, count_as_spent=True)
    record(db, user_id, "purchase", amount, description)
    return amount
