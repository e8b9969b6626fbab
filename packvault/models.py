from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base

Money = Numeric(12, 2)

# Ascending rarity.
TIERS = ("D", "C", "B", "A", "S", "SS", "SSS")
COMMON_TIER = "D"
HIT_TIERS = ("C", "B", "A", "S", "SS", "SSS")



class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, unique=True, nullable=True)
    credits = Column(Money, default=Decimal("0.00"), nullable=False)
    total_spent = Column(Money, default=Decimal("0.00"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),)


class Card(Base):
    __tablename__ = "cards"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    tier = Column(String, index=True, nullable=False)  # D | C | B | A | S | SS | SSS
    credits = Column(Money, default=Decimal("0.00"), nullable=False)
    image_url = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    stock = Column(Integer, default=0, nullable=False)  # legacy card game only
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Pack(Base):
    __tablename__ = "packs"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    type = Column(String, index=True, nullable=False)  # pokeball | greatball | ultraball | masterball ...
    kind = Column(String, default="regular", nullable=False)  # regular | mystery | classic
    price = Column(Money, default=Decimal("0.00"), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    total_packs = Column(Integer, nullable=True)  # None means uncapped
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    prizes = relationship("PrizePoolEntry", back_populates="pack")


class PrizePoolEntry(Base):
    __tablename__ = "prize_pool_entries"

    id = Column(Integer, primary_key=True, index=True)
    pack_id = Column(Integer, ForeignKey("packs.id", ondelete="CASCADE"), nullable=False, index=True)
    card_id = Column(Integer, ForeignKey("cards.id", ondelete="CASCADE"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)

    pack = relationship("Pack", back_populates="prizes")
    card = relationship("Card")

    __table_args__ = (
        UniqueConstraint("pack_id", "card_id", name="uq_prize_pool_pack_card"),
        CheckConstraint("quantity >= 0", name="ck_prize_pool_quantity_non_negative"),
    )


class PullRate(Base):
    __tablename__ = "pull_rates"

    id = Column(Integer, primary_key=True, index=True)
    pack_type = Column(String, index=True, nullable=False)
    card_tier = Column(String, nullable=False)
    probability = Column(Float, nullable=False)  # percent, active set sums to 100
    is_active = Column(Boolean, default=True, nullable=False)
    updated_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserPack(Base):
    __tablename__ = "user_packs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    pack_id = Column(Integer, ForeignKey("packs.id"), nullable=False)
    tier = Column(String, nullable=True)
    earned_from = Column(String, nullable=True)
    is_opened = Column(Boolean, default=False, nullable=False)
    earned_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    opened_at = Column(DateTime, nullable=True)

    pack = relationship("Pack")


class UserCard(Base):
    __tablename__ = "user_cards"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    card_id = Column(Integer, ForeignKey("cards.id"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    pull_value = Column(Money, default=Decimal("0.00"), nullable=False)
    source_pack_id = Column(Integer, ForeignKey("packs.id"), nullable=True)
    is_refunded = Column(Boolean, default=False, nullable=False)
    is_shipped = Column(Boolean, default=False, nullable=False)  # set by the fulfilment process outside this service
    pulled_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    card = relationship("Card")


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # purchase | deduction | game_play | pack_purchase | refund | admin_set
    amount = Column(Money, nullable=False)
    description = Column(String, nullable=True)
    pack_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class GlobalFeed(Base):
    __tablename__ = "global_feed"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    card_id = Column(Integer, ForeignKey("cards.id"), nullable=False)
    tier = Column(String, nullable=False)
    game_type = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    card = relationship("Card")
    user = relationship("User")


class GameSession(Base):
    __tablename__ = "game_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    game_type = Column(String, nullable=False)
    bet_amount = Column(Money, nullable=False)
    result = Column(Text, nullable=True)  # JSON string
    status = Column(String, default="in_progress", nullable=False)  # in_progress | completed
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)


class GameSetting(Base):
    __tablename__ = "game_settings"

    id = Column(Integer, primary_key=True, index=True)
    game_type = Column(String, unique=True, nullable=False)
    price = Column(Money, nullable=False)
    updated_by = Column(String, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=True)
    username = Column(String, nullable=True)
    game_type = Column(String, nullable=True)
    action = Column(String, nullable=False)
    detail = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
