"""Mini-game outcomes and the packs they award.

Plinko and Wheel resolve to a pack type (pokeball .. masterball); the legacy
card game resolves to a concrete card that goes straight to the vault.
Minesweeper and Energy-Match are played client-side and report a score that
maps to a pack type.
"""
import json
import logging
import random
from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from . import ledger, models, schemas, vault
from .activity import log_event
from .config import get_settings
from .database import unit_of_work
from .errors import (
    GameNotConfigured,
    InvalidAmount,
    InvalidGameType,
    NoCardsInStock,
    PackTypeNotFound,
)

logger = logging.getLogger(__name__)

PLAY_GAME_TYPES = ("plinko", "wheel", "pack")

# Left to right as laid out on the board; the centre bucket is the likeliest.
PLINKO_BUCKETS = (
    "masterball",
    "ultraball",
    "greatball",
    "pokeball",
    "pokeball",
    "pokeball",
    "greatball",
    "ultraball",
    "masterball",
)
PLINKO_WEIGHTS = (0.5, 4.5, 10, 20, 30, 20, 10, 4.5, 0.5)

# Checked in order; anything above the last band is a pokeball.
WHEEL_BANDS = (
    (0.028, "masterball"),
    (0.168, "ultraball"),
    (0.388, "greatball"),
)

LEGACY_TIER_BANDS = (
    (0.0001, "SSS"),
    (0.0015, "SS"),
    (0.0030, "S"),
    (0.0210, "A"),
    (0.1010, "B"),
    (0.2510, "C"),
)

MINESWEEPER_PACKS = ("pokeball", "pokeball", "greatball", "ultraball", "masterball")
ENERGY_MATCH_PACKS = ("pokeball", "pokeball", "greatball", "ultraball", "masterball", "luxuryball")

_rng = random.SystemRandom()


@dataclass
class GameResult:
    card_id: int | None
    tier: str
    game_type: str


def plinko_bucket_index(rng: random.Random) -> int:
    roll = rng.random() * sum(PLINKO_WEIGHTS)
    for index, weight in enumerate(PLINKO_WEIGHTS):
        roll -= weight
        if roll <= 0:
            return index
    return len(PLINKO_WEIGHTS) - 1


def plinko_bucket(rng: random.Random) -> str:
    return PLINKO_BUCKETS[plinko_bucket_index(rng)]


def wheel_outcome(rng: random.Random) -> str:
    roll = rng.random()
    for threshold, pack_type in WHEEL_BANDS:
        if roll < threshold:
            return pack_type
    return "pokeball"


def legacy_tier(rng: random.Random) -> str:
    roll = rng.random()
    for threshold, tier in LEGACY_TIER_BANDS:
        if roll < threshold:
            return tier
    return models.COMMON_TIER


def minesweeper_pack(greens_found: int) -> str:
    return MINESWEEPER_PACKS[greens_found]


def energy_match_pack(matches: int) -> str:
    return ENERGY_MATCH_PACKS[matches]


def _in_stock(db: Session, tier: str):
    return (
        db.query(models.Card)
        .filter(
            models.Card.tier == tier,
            models.Card.is_active.is_(True),
            models.Card.stock > 0,
        )
        .order_by(models.Card.id)
        .all()
    )


def legacy_card(db: Session, rng: random.Random) -> models.Card:
    """Draw a catalog card for the card game, falling back to commons when a tier is out of stock."""
    tier = legacy_tier(rng)
    candidates = _in_stock(db, tier)
    if not candidates and tier != models.COMMON_TIER:
        candidates = _in_stock(db, models.COMMON_TIER)
    if not candidates:
        raise NoCardsInStock()
    card = candidates[int(rng.random() * len(candidates))]
    taken = (
        db.query(models.Card)
        .filter(models.Card.id == card.id, models.Card.stock > 0)
        .update({models.Card.stock: models.Card.stock - 1}, synchronize_session="fetch")
    )
    if taken != 1:
        raise NoCardsInStock()
    return card


def simulate(db: Session, game_type: str, rng: random.Random) -> GameResult:
    if game_type == "plinko":
        return GameResult(card_id=None, tier=plinko_bucket(rng), game_type=game_type)
    if game_type == "wheel":
        return GameResult(card_id=None, tier=wheel_outcome(rng), game_type=game_type)
    card = legacy_card(db, rng)
    return GameResult(card_id=card.id, tier=card.tier, game_type=game_type)


def client_result(request: schemas.GamePlayRequest) -> str | None:
    """Outcome reported by the client-side animation, if it is to be trusted."""
    if not get_settings().trust_client_results:
        return None
    if request.game_type == "plinko" and request.plinko_result:
        return request.plinko_result.strip().lower()
    if request.game_type == "wheel" and request.wheel_result:
        return request.wheel_result.strip().lower()
    return None


def game_price(db: Session, game_type: str) -> Decimal:
    setting = (
        db.query(models.GameSetting)
        .filter(models.GameSetting.game_type == game_type)
        .first()
    )
    if setting is None:
        raise GameNotConfigured(f"{game_type} pricing not configured")
    return ledger.to_money(setting.price)


def resolve_bet(db: Session, game_type: str, bet_amount) -> Decimal:
    # Plinko always costs its configured price, whatever the client sent.
    if game_type == "plinko":
        return game_price(db, "plinko")
    if bet_amount is None:
        raise InvalidAmount("Invalid bet amount")
    bet = ledger.to_money(bet_amount)
    if bet <= ledger.ZERO:
        raise InvalidAmount("Invalid bet amount")
    return bet


def award_pack(db: Session, user_id: int, pack_type: str, earned_from: str) -> models.UserPack:
    pack = (
        db.query(models.Pack)
        .filter(
            models.Pack.type == pack_type,
            models.Pack.is_active.is_(True),
            models.Pack.kind != "classic",
        )
        .order_by(models.Pack.id)
        .first()
    )
    if pack is None:
        raise PackTypeNotFound(f"Pack type {pack_type} not found")
    user_pack = models.UserPack(
        user_id=user_id,
        pack_id=pack.id,
        tier=pack_type,
        earned_from=earned_from,
        is_opened=False,
    )
    db.add(user_pack)
    db.flush()
    return user_pack


def play(
    db: Session,
    user: models.User,
    request: schemas.GamePlayRequest,
    rng: random.Random | None = None,
) -> schemas.GamePlayResponse:
    """Charge the bet, resolve the game and hand out its reward as one transaction."""
    rng = rng or _rng
    game_type = request.game_type
    if game_type not in PLAY_GAME_TYPES:
        raise InvalidGameType()

    with unit_of_work(db):
        bet = resolve_bet(db, game_type, request.bet_amount)
        ledger.spend(db, user.id, bet, "game_play", f"Played {game_type} game")
        session = models.GameSession(
            user_id=user.id,
            game_type=game_type,
            bet_amount=bet,
            status="in_progress",
        )
        db.add(session)
        db.flush()

        reported = client_result(request)
        if reported is not None:
            result = GameResult(card_id=None, tier=reported, game_type=game_type)
        else:
            result = simulate(db, game_type, rng)

        user_pack_id = None
        if result.card_id is None:
            user_pack_id = award_pack(db, user.id, result.tier, game_type).id
        else:
            card = db.get(models.Card, result.card_id)
            vault.add_holding(db, user.id, card, 1)
            if card.tier in models.HIT_TIERS:
                db.add(
                    models.GlobalFeed(
                        user_id=user.id,
                        card_id=card.id,
                        tier=card.tier,
                        game_type=game_type,
                    )
                )

        session.result = json.dumps(asdict(result))
        session.status = "completed"
        session.completed_at = datetime.utcnow()
        log_event(db, user, game_type, "play", {
            "bet_amount": bet,
            "result": asdict(result),
            "client_reported": reported is not None,
        })
        response = schemas.GamePlayResponse(
            result=schemas.GameResultItem(**asdict(result)),
            session_id=session.id,
            user_pack_id=user_pack_id,
        )
    logger.info("User %s played %s for %s: %s", user.id, game_type, bet, result.tier)
    return response


def award_game_pack(
    db: Session,
    user: models.User,
    game_type: str,
    pack_type: str,
    detail: dict,
    description: str,
) -> models.UserPack:
    """Reward a client-played game whose entry fee was already deducted."""
    with unit_of_work(db):
        user_pack = award_pack(db, user.id, pack_type, game_type)
        ledger.record(db, user.id, "game_play", 0, description)
        db.add(
            models.GameSession(
                user_id=user.id,
                game_type=game_type,
                bet_amount=ledger.ZERO,
                result=json.dumps(detail),
                status="completed",
                completed_at=datetime.utcnow(),
            )
        )
        log_event(db, user, game_type, "award", {**detail, "pack_type": pack_type})
    logger.info("User %s earned a %s pack from %s", user.id, pack_type, game_type)
    return user_pack


def ensure_default_game_settings(db: Session) -> None:
    defaults = {"plinko": get_settings().plinko_default_price}
    for game_type, price in defaults.items():
        exists = (
            db.query(models.GameSetting)
            .filter(models.GameSetting.game_type == game_type)
            .first()
        )
        if exists is None:
            db.add(models.GameSetting(game_type=game_type, price=price, updated_by="system"))
    db.commit()
