"""Opening packs.

Three kinds of pack share one transactional envelope:

* regular  - hit tier from the pull-rate table of the pack's tier label, hit and
             8 commons drawn from the card catalog (9 cards, hit last);
* mystery  - 7 commons and 1 hit drawn from the pack's own prize pool, with an
             8th common when the pool has no hit-tier cards left;
* classic  - bought and opened in one step, drawn like a mystery pack.

Everything a pack-opening touches (credits, prize pool, vault, the opened
flag, feed rows, transactions) is written through one session and committed
once; any error leaves the database as it was and the pack still unopened.
"""
import logging
import random
from collections import Counter
from datetime import datetime
from typing import List, Union

from sqlalchemy.orm import Session

from . import ledger, models, pull_rates, schemas, vault
from .activity import log_event
from .database import unit_of_work
from .errors import PackNotFound, PackNotFoundOrAlreadyOpened, PackSoldOut
from .selector import CatalogPool, DrawnCard, PrizePool, draw_pack

logger = logging.getLogger(__name__)

REGULAR_COMMONS = 8
POOL_COMMONS = 7

_rng = random.SystemRandom()


def _acquire(db: Session, user_pack_id: int, user_id: int) -> models.UserPack:
    user_pack = (
        db.query(models.UserPack)
        .filter(
            models.UserPack.id == user_pack_id,
            models.UserPack.user_id == user_id,
            models.UserPack.is_opened.is_(False),
        )
        .with_for_update()
        .first()
    )
    if user_pack is None:
        raise PackNotFoundOrAlreadyOpened()
    return user_pack


def _mark_opened(db: Session, user_pack_id: int) -> None:
    updated = (
        db.query(models.UserPack)
        .filter(models.UserPack.id == user_pack_id, models.UserPack.is_opened.is_(False))
        .update(
            {models.UserPack.is_opened: True, models.UserPack.opened_at: datetime.utcnow()},
            synchronize_session="fetch",
        )
    )
    if updated != 1:
        raise PackNotFoundOrAlreadyOpened()


def _materialize(db: Session, user_id: int, drawn: List[DrawnCard], source_pack_id: int | None) -> None:
    counts = Counter(d.card.id for d in drawn)
    cards = {d.card.id: d.card for d in drawn}
    for card_id, count in counts.items():
        vault.add_holding(db, user_id, cards[card_id], count, source_pack_id=source_pack_id)


def _publish_hits(db: Session, user_id: int, drawn: List[DrawnCard], game_type: str) -> None:
    for d in drawn:
        if d.is_hit and d.card.tier in models.HIT_TIERS:
            db.add(
                models.GlobalFeed(
                    user_id=user_id,
                    card_id=d.card.id,
                    tier=d.card.tier,
                    game_type=game_type,
                )
            )


def _pack_cards(drawn: List[DrawnCard]) -> List[schemas.PackCardItem]:
    return [
        schemas.PackCardItem(
            id=d.card.id,
            name=d.card.name,
            tier=d.card.tier,
            image_url=d.card.image_url,
            market_value=ledger.to_money(d.card.credits),
            is_hit=d.is_hit,
            position=d.position,
        )
        for d in drawn
    ]


def _summary(drawn: List[DrawnCard]) -> dict:
    return {
        "cards": [d.card.id for d in drawn],
        "hits": [d.card.tier for d in drawn if d.is_hit],
    }


def open_pack(
    db: Session,
    user_pack_id: int,
    user_id: int,
    rng: random.Random | None = None,
) -> Union[schemas.RegularPackResult, schemas.MysteryPackResult]:
    rng = rng or _rng
    with unit_of_work(db):
        user_pack = _acquire(db, user_pack_id, user_id)
        pack = db.get(models.Pack, user_pack.pack_id)
        if pack is None:
            raise PackNotFound()
        pack_type = user_pack.tier or pack.type

        if pack.kind == "regular":
            rates = pull_rates.get_rates(db, pack_type)
            drawn = draw_pack(CatalogPool(db), rng, REGULAR_COMMONS, rates=rates)
            source_pack_id = None
            result_cls = schemas.RegularPackResult
        else:
            drawn = draw_pack(PrizePool(db, pack.id), rng, POOL_COMMONS)
            source_pack_id = pack.id
            result_cls = schemas.MysteryPackResult

        _materialize(db, user_id, drawn, source_pack_id)
        _mark_opened(db, user_pack.id)
        _publish_hits(db, user_id, drawn, "pack")
        log_event(db, db.get(models.User, user_id), user_pack.earned_from, "pack_open", {
            "user_pack_id": user_pack.id,
            "pack_id": pack.id,
            "kind": pack.kind,
            **_summary(drawn),
        })
        result = result_cls(
            user_pack_id=user_pack.id,
            pack_cards=_pack_cards(drawn),
            hit_card_position=len(drawn) - 1,
            pack_type=pack_type,
        )
    logger.info(
        "User %s opened %s pack %s: %d cards, hit tier %s",
        user_id, result.kind, user_pack_id, len(result.pack_cards), result.pack_cards[-1].tier,
    )
    return result


def purchase_and_open_classic(
    db: Session,
    pack_id: int,
    user_id: int,
    rng: random.Random | None = None,
) -> schemas.ClassicPackResult:
    rng = rng or _rng
    with unit_of_work(db):
        pack = (
            db.query(models.Pack)
            .filter(
                models.Pack.id == pack_id,
                models.Pack.kind == "classic",
                models.Pack.is_active.is_(True),
            )
            .with_for_update()
            .first()
        )
        if pack is None:
            raise PackNotFound()
        if pack.total_packs is not None:
            updated = (
                db.query(models.Pack)
                .filter(models.Pack.id == pack.id, models.Pack.total_packs > 0)
                .update(
                    {models.Pack.total_packs: models.Pack.total_packs - 1},
                    synchronize_session="fetch",
                )
            )
            if updated != 1:
                raise PackSoldOut()

        price = ledger.to_money(pack.price)
        if price > ledger.ZERO:
            ledger.spend(db, user_id, price, "pack_purchase", f"Purchased {pack.name}", pack_id=pack.id)

        drawn = draw_pack(PrizePool(db, pack.id), rng, POOL_COMMONS)
        _materialize(db, user_id, drawn, pack.id)
        _publish_hits(db, user_id, drawn, "classic")
        log_event(db, db.get(models.User, user_id), "classic", "pack_purchase_open", {
            "pack_id": pack.id,
            "price": price,
            **_summary(drawn),
        })
        result = schemas.ClassicPackResult(
            pack_id=pack.id,
            pack_cards=_pack_cards(drawn),
            hit_card_position=len(drawn) - 1,
            pack_type=pack.type,
            credits_spent=price,
        )
    logger.info("User %s bought and opened classic pack %s for %s", user_id, pack_id, price)
    return result
