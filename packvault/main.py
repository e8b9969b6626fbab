import logging
from datetime import datetime
from decimal import Decimal
from typing import List

from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, joinedload, sessionmaker

from . import games, ledger, models, pack_opening, prize_pool, pull_rates, schemas, vault
from .auth import get_current_user, require_admin
from .config import setup_logging
from .database import Base, SessionLocal, engine, get_db, unit_of_work
from .errors import CardNotFound, GameNotConfigured, PackNotFound, PackVaultError

logger = logging.getLogger(__name__)

BUNDLE_BONUS = {
    "bundle_50": Decimal("1.10"),
    "bundle_100": Decimal("1.20"),
}

app = FastAPI(
    title="packvault",
    description="Pack opening, prize pools and the credit ledger behind the card vault.",
)


@app.exception_handler(PackVaultError)
async def handle_domain_error(request: Request, exc: PackVaultError) -> JSONResponse:
    logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("%s %s failed", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.on_event("startup")
def startup() -> None:
    setup_logging()
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        pull_rates.ensure_default_rates(db)
        games.ensure_default_game_settings(db)
    finally:
        db.close()


@app.get("/api/auth/user", response_model=schemas.UserItem)
def api_me(current_user: models.User = Depends(get_current_user)):
    return current_user


# Games

@app.get("/api/games/{game_type}/settings", response_model=schemas.GameSettingItem)
def api_game_settings(game_type: str, db: Session = Depends(get_db)):
    setting = (
        db.query(models.GameSetting)
        .filter(models.GameSetting.game_type == game_type)
        .first()
    )
    if setting is None:
        raise GameNotConfigured("Game settings not found")
    return setting


@app.post("/api/games/play", response_model=schemas.GamePlayResponse)
def api_play(
    payload: schemas.GamePlayRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return games.play(db, current_user, payload)


@app.post("/api/games/minesweeper", response_model=schemas.PackAwardResponse)
def api_minesweeper(
    payload: schemas.MinesweeperRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    pack_type = games.minesweeper_pack(payload.greens_found)
    user_pack = games.award_game_pack(
        db,
        current_user,
        "minesweeper",
        pack_type,
        {"greens_found": payload.greens_found, "won": payload.won},
        f"Minesweeper game completed - {payload.greens_found} greens found",
    )
    verb = "won" if payload.won else "earned"
    return schemas.PackAwardResponse(
        pack_tier=pack_type,
        user_pack_id=user_pack.id,
        message=f"You found {payload.greens_found} green cards and {verb} a {pack_type.capitalize()} pack!",
    )


@app.post("/api/games/result", response_model=schemas.PackAwardResponse)
def api_energy_match(
    payload: schemas.EnergyMatchRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    matches = payload.result.matches
    pack_type = games.energy_match_pack(matches)
    user_pack = games.award_game_pack(
        db,
        current_user,
        payload.game_type,
        pack_type,
        {"matches": matches, "selected_energy": payload.result.selected_energy},
        f"Energy match completed - {matches} matches",
    )
    return schemas.PackAwardResponse(
        pack_tier=pack_type,
        user_pack_id=user_pack.id,
        message=f"You matched {matches} cards and earned a {pack_type.capitalize()} pack!",
    )


# Packs

@app.get("/api/packs", response_model=List[schemas.UserPackItem])
def api_user_packs(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return (
        db.query(models.UserPack)
        .filter(models.UserPack.user_id == current_user.id, models.UserPack.is_opened.is_(False))
        .order_by(models.UserPack.earned_at.desc(), models.UserPack.id.desc())
        .all()
    )


@app.post("/api/packs/open/{pack_id}", response_model=schemas.PackOpenResult)
def api_open_pack(
    pack_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return pack_opening.open_pack(db, pack_id, current_user.id)


@app.post("/api/classic-packs/{pack_id}/open", response_model=schemas.PackOpenResult)
def api_buy_classic_pack(
    pack_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return pack_opening.purchase_and_open_classic(db, pack_id, current_user.id)


# Vault

@app.get("/api/vault", response_model=List[schemas.VaultItem])
def api_vault(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return vault.list_vault(db, current_user.id)


@app.post("/api/vault/refund", response_model=schemas.RefundResponse)
def api_refund(
    payload: schemas.RefundRequest,
    background_tasks: BackgroundTasks,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if payload.deferred:
        background_tasks.add_task(
            vault.refund_in_background,
            payload.card_ids,
            current_user.id,
            sessionmaker(autocommit=False, autoflush=False, bind=db.get_bind()),
        )
        return schemas.RefundResponse()
    with unit_of_work(db):
        total = vault.refund(db, payload.card_ids, current_user.id)
        vault.notify(
            db,
            current_user.id,
            "refund",
            "Cards Refunded",
            f"Successfully refunded {len(payload.card_ids)} cards",
        )
    return schemas.RefundResponse(credits_refunded=total)


@app.get("/api/feed", response_model=List[schemas.FeedItem])
def api_feed(limit: int = 50, db: Session = Depends(get_db)):
    limit = max(1, min(limit, 500))
    rows = (
        db.query(models.GlobalFeed)
        .options(joinedload(models.GlobalFeed.card), joinedload(models.GlobalFeed.user))
        .order_by(models.GlobalFeed.created_at.desc(), models.GlobalFeed.id.desc())
        .limit(limit)
        .all()
    )
    return [
        schemas.FeedItem(
            id=row.id,
            user_id=row.user_id,
            username=row.user.username,
            card_id=row.card_id,
            card_name=row.card.name,
            image_url=row.card.image_url,
            tier=row.tier,
            game_type=row.game_type,
            created_at=row.created_at,
        )
        for row in rows
    ]


# Credits

@app.post("/api/credits/deduct", response_model=schemas.DeductResponse)
def api_deduct(
    payload: schemas.DeductRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with unit_of_work(db):
        amount = ledger.spend(
            db,
            current_user.id,
            payload.amount,
            "deduction",
            f"Credit deduction - {payload.reason}",
        )
    return schemas.DeductResponse(credits_deducted=amount, balance=ledger.balance(db, current_user.id))


@app.post("/api/credits/purchase", response_model=schemas.PurchaseResponse)
def api_purchase(
    payload: schemas.PurchaseRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    amount = payload.amount * BUNDLE_BONUS.get(payload.bundle_type, Decimal("1"))
    with unit_of_work(db):
        added = ledger.top_up(
            db,
            current_user.id,
            amount,
            f"Credit purchase - {payload.bundle_type or 'custom'}",
        )
        vault.notify(db, current_user.id, "purchase", "Credits Added", f"Added {added} credits to your account")
    return schemas.PurchaseResponse(credits_added=added, balance=ledger.balance(db, current_user.id))


@app.get("/api/transactions", response_model=List[schemas.TransactionItem])
def api_transactions(
    limit: int = 50,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    limit = max(1, min(limit, 200))
    return (
        db.query(models.Transaction)
        .filter(models.Transaction.user_id == current_user.id)
        .order_by(models.Transaction.created_at.desc(), models.Transaction.id.desc())
        .limit(limit)
        .all()
    )


@app.get("/api/notifications", response_model=List[schemas.NotificationItem])
def api_notifications(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == current_user.id)
        .order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        .all()
    )


# Admin

@app.get("/api/admin/pull-rates", response_model=List[schemas.PullRateItem])
def api_admin_all_rates(db: Session = Depends(get_db), admin=Depends(require_admin)):
    return pull_rates.all_rates(db)


@app.get("/api/admin/pull-rates/{pack_type}", response_model=List[schemas.PullRateItem])
def api_admin_rates(pack_type: str, db: Session = Depends(get_db), admin=Depends(require_admin)):
    return pull_rates.get_rates(db, pack_type)


@app.post("/api/admin/pull-rates/{pack_type}", response_model=List[schemas.PullRateItem])
def api_admin_set_rates(
    pack_type: str,
    payload: schemas.PullRatesUpdate,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    rates = pull_rates.validate_rates([r.model_dump() for r in payload.rates])
    with unit_of_work(db):
        pull_rates.set_rates(db, pack_type, rates, updated_by="admin")
    return pull_rates.get_rates(db, pack_type)


@app.post("/api/admin/users/{user_id}/credits", response_model=schemas.UserItem)
def api_admin_set_credits(
    user_id: int,
    payload: schemas.SetCreditsRequest,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    with unit_of_work(db):
        delta = ledger.set_absolute(db, user_id, payload.amount)
        ledger.record(db, user_id, "admin_set", delta, payload.reason or "Balance set by admin")
    logger.info("Admin set credits of user %s to %s (%+.2f)", user_id, payload.amount, delta)
    return db.get(models.User, user_id)


@app.post("/api/admin/games/{game_type}/settings", response_model=schemas.GameSettingItem)
def api_admin_game_settings(
    game_type: str,
    payload: schemas.GameSettingUpdate,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    price = ledger.to_money(payload.price)
    with unit_of_work(db):
        setting = (
            db.query(models.GameSetting)
            .filter(models.GameSetting.game_type == game_type)
            .first()
        )
        if setting is None:
            setting = models.GameSetting(game_type=game_type, price=price)
        setting.price = price
        setting.updated_at = datetime.utcnow()
        setting.updated_by = "admin"
        db.add(setting)
    db.refresh(setting)
    return setting


@app.get("/api/admin/packs/{pack_id}/prizes", response_model=schemas.PrizePoolListing)
def api_admin_prize_pool(pack_id: int, db: Session = Depends(get_db), admin=Depends(require_admin)):
    if db.get(models.Pack, pack_id) is None:
        raise PackNotFound()
    return schemas.PrizePoolListing(
        pack_id=pack_id,
        total=prize_pool.total(db, pack_id),
        entries=[schemas.PrizePoolEntryItem.model_validate(e) for e in prize_pool.entries(db, pack_id)],
    )


@app.post("/api/admin/packs/{pack_id}/prizes", response_model=schemas.PrizePoolEntryItem)
def api_admin_restock(
    pack_id: int,
    payload: schemas.RestockRequest,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    with unit_of_work(db):
        if db.get(models.Card, payload.card_id) is None:
            raise CardNotFound()
        entry = prize_pool.restock(db, pack_id, payload.card_id, payload.quantity)
    db.refresh(entry)
    return entry
