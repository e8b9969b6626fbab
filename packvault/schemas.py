from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Snake-case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UserItem(ApiModel):
    id: int
    username: str
    email: Optional[str] = None
    credits: Decimal
    total_spent: Decimal


class CardItem(ApiModel):
    id: int
    name: str
    tier: str
    credits: Decimal
    image_url: Optional[str] = None


# Games

class GamePlayRequest(ApiModel):
    game_type: str
    bet_amount: Optional[Decimal] = None
    plinko_result: Optional[str] = None
    wheel_result: Optional[str] = None


class GameResultItem(ApiModel):
    card_id: Optional[int] = None
    tier: str
    game_type: str


class GamePlayResponse(ApiModel):
    success: bool = True
    result: GameResultItem
    session_id: int
    user_pack_id: Optional[int] = None


class MinesweeperRequest(ApiModel):
    greens_found: int = Field(ge=0, le=4)
    won: bool


class EnergyMatchResult(ApiModel):
    matches: int = Field(ge=0, le=5)
    selected_energy: Optional[str] = None


class EnergyMatchRequest(ApiModel):
    game_type: Literal["energy_match"] = "energy_match"
    result: EnergyMatchResult


class PackAwardResponse(ApiModel):
    success: bool = True
    pack_tier: str
    user_pack_id: int
    message: str


class GameSettingItem(ApiModel):
    game_type: str
    price: Decimal


class GameSettingUpdate(ApiModel):
    price: Decimal = Field(gt=0)


# Packs

class PackCardItem(ApiModel):
    id: int
    name: str
    tier: str
    image_url: Optional[str] = None
    market_value: Decimal
    is_hit: bool
    position: int


class PackOpenResultBase(ApiModel):
    success: bool = True
    pack_cards: List[PackCardItem]
    hit_card_position: int
    pack_type: str


class RegularPackResult(PackOpenResultBase):
    kind: Literal["regular"] = "regular"
    user_pack_id: int


class MysteryPackResult(PackOpenResultBase):
    kind: Literal["mystery"] = "mystery"
    user_pack_id: int


class ClassicPackResult(PackOpenResultBase):
    kind: Literal["classic"] = "classic"
    pack_id: int
    credits_spent: Decimal


PackOpenResult = Annotated[
    Union[RegularPackResult, MysteryPackResult, ClassicPackResult],
    Field(discriminator="kind"),
]


class UserPackItem(ApiModel):
    id: int
    pack_id: int
    tier: Optional[str] = None
    earned_from: Optional[str] = None
    is_opened: bool
    earned_at: datetime


# Vault

class VaultItem(ApiModel):
    id: int
    card_id: int
    quantity: int
    pull_value: Decimal
    pulled_at: datetime
    card: CardItem


class RefundRequest(ApiModel):
    card_ids: List[int] = Field(min_length=1)
    deferred: bool = False


class RefundResponse(ApiModel):
    success: bool = True
    credits_refunded: Optional[Decimal] = None


class FeedItem(ApiModel):
    id: int
    user_id: int
    username: str
    card_id: int
    card_name: str
    image_url: Optional[str] = None
    tier: str
    game_type: str
    created_at: datetime


# Credits

class DeductRequest(ApiModel):
    amount: Decimal = Field(gt=0)
    reason: Optional[str] = None


class DeductResponse(ApiModel):
    success: bool = True
    credits_deducted: Decimal
    balance: Decimal


class PurchaseRequest(ApiModel):
    amount: Decimal = Field(gt=0)
    bundle_type: Optional[str] = None


class PurchaseResponse(ApiModel):
    success: bool = True
    credits_added: Decimal
    balance: Decimal


class TransactionItem(ApiModel):
    id: int
    type: str
    amount: Decimal
    description: Optional[str] = None
    pack_id: Optional[int] = None
    created_at: datetime


class NotificationItem(ApiModel):
    id: int
    type: str
    title: str
    message: str
    is_read: bool
    created_at: datetime


# Admin

class PullRateInput(ApiModel):
    card_tier: str
    probability: float


class PullRatesUpdate(ApiModel):
    rates: List[PullRateInput]


class PullRateItem(ApiModel):
    pack_type: str
    card_tier: str
    probability: float
    is_active: bool


class SetCreditsRequest(ApiModel):
    amount: Decimal = Field(ge=0)
    reason: Optional[str] = None


class RestockRequest(ApiModel):
    card_id: int
    quantity: int = Field(gt=0)


class PrizePoolEntryItem(ApiModel):
    pack_id: int
    card_id: int
    quantity: int


class PrizePoolListing(ApiModel):
    pack_id: int
    total: int
    entries: List[PrizePoolEntryItem]
