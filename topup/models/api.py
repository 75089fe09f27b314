"""
API Models - Pydantic models for request/response validation.

Covers both our own HTTP surface and the wire contracts of the payment
proxy, notification relay and nickname lookup.
"""

from decimal import Decimal
from enum import Enum

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    model_validator,
)


class Game(str, Enum):
    """Games sold by the storefront."""

    MLBB = "mlbb"
    MLBB_PH = "mlbb_ph"
    FREEFIRE = "freefire"
    FREEFIRE_TH = "freefire_th"

    @property
    def display_name(self) -> str:
        return _GAME_NAMES[self]

    @property
    def requires_server_id(self) -> bool:
        """Mobile Legends accounts are addressed by user id plus zone id."""
        return self in (Game.MLBB, Game.MLBB_PH)


_GAME_NAMES = {
    Game.MLBB: "Mobile Legends",
    Game.MLBB_PH: "Mobile Legends PH",
    Game.FREEFIRE: "Free Fire",
    Game.FREEFIRE_TH: "Free Fire TH",
}


class ProductType(str, Enum):
    """Catalog product type."""

    DIAMONDS = "diamonds"
    SUBSCRIPTION = "subscription"
    SPECIAL = "special"


class VerificationStatus(str, Enum):
    """Outcome of a single verification call."""

    CONFIRMED = "confirmed"
    NOT_FOUND = "not-found"
    ERROR = "error"


class FlowStatus(str, Enum):
    """Top-level checkout state."""

    PENDING = "pending"
    CHECKING = "checking"
    SUCCESS = "success"
    ERROR = "error"


class PollingPhase(str, Enum):
    """Verification polling sub-state."""

    IDLE = "idle"
    AWAITING_FIRST_CHECK = "awaiting_first_check"
    POLLING = "polling"
    STOPPED = "stopped"


# ============================================================================
# Payment Proxy Wire Models
# ============================================================================


class CodeGenerationRequest(BaseModel):
    """POST /api/khqr request body."""

    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(..., alias="bakongAccountID")
    account_name: str = Field(..., alias="accName")
    account_information: str = Field(..., alias="accountInformation")
    currency: str
    amount: Decimal
    address: str

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal) -> float:
        return float(amount)


class CodeGenerationResponse(BaseModel):
    """POST /api/khqr response body."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    code_image: str | None = Field(None, alias="qrImage")
    fingerprint: str | None = Field(None, alias="md5")
    message: str | None = None

    @property
    def is_usable(self) -> bool:
        return bool(self.success and self.code_image and self.fingerprint)


class VerificationRequest(BaseModel):
    """POST /api/verify-payment request body."""

    md5: str = Field(..., min_length=1)


class VerificationResponse(BaseModel):
    """POST /api/verify-payment response body."""

    model_config = ConfigDict(populate_by_name=True)

    response_code: int | None = Field(None, alias="responseCode")
    message: str | None = Field(
        None, validation_alias=AliasChoices("message", "responseMessage")
    )

    @property
    def status(self) -> VerificationStatus:
        if self.response_code == 0:
            return VerificationStatus.CONFIRMED
        if self.response_code == 1:
            return VerificationStatus.NOT_FOUND
        return VerificationStatus.ERROR


class NotificationResponse(BaseModel):
    """POST /api/telegram response body."""

    success: bool = False


class OrderInfo(BaseModel):
    """Order payload signed into the completion token."""

    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str = Field(..., alias="transactionId")
    game: Game
    amount: Decimal
    item: str
    user_id: str = Field(..., alias="userId")
    server_id: str = Field(..., alias="serverId")
    order_id: str = Field(..., alias="orderId")
    order_date: str = Field(..., alias="orderDate")
    main_message: str = Field(..., alias="mainMessage")
    order_message: str = Field(..., alias="orderMessage")

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal) -> float:
        return float(amount)


class NicknameResponse(BaseModel):
    """Nickname lookup result, upstream and on our API."""

    success: bool = False
    name: str = ""


# ============================================================================
# Catalog Models
# ============================================================================


class ProductResponse(BaseModel):
    """Single catalog entry."""

    id: int
    game: Game
    name: str
    price: Decimal
    currency: str
    type: ProductType
    diamonds: int | None = None
    code: str | None = None
    image: str | None = None
    tagname: str | None = None
    reseller_price: bool = False


class ProductGroupResponse(BaseModel):
    """Products of one type."""

    type: ProductType
    products: list[ProductResponse]


class ProductListResponse(BaseModel):
    """GET /v1/products/{game} response."""

    game: Game
    reseller: bool
    groups: list[ProductGroupResponse]


# ============================================================================
# Checkout Models
# ============================================================================


class CheckoutRequest(BaseModel):
    """
    POST /v1/checkout request body - the purchase form.

    The only way to get a discount is a promo code, resolved server-side.
    Unknown fields (such as a client-computed discount) are ignored.
    """

    game: Game
    product_id: int = Field(..., ge=1)
    user_id: str = Field(..., min_length=1, max_length=64)
    server_id: str | None = Field(None, max_length=32)
    nickname: str | None = Field(None, max_length=255)
    promo_code: str | None = Field(None, max_length=64)

    @model_validator(mode="after")
    def validate_server_id(self) -> "CheckoutRequest":
        """Mobile Legends purchases need a server id."""
        if self.game.requires_server_id and not self.server_id:
            raise ValueError("Server ID is required")
        return self


class CheckoutResponse(BaseModel):
    """Checkout view polled by the storefront."""

    checkout_id: str
    status: FlowStatus
    polling: PollingPhase
    amount: Decimal
    currency: str
    code_image: str | None = None
    cooldown_remaining: int = 0
    next_check_in: int = 0
    attempts: int = 0
    transaction_id: str | None = None
    order_id: str | None = None
    notification_sent: bool = False
    error_reason: str | None = None
    error_message: str | None = None
    closed: bool = False


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    version: str
    active_checkouts: int
