"""
Domain Models - Internal business logic models using dataclasses.

All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from topup.models.api import Game, ProductType, VerificationStatus

CENT = Decimal("0.01")
MINIMUM_AMOUNT = CENT
PRICE_TOLERANCE = CENT


def round2(value: Decimal) -> Decimal:
    """Round to cents, halves away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def discounted_price(price: Decimal, discount_percent: Decimal) -> Decimal:
    """Price after discount, before rounding."""
    return price * (100 - discount_percent) / 100


def compute_amount(price: Decimal, discount_percent: Decimal) -> Decimal:
    """Apply the discount once, then round to cents."""
    return round2(discounted_price(price, discount_percent))


def normalize_promo_code(code: str) -> str:
    return code.strip().upper()


@dataclass(frozen=True)
class Product:
    """Catalog product as priced for the current shopper."""

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

    @property
    def identifier(self) -> str:
        """Token the fulfilment bot understands: code, else diamonds, else name."""
        if self.code:
            return self.code
        if self.diamonds:
            return str(self.diamonds)
        return self.name

    @property
    def display_name(self) -> str:
        return f"{self.diamonds} diamond" if self.diamonds else self.name


@dataclass(frozen=True)
class DestinationConfig:
    """Merchant account a payment code pays into."""

    account_id: str
    account_name: str
    account_information: str
    currency: str
    address: str


@dataclass(frozen=True)
class PurchaseIntent:
    """The shopper's selection before payment is confirmed."""

    buyer_account_id: str
    product: Product
    buyer_sub_account_id: str | None = None
    discount_percent: Decimal = Decimal(0)
    promo_code: str | None = None
    nickname: str | None = None
    reseller: bool = False

    def __post_init__(self) -> None:
        """Validate purchase form constraints."""
        if not self.buyer_account_id:
            raise ValueError("User ID is required")
        if self.product.game.requires_server_id and not self.buyer_sub_account_id:
            raise ValueError("Server ID is required")
        if not Decimal(0) <= self.discount_percent <= Decimal(100):
            raise ValueError(f"Invalid discount percent: {self.discount_percent}")

    @property
    def server_id(self) -> str:
        """Free Fire has no zones; the fulfilment format always carries "0"."""
        if self.product.game.requires_server_id:
            return self.buyer_sub_account_id or ""
        return "0"

    @property
    def unrounded_amount(self) -> Decimal:
        return discounted_price(self.product.price, self.discount_percent)

    @property
    def amount(self) -> Decimal:
        return compute_amount(self.product.price, self.discount_percent)

    @property
    def cooldown_key(self) -> str:
        return f"{self.product.game.value}:{self.buyer_account_id}"


@dataclass(frozen=True)
class PaymentCode:
    """Scannable payment instruction issued by the provider."""

    image: str
    fingerprint: str
    amount: Decimal
    generated_at: float


@dataclass(frozen=True)
class VerificationAttempt:
    """One verification call and its outcome."""

    index: int
    status: VerificationStatus
    checked_at: float
    message: str | None = None


@dataclass(frozen=True)
class CompletionRecord:
    """Created exactly once per confirmed payment."""

    transaction_id: str
    order_id: str
    final_amount: Decimal
    notification_sent: bool = False
