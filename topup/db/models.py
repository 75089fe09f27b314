"""
Database Models - SQLAlchemy ORM models with strict typing.

Maps the storefront tables owned by the hosted backend. Schema changes are
made there, not from this service.
"""

from decimal import Decimal

from sqlalchemy import BigInteger, Boolean, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from topup.models.api import Game


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class ProductRow:
    """
    Columns shared by every per-game product table.

    Each game keeps its own table with an identical layout.
    """

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    diamonds: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    image: Mapped[str | None] = mapped_column(Text, nullable=True)
    code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tagname: Mapped[str | None] = mapped_column(String(64), nullable=True)


class MLBBProduct(ProductRow, Base):
    __tablename__ = "mlbb_products"


class MLBBPHProduct(ProductRow, Base):
    __tablename__ = "mlbb_ph_products"


class FreeFireProduct(ProductRow, Base):
    __tablename__ = "freefire_products"


class FreeFireTHProduct(ProductRow, Base):
    __tablename__ = "freefire_th_products"


class ResellerPrice(Base):
    """ORM model for reseller_prices table - per-product reseller overrides."""

    __tablename__ = "reseller_prices"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    game: Mapped[str] = mapped_column(String(32), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)


class PromoCode(Base):
    """ORM model for promo_codes table - storefront-wide percentage discounts."""

    __tablename__ = "promo_codes"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


PRODUCT_TABLES: dict[Game, type[ProductRow]] = {
    Game.MLBB: MLBBProduct,
    Game.MLBB_PH: MLBBPHProduct,
    Game.FREEFIRE: FreeFireProduct,
    Game.FREEFIRE_TH: FreeFireTHProduct,
}
