"""
Catalog Service - Reads products, reseller prices and promo codes from the
hosted database.

Used for the storefront listing and for the live price re-check that guards
payment confirmation against stale quotes.
"""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from topup.db.models import PRODUCT_TABLES, ProductRow, PromoCode, ResellerPrice
from topup.exceptions import CatalogError, ProductNotFoundError
from topup.models.api import Game, ProductType
from topup.models.domain import Product, normalize_promo_code

logger = get_logger(__name__)


def _product_type(raw: str | None) -> ProductType:
    """Untyped rows are diamond packages."""
    if not raw:
        return ProductType.DIAMONDS
    try:
        return ProductType(raw)
    except ValueError:
        logger.warning("unknown_product_type", product_type=raw)
        return ProductType.SPECIAL


def _to_product(row: ProductRow, game: Game, reseller_price: Decimal | None = None) -> Product:
    return Product(
        id=row.id,
        game=game,
        name=row.name,
        price=reseller_price if reseller_price is not None else Decimal(row.price),
        currency=row.currency or "USD",
        type=_product_type(row.type),
        diamonds=row.diamonds or None,
        code=row.code or None,
        image=row.image or None,
        tagname=row.tagname or None,
        reseller_price=reseller_price is not None,
    )


def group_products(products: list[Product]) -> dict[ProductType, list[Product]]:
    """
    Group products by type for display.

    Groups keep first-seen order; diamond packages are sorted by amount.
    """
    groups: dict[ProductType, list[Product]] = {}
    for product in products:
        groups.setdefault(product.type, []).append(product)

    if ProductType.DIAMONDS in groups:
        groups[ProductType.DIAMONDS].sort(key=lambda p: p.diamonds or 0)
    return groups


class CatalogService:
    """Catalog reads against the hosted database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """Initialize with a session factory; each call opens its own session."""
        self.session_factory = session_factory

    async def _reseller_prices(self, session: AsyncSession, game: Game) -> dict[int, Decimal]:
        stmt = select(ResellerPrice).where(ResellerPrice.game == game.value)
        result = await session.execute(stmt)
        return {row.product_id: Decimal(row.price) for row in result.scalars().all()}

    async def list_products(self, game: Game, reseller: bool = False) -> list[Product]:
        """
        List a game's products ordered by id.

        Resellers see their override price wherever one exists.

        Raises:
            CatalogError: If the database cannot be read
        """
        model = PRODUCT_TABLES[game]
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(model).order_by(model.id))
                rows = result.scalars().all()
                overrides = await self._reseller_prices(session, game) if reseller else {}
        except SQLAlchemyError as exc:
            logger.error("catalog_list_failed", game=game.value, error=str(exc))
            raise CatalogError(str(exc)) from exc

        return [_to_product(row, game, overrides.get(row.id)) for row in rows]

    async def get_product(self, game: Game, product_id: int, reseller: bool = False) -> Product:
        """
        Load one product as priced for this shopper.

        Raises:
            ProductNotFoundError: If the product does not exist
            CatalogError: If the database cannot be read
        """
        model = PRODUCT_TABLES[game]
        try:
            async with self.session_factory() as session:
                result = await session.execute(select(model).where(model.id == product_id))
                row = result.scalar_one_or_none()
                override = None
                if row is not None and reseller:
                    override = await self._reseller_price(session, game, product_id)
        except SQLAlchemyError as exc:
            logger.error(
                "catalog_get_failed", game=game.value, product_id=product_id, error=str(exc)
            )
            raise CatalogError(str(exc)) from exc

        if row is None:
            raise ProductNotFoundError(game.value, product_id)
        return _to_product(row, game, override)

    async def current_price(self, product: Product, reseller: bool) -> Decimal | None:
        """
        Live undiscounted price for the confirmation re-check.

        Returns None when the product has been removed from the catalog.
        """
        model = PRODUCT_TABLES[product.game]
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(model.price).where(model.id == product.id)
                )
                price = result.scalar_one_or_none()
                if price is None:
                    return None
                if reseller:
                    override = await self._reseller_price(session, product.game, product.id)
                    if override is not None:
                        return override
        except SQLAlchemyError as exc:
            logger.error(
                "catalog_price_check_failed",
                game=product.game.value,
                product_id=product.id,
                error=str(exc),
            )
            raise CatalogError(str(exc)) from exc

        return Decimal(price)

    async def _reseller_price(
        self, session: AsyncSession, game: Game, product_id: int
    ) -> Decimal | None:
        stmt = select(ResellerPrice.price).where(
            ResellerPrice.product_id == product_id,
            ResellerPrice.game == game.value,
        )
        result = await session.execute(stmt)
        price = result.scalar_one_or_none()
        return Decimal(price) if price is not None else None

    async def promo_discount(self, code: str) -> Decimal | None:
        """
        Discount percent granted by a promo code.

        Codes are matched case-insensitively. Returns None for unknown or
        deactivated codes.

        Raises:
            CatalogError: If the database cannot be read
        """
        stmt = select(PromoCode.discount_percent).where(
            PromoCode.code == normalize_promo_code(code),
            PromoCode.is_active.is_(True),
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt)
                discount = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.error("promo_code_lookup_failed", error=str(exc))
            raise CatalogError(str(exc)) from exc

        return Decimal(discount) if discount is not None else None
