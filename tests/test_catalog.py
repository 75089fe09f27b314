"""
Tests for CatalogService and product grouping.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from topup.db.models import FreeFireProduct, MLBBProduct, ResellerPrice
from topup.exceptions import CatalogError, ProductNotFoundError
from topup.models.api import Game, ProductType
from topup.models.domain import Product
from topup.services.catalog import CatalogService, _product_type, group_products


def _row(id: int, price: str, diamonds: int | None = None, type: str | None = None):
    return MLBBProduct(
        id=id,
        name=f"Package {id}",
        price=Decimal(price),
        currency="USD",
        diamonds=diamonds,
        type=type,
    )


def _product(id: int, type: ProductType, diamonds: int | None = None) -> Product:
    return Product(
        id=id,
        game=Game.MLBB,
        name=f"Package {id}",
        price=Decimal("1.00"),
        currency="USD",
        type=type,
        diamonds=diamonds,
    )


class TestProductType:
    def test_missing_type_is_diamonds(self):
        assert _product_type(None) is ProductType.DIAMONDS
        assert _product_type("") is ProductType.DIAMONDS

    def test_known_types(self):
        assert _product_type("subscription") is ProductType.SUBSCRIPTION
        assert _product_type("special") is ProductType.SPECIAL

    def test_unknown_type_is_special(self):
        assert _product_type("bundle") is ProductType.SPECIAL


class TestGroupProducts:
    def test_groups_by_type_in_first_seen_order(self):
        products = [
            _product(1, ProductType.SUBSCRIPTION),
            _product(2, ProductType.DIAMONDS, diamonds=100),
            _product(3, ProductType.SPECIAL),
        ]

        groups = group_products(products)

        assert list(groups) == [
            ProductType.SUBSCRIPTION,
            ProductType.DIAMONDS,
            ProductType.SPECIAL,
        ]

    def test_diamonds_sorted_by_amount(self):
        products = [
            _product(1, ProductType.DIAMONDS, diamonds=500),
            _product(2, ProductType.DIAMONDS, diamonds=86),
            _product(3, ProductType.DIAMONDS, diamonds=172),
        ]

        groups = group_products(products)

        assert [p.diamonds for p in groups[ProductType.DIAMONDS]] == [86, 172, 500]

    def test_empty(self):
        assert group_products([]) == {}


class TestListProducts:
    @pytest.mark.asyncio
    async def test_retail_prices(self, session_factory, db_session, query_result):
        db_session.execute = AsyncMock(
            return_value=query_result(rows=[_row(1, "1.50", diamonds=86), _row(2, "3.00", diamonds=172)])
        )
        service = CatalogService(session_factory)

        products = await service.list_products(Game.MLBB)

        assert [p.price for p in products] == [Decimal("1.50"), Decimal("3.00")]
        assert all(not p.reseller_price for p in products)
        assert products[0].type is ProductType.DIAMONDS
        assert db_session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_reseller_overrides(self, session_factory, db_session, query_result):
        overrides = [ResellerPrice(id=1, product_id=2, game="mlbb", price=Decimal("2.70"))]
        db_session.execute = AsyncMock(
            side_effect=[
                query_result(rows=[_row(1, "1.50"), _row(2, "3.00")]),
                query_result(rows=overrides),
            ]
        )
        service = CatalogService(session_factory)

        products = await service.list_products(Game.MLBB, reseller=True)

        assert products[0].price == Decimal("1.50")
        assert products[0].reseller_price is False
        assert products[1].price == Decimal("2.70")
        assert products[1].reseller_price is True

    @pytest.mark.asyncio
    async def test_database_error(self, session_factory, db_session):
        db_session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))
        service = CatalogService(session_factory)

        with pytest.raises(CatalogError):
            await service.list_products(Game.FREEFIRE)


class TestGetProduct:
    @pytest.mark.asyncio
    async def test_found(self, session_factory, db_session, query_result):
        row = FreeFireProduct(
            id=3, name="Weekly", price=Decimal("1.99"), currency="USD", type="subscription", code="weekly"
        )
        db_session.execute = AsyncMock(return_value=query_result(scalar=row))
        service = CatalogService(session_factory)

        product = await service.get_product(Game.FREEFIRE, 3)

        assert product.game is Game.FREEFIRE
        assert product.type is ProductType.SUBSCRIPTION
        assert product.identifier == "weekly"

    @pytest.mark.asyncio
    async def test_reseller_price_applied(self, session_factory, db_session, query_result):
        db_session.execute = AsyncMock(
            side_effect=[
                query_result(scalar=_row(7, "10.00", diamonds=500)),
                query_result(scalar=Decimal("9.10")),
            ]
        )
        service = CatalogService(session_factory)

        product = await service.get_product(Game.MLBB, 7, reseller=True)

        assert product.price == Decimal("9.10")
        assert product.reseller_price is True

    @pytest.mark.asyncio
    async def test_not_found(self, session_factory, db_session, query_result):
        db_session.execute = AsyncMock(return_value=query_result(scalar=None))
        service = CatalogService(session_factory)

        with pytest.raises(ProductNotFoundError) as exc_info:
            await service.get_product(Game.MLBB, 99)

        assert exc_info.value.product_id == 99


class TestCurrentPrice:
    @pytest.mark.asyncio
    async def test_retail(self, session_factory, db_session, query_result, mlbb_product):
        db_session.execute = AsyncMock(return_value=query_result(scalar=Decimal("10.00")))
        service = CatalogService(session_factory)

        assert await service.current_price(mlbb_product, reseller=False) == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_reseller_override_preferred(self, session_factory, db_session, query_result, mlbb_product):
        db_session.execute = AsyncMock(
            side_effect=[query_result(scalar=Decimal("10.00")), query_result(scalar=Decimal("9.10"))]
        )
        service = CatalogService(session_factory)

        assert await service.current_price(mlbb_product, reseller=True) == Decimal("9.10")

    @pytest.mark.asyncio
    async def test_reseller_without_override_gets_retail(
        self, session_factory, db_session, query_result, mlbb_product
    ):
        db_session.execute = AsyncMock(
            side_effect=[query_result(scalar=Decimal("10.00")), query_result(scalar=None)]
        )
        service = CatalogService(session_factory)

        assert await service.current_price(mlbb_product, reseller=True) == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_removed_product(self, session_factory, db_session, query_result, mlbb_product):
        db_session.execute = AsyncMock(return_value=query_result(scalar=None))
        service = CatalogService(session_factory)

        assert await service.current_price(mlbb_product, reseller=False) is None

    @pytest.mark.asyncio
    async def test_database_error(self, session_factory, db_session, mlbb_product):
        db_session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))
        service = CatalogService(session_factory)

        with pytest.raises(CatalogError):
            await service.current_price(mlbb_product, reseller=False)


class TestPromoDiscount:
    @pytest.mark.asyncio
    async def test_active_code(self, session_factory, db_session, query_result):
        db_session.execute = AsyncMock(return_value=query_result(scalar=Decimal("15.00")))
        service = CatalogService(session_factory)

        assert await service.promo_discount(" save15 ") == Decimal("15.00")

        stmt = db_session.execute.call_args.args[0]
        params = stmt.compile().params
        assert "SAVE15" in params.values()

    @pytest.mark.asyncio
    async def test_unknown_or_inactive_code(self, session_factory, db_session, query_result):
        db_session.execute = AsyncMock(return_value=query_result(scalar=None))
        service = CatalogService(session_factory)

        assert await service.promo_discount("EXPIRED") is None

    @pytest.mark.asyncio
    async def test_database_error(self, session_factory, db_session):
        db_session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))
        service = CatalogService(session_factory)

        with pytest.raises(CatalogError):
            await service.promo_discount("SAVE15")
