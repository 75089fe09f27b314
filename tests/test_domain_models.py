"""
Tests for domain models and amount arithmetic.
"""

from dataclasses import FrozenInstanceError
from decimal import Decimal

import pytest

from topup.models.api import Game, ProductType
from topup.models.domain import (
    MINIMUM_AMOUNT,
    Product,
    PurchaseIntent,
    compute_amount,
    discounted_price,
    normalize_promo_code,
    round2,
)


class TestAmounts:
    def test_round_half_up(self):
        assert round2(Decimal("0.005")) == Decimal("0.01")
        assert round2(Decimal("0.004")) == Decimal("0.00")
        assert round2(Decimal("2.675")) == Decimal("2.68")

    def test_compute_amount(self):
        assert compute_amount(Decimal("10.00"), Decimal("0")) == Decimal("10.00")
        assert compute_amount(Decimal("10.00"), Decimal("15")) == Decimal("8.50")
        assert compute_amount(Decimal("1.99"), Decimal("33")) == Decimal("1.33")
        assert compute_amount(Decimal("10.00"), Decimal("100")) == Decimal("0.00")

    def test_discounted_price_keeps_fraction(self):
        assert discounted_price(Decimal("10.00"), Decimal("99.95")) == Decimal("0.005")
        assert compute_amount(Decimal("10.00"), Decimal("99.95")) == Decimal("0.01")

    def test_promo_code_normalized(self):
        assert normalize_promo_code("  save20 ") == "SAVE20"

    def test_minimum_amount(self):
        assert MINIMUM_AMOUNT == Decimal("0.01")


class TestProduct:
    def test_identifier_prefers_code(self, freefire_product):
        assert freefire_product.identifier == "weekly"

    def test_identifier_falls_back_to_diamonds(self, mlbb_product):
        assert mlbb_product.identifier == "500"

    def test_display_name(self, mlbb_product, freefire_product):
        assert mlbb_product.display_name == "500 diamond"
        assert freefire_product.display_name == "Weekly Membership"

    def test_frozen(self, mlbb_product):
        with pytest.raises(FrozenInstanceError):
            mlbb_product.price = Decimal("1.00")


class TestPurchaseIntent:
    def test_amount_applies_discount(self, mlbb_product):
        intent = PurchaseIntent(
            buyer_account_id="1",
            buyer_sub_account_id="2",
            product=mlbb_product,
            discount_percent=Decimal("10"),
        )
        assert intent.amount == Decimal("9.00")

    def test_user_id_required(self, freefire_product):
        with pytest.raises(ValueError, match="User ID is required"):
            PurchaseIntent(buyer_account_id="", product=freefire_product)

    @pytest.mark.parametrize("game", [Game.MLBB, Game.MLBB_PH])
    def test_server_id_required_for_mobile_legends(self, game):
        product = Product(
            id=1, game=game, name="86", price=Decimal("1.50"), currency="USD", type=ProductType.DIAMONDS
        )
        with pytest.raises(ValueError, match="Server ID is required"):
            PurchaseIntent(buyer_account_id="1", product=product)

    @pytest.mark.parametrize("discount", [Decimal("-1"), Decimal("100.01")])
    def test_discount_bounds(self, freefire_product, discount):
        with pytest.raises(ValueError, match="Invalid discount"):
            PurchaseIntent(buyer_account_id="1", product=freefire_product, discount_percent=discount)

    def test_free_fire_server_is_zero(self, freefire_product):
        intent = PurchaseIntent(
            buyer_account_id="1", buyer_sub_account_id="777", product=freefire_product
        )
        assert intent.server_id == "0"

    def test_mobile_legends_server(self, intent):
        assert intent.server_id == "2001"

    def test_cooldown_key(self, intent):
        assert intent.cooldown_key == "mlbb:12345678"


class TestGame:
    def test_display_names(self):
        assert Game.MLBB.display_name == "Mobile Legends"
        assert Game.FREEFIRE_TH.display_name == "Free Fire TH"

    def test_requires_server_id(self):
        assert Game.MLBB.requires_server_id
        assert Game.MLBB_PH.requires_server_id
        assert not Game.FREEFIRE.requires_server_id
        assert not Game.FREEFIRE_TH.requires_server_id
