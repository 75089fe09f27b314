"""
Collaborator Protocols - the remote operations the checkout depends on.

Any payment proxy, catalog or notification relay must implement these
interfaces; the payment confirmation flow never talks to HTTP or SQL directly.
"""

from decimal import Decimal
from typing import Protocol

from topup.models.api import (
    CodeGenerationRequest,
    CodeGenerationResponse,
    OrderInfo,
    VerificationResponse,
)
from topup.models.domain import Product


class PaymentCodeProvider(Protocol):
    """Issues payment codes and reports their settlement status."""

    async def generate_code(self, request: CodeGenerationRequest) -> CodeGenerationResponse:
        """
        Create a payment code for an amount and destination account.

        Returns:
            A response whose ``is_usable`` is True

        Raises:
            PaymentProviderError: If the provider fails or returns no usable code
        """
        ...

    async def verify_code(self, fingerprint: str) -> VerificationResponse:
        """
        Query the settlement status of a payment code.

        Raises:
            PaymentProviderError: If the call itself fails
        """
        ...


class PriceSource(Protocol):
    """Supplies live prices and promo discounts for the confirmation re-check."""

    async def current_price(self, product: Product, reseller: bool) -> Decimal | None:
        """
        Current undiscounted price, or None if the product no longer exists.

        Raises:
            CatalogError: If the catalog cannot be read
        """
        ...

    async def promo_discount(self, code: str) -> Decimal | None:
        """
        Discount percent of an active promo code, or None if it is unknown or
        no longer active.

        Raises:
            CatalogError: If the catalog cannot be read
        """
        ...


class CompletionNotifier(Protocol):
    """Sends the one-time order confirmation."""

    async def notify(self, order: OrderInfo) -> None:
        """
        Deliver the order confirmation.

        Raises:
            NotificationError: If the token cannot be minted or the relay rejects it
        """
        ...
