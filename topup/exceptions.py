"""
Exception Classes - Strongly typed exception hierarchy.

Every exception carries typed attributes and a stable ``reason`` string the
storefront can switch on.
"""

from decimal import Decimal


class CheckoutError(Exception):
    """Base exception for all checkout errors."""

    reason = "checkout_error"


class AmountTooSmallError(CheckoutError):
    """Raised when the discounted amount is below the provider minimum."""

    reason = "amount_too_small"

    def __init__(self, amount: Decimal, minimum: Decimal) -> None:
        self.amount = amount
        self.minimum = minimum
        super().__init__(
            f"Amount must be at least {minimum} USD, got {amount}. "
            "Please remove the promo code for small purchases."
        )


class CooldownActiveError(CheckoutError):
    """Raised when a new payment code is requested too soon after the last one."""

    reason = "cooldown_active"

    def __init__(self, remaining_seconds: int) -> None:
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"Please wait {remaining_seconds}s before generating a new QR code"
        )


class PaymentProviderError(CheckoutError):
    """Raised when the payment provider call fails."""

    reason = "provider_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class VerificationError(CheckoutError):
    """Raised when verification returns neither confirmed nor not-found."""

    reason = "verification_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment verification failed: {message}")


class VerificationTimeoutError(CheckoutError):
    """Raised when the polling budget runs out without confirmation."""

    reason = "verification_timeout"

    def __init__(self, attempts: int, elapsed_seconds: float) -> None:
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds
        super().__init__(
            "Payment verification timeout after "
            f"{attempts} checks ({elapsed_seconds:.0f}s). "
            "Please try again or contact support if payment was made."
        )


class CodeExpiredError(CheckoutError):
    """Raised when the payment code validity window elapses."""

    reason = "code_expired"

    def __init__(self, validity_seconds: float) -> None:
        self.validity_seconds = validity_seconds
        super().__init__("QR code has expired. Please try again.")


class PriceMismatchError(CheckoutError):
    """Raised when the live catalog price no longer matches the quoted amount."""

    reason = "price_mismatch"

    def __init__(self, quoted: Decimal, current: Decimal | None) -> None:
        self.quoted = quoted
        self.current = current
        if current is None:
            message = "Failed to verify current price"
        else:
            message = f"Price has changed from {quoted} to {current}. Please refresh and try again."
        super().__init__(message)


class NotificationError(CheckoutError):
    """Raised when the completion notification fails after payment was confirmed."""

    reason = "notification_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidFlowStateError(CheckoutError):
    """Raised when an operation is not allowed in the current flow state."""

    reason = "invalid_state"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class CheckoutNotFoundError(CheckoutError):
    """Raised when a checkout id is unknown or already closed."""

    reason = "checkout_not_found"

    def __init__(self, checkout_id: str) -> None:
        self.checkout_id = checkout_id
        super().__init__(f"Checkout not found: {checkout_id}")


class ProductNotFoundError(CheckoutError):
    """Raised when a product does not exist in the game's catalog."""

    reason = "product_not_found"

    def __init__(self, game: str, product_id: int) -> None:
        self.game = game
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found for {game}")


class CatalogError(CheckoutError):
    """Raised when the hosted catalog cannot be read."""

    reason = "catalog_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Catalog unavailable: {message}")


class NicknameLookupError(CheckoutError):
    """Raised when the nickname lookup service cannot be reached."""

    reason = "nickname_lookup_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Nickname lookup failed: {message}")
