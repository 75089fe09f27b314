"""
FastAPI Dependencies - Shared services and reseller detection.

Services are process-wide singletons: open checkouts must survive across
requests, and the HTTP clients keep their connection pools.
"""

import secrets

from fastapi import Header
from structlog import get_logger

from topup.config import settings
from topup.db.session import get_session_factory
from topup.models.domain import DestinationConfig
from topup.services.catalog import CatalogService
from topup.services.checkout_registry import CheckoutRegistry
from topup.services.khqr_provider import KHQRProvider
from topup.services.nickname import NicknameService
from topup.services.notifier import RelayNotifier
from topup.services.payment_flow import FlowTimings

logger = get_logger(__name__)

_catalog: CatalogService | None = None
_provider: KHQRProvider | None = None
_notifier: RelayNotifier | None = None
_nickname: NicknameService | None = None
_registry: CheckoutRegistry | None = None


def destination_from_settings() -> DestinationConfig:
    """Merchant account every payment code pays into."""
    return DestinationConfig(
        account_id=settings.khqr_account_id,
        account_name=settings.khqr_account_name,
        account_information=settings.khqr_account_information,
        currency=settings.khqr_currency,
        address=settings.khqr_address,
    )


def get_catalog() -> CatalogService:
    global _catalog
    if _catalog is None:
        _catalog = CatalogService(get_session_factory())
    return _catalog


def get_provider() -> KHQRProvider:
    global _provider
    if _provider is None:
        _provider = KHQRProvider(
            settings.payment_api_base_url, timeout=settings.http_timeout_seconds
        )
    return _provider


def get_notifier() -> RelayNotifier:
    global _notifier
    if _notifier is None:
        _notifier = RelayNotifier(
            get_session_factory(),
            settings.payment_api_base_url,
            timeout=settings.http_timeout_seconds,
        )
    return _notifier


def get_nickname_service() -> NicknameService:
    global _nickname
    if _nickname is None:
        _nickname = NicknameService(
            settings.nickname_api_base_url, timeout=settings.http_timeout_seconds
        )
    return _nickname


def get_registry() -> CheckoutRegistry:
    """Get or create the checkout registry."""
    global _registry
    if _registry is None:
        _registry = CheckoutRegistry(
            provider=get_provider(),
            price_source=get_catalog(),
            notifier=get_notifier(),
            destination=destination_from_settings(),
            timings=FlowTimings.from_settings(settings),
            retention_seconds=settings.checkout_retention_seconds,
        )
    return _registry


async def is_reseller(x_reseller_key: str | None = Header(None)) -> bool:
    """
    Resellers identify themselves with the X-Reseller-Key header.

    A missing or wrong key silently falls back to retail prices.
    """
    if not x_reseller_key or not settings.reseller_api_key:
        return False
    matches = secrets.compare_digest(x_reseller_key, settings.reseller_api_key)
    if not matches:
        logger.warning("reseller_key_rejected")
    return matches


async def close_services() -> None:
    """
    Cancel open checkouts and close HTTP clients (for graceful shutdown).

    Polls already in flight finish before their clients are closed; their
    results are ignored because the checkouts are closed.
    """
    global _catalog, _provider, _notifier, _nickname, _registry

    if _registry is not None:
        await _registry.aclose()
    for client in (_provider, _notifier, _nickname):
        if client is not None:
            await client.aclose()

    _catalog = _provider = _notifier = _nickname = _registry = None
