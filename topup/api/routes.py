"""
API Routes - FastAPI endpoints for the top-up storefront.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from topup.api.dependencies import (
    get_catalog,
    get_nickname_service,
    get_registry,
    is_reseller,
)
from topup.config import settings
from topup.db.session import get_db
from topup.exceptions import (
    CatalogError,
    CheckoutError,
    CheckoutNotFoundError,
    NicknameLookupError,
    ProductNotFoundError,
)
from topup.models.api import (
    CheckoutRequest,
    CheckoutResponse,
    Game,
    HealthResponse,
    NicknameResponse,
    ProductGroupResponse,
    ProductListResponse,
    ProductResponse,
)
from topup.models.domain import Product, PurchaseIntent, normalize_promo_code
from topup.observability.logging import log_context
from topup.services.catalog import CatalogService, group_products
from topup.services.checkout_registry import CheckoutRegistry
from topup.services.nickname import NicknameService

logger = get_logger(__name__)

router = APIRouter()


def _product_response(product: Product) -> ProductResponse:
    return ProductResponse(
        id=product.id,
        game=product.game,
        name=product.name,
        price=product.price,
        currency=product.currency,
        type=product.type,
        diamonds=product.diamonds,
        code=product.code,
        image=product.image,
        tagname=product.tagname,
        reseller_price=product.reseller_price,
    )


# =============================================================================
# Catalog
# =============================================================================


@router.get("/v1/products/{game}", response_model=ProductListResponse)
async def list_products(
    game: Game,
    reseller: bool = Depends(is_reseller),
    catalog: CatalogService = Depends(get_catalog),
) -> ProductListResponse:
    """
    List a game's products grouped by type.

    Auth: optional X-Reseller-Key header switches to reseller pricing.
    """
    try:
        products = await catalog.list_products(game, reseller=reseller)
    except CatalogError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to load products",
        ) from exc

    groups = [
        ProductGroupResponse(
            type=product_type,
            products=[_product_response(p) for p in items],
        )
        for product_type, items in group_products(products).items()
    ]
    return ProductListResponse(game=game, reseller=reseller, groups=groups)


@router.get("/v1/nickname/mlbb", response_model=NicknameResponse)
async def lookup_nickname(
    user_id: str = Query(..., min_length=1, max_length=64),
    zone_id: str = Query(..., min_length=1, max_length=32),
    nicknames: NicknameService = Depends(get_nickname_service),
) -> NicknameResponse:
    """Resolve a Mobile Legends account name before checkout."""
    try:
        return await nicknames.lookup(user_id, zone_id)
    except NicknameLookupError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to validate account",
        ) from exc


# =============================================================================
# Checkout
# =============================================================================


@router.post(
    "/v1/checkout",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
)
async def open_checkout(
    request: CheckoutRequest,
    reseller: bool = Depends(is_reseller),
    catalog: CatalogService = Depends(get_catalog),
    registry: CheckoutRegistry = Depends(get_registry),
) -> CheckoutResponse:
    """
    Open a checkout and request its payment code.

    The product, its price and any promo discount are resolved server-side;
    the client only names the product and the promo code. An unknown or
    inactive promo code is rejected. Opening closes the buyer's previous
    checkout for the game.

    Payment errors (amount too small, cooldown, provider failure) do not fail
    the request: they are reported in the returned checkout view.
    """
    try:
        product = await catalog.get_product(request.game, request.product_id, reseller=reseller)
    except ProductNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except CatalogError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to load product",
        ) from exc

    promo_code = normalize_promo_code(request.promo_code or "") or None
    discount = Decimal(0)
    if promo_code:
        try:
            promo_discount = await catalog.promo_discount(promo_code)
        except CatalogError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to check promo code",
            ) from exc
        if promo_discount is None:
            logger.info("promo_code_rejected", promo_code=promo_code)
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Invalid promo code",
            )
        discount = promo_discount

    try:
        intent = PurchaseIntent(
            buyer_account_id=request.user_id,
            product=product,
            buyer_sub_account_id=request.server_id,
            discount_percent=discount,
            promo_code=promo_code,
            nickname=request.nickname,
            reseller=reseller,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc

    flow = registry.open(intent)
    with log_context(checkout_id=flow.checkout_id, game=intent.product.game.value):
        try:
            await flow.request_code()
        except CheckoutError as exc:
            logger.info("checkout_code_not_issued", reason=exc.reason)

    return flow.view()


@router.get("/v1/checkout/{checkout_id}", response_model=CheckoutResponse)
async def get_checkout(
    checkout_id: str,
    registry: CheckoutRegistry = Depends(get_registry),
) -> CheckoutResponse:
    """Current checkout view; the storefront polls this while the shopper pays."""
    try:
        return registry.get(checkout_id).view()
    except CheckoutNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc


@router.delete("/v1/checkout/{checkout_id}", response_model=CheckoutResponse)
async def close_checkout(
    checkout_id: str,
    registry: CheckoutRegistry = Depends(get_registry),
) -> CheckoutResponse:
    """Close a checkout and stop all of its timers."""
    try:
        flow = registry.close(checkout_id)
    except CheckoutNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return flow.view()


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    registry: CheckoutRegistry = Depends(get_registry),
) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_check_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "database": "disconnected", "error": str(exc)},
        ) from exc

    return HealthResponse(
        status="healthy",
        version=settings.api_version,
        active_checkouts=registry.active_count,
    )
