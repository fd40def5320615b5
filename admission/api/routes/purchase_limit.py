from typing import Annotated

from fastapi import APIRouter, Depends, Query

from admission.core.config import settings
from admission.core.rate_limit import rate_limit
from admission.schemas.purchase_limit import (
    CheckLimitRequest,
    PurchasedTodayResponse,
    PurchaseLimitResult,
    TrackPurchaseRequest,
    TrackResult,
)
from admission.services.admission import get_admission_service
from admission.services.purchase_limit import PurchaseLimitService, guest_customer_id

router = APIRouter(tags=["Purchase limit"])


def get_purchase_limit_service() -> PurchaseLimitService:
    """Build the purchase limit service on the shared counter store."""
    return PurchaseLimitService(
        get_admission_service().engine.store,
        daily_limit=settings.admission.purchase_daily_limit,
        ttl_seconds=settings.admission.purchase_tracking_ttl_seconds,
    )


PurchaseLimits = Annotated[PurchaseLimitService, Depends(get_purchase_limit_service)]


@router.post(
    "/store/purchase-limit/check",
    response_model=PurchaseLimitResult,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit("cart"))],
)
async def check_purchase_limit(body: CheckLimitRequest, limits: PurchaseLimits) -> PurchaseLimitResult:
    """Check whether a customer may add ``quantity`` units of a variant.

    Guests are identified by their cart. Without a cart there is no tally,
    so only the absolute daily limit is applied. Store failures fail open
    with a warning.
    """
    customer_id = guest_customer_id(body.cart_id) if body.cart_id else None
    return await limits.check(customer_id, body.variant_id, body.quantity)


@router.post(
    "/store/purchase-limit/track",
    response_model=TrackResult,
    dependencies=[Depends(rate_limit("cart"))],
)
async def track_purchase(body: TrackPurchaseRequest, limits: PurchaseLimits) -> TrackResult:
    """Record units added to (or removed from) a cart today."""
    customer_id = guest_customer_id(body.cart_id)
    if body.action == "remove":
        return await limits.untrack(customer_id, body.variant_id, body.quantity)
    return await limits.track(customer_id, body.variant_id, body.quantity)


@router.get(
    "/store/purchase-limit/track",
    response_model=PurchasedTodayResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit("cart"))],
)
async def get_purchased_today(
    limits: PurchaseLimits,
    variant_id: Annotated[str, Query(min_length=1)],
    cart_id: Annotated[str, Query(min_length=1)],
) -> PurchasedTodayResponse:
    """Return today's tally for a guest cart and variant."""
    return await limits.get_purchased_today(guest_customer_id(cart_id), variant_id)
