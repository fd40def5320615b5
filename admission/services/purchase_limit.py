"""Daily per-product purchase limit.

Each customer may buy at most ``daily_limit`` units of a product variant per
UTC day. Tallies live in the shared counter store under
``purchase:<customer>:<variant>:<YYYY-MM-DD>`` with a TTL long enough to
outlive the day in every timezone.

Like admission control, this check fails open: if the store is down the
purchase is allowed and the response carries a warning.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from admission.adapters.store.base import AbstractCounterStore
from admission.core.errors import StoreUnavailableError
from admission.core.logging import hash_key
from admission.schemas.purchase_limit import (
    PurchasedTodayResponse,
    PurchaseLimitResult,
    TrackResult,
)

logger = logging.getLogger(__name__)

DAILY_PURCHASE_LIMIT = 10
PURCHASE_TRACKING_TTL_SECONDS = 48 * 60 * 60

UNVERIFIED_WARNING = "Could not verify limit - allowing purchase"


def guest_customer_id(cart_id: str) -> str:
    """Customer identifier for a guest, derived from the cart."""
    return f"guest:{cart_id}"


class PurchaseLimitService:
    """Tracks purchased units per customer, variant and UTC day."""

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        daily_limit: int = DAILY_PURCHASE_LIMIT,
        ttl_seconds: int = PURCHASE_TRACKING_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if daily_limit < 1:
            raise ValueError("daily_limit must be >= 1")
        self._store = store
        self._daily_limit = daily_limit
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def daily_limit(self) -> int:
        return self._daily_limit

    def tracking_key(self, customer_id: str, variant_id: str) -> str:
        today = datetime.fromtimestamp(self._clock(), tz=timezone.utc).strftime("%Y-%m-%d")
        return f"purchase:{customer_id}:{variant_id}:{today}"

    def _remaining(self, purchased: int) -> int:
        return max(0, self._daily_limit - purchased)

    async def _purchased(self, customer_id: str, variant_id: str) -> int | None:
        try:
            return await self._store.get_counter(self.tracking_key(customer_id, variant_id))
        except StoreUnavailableError as exc:
            logger.warning(
                "purchase_limit.read_failed",
                extra={"customer_hash": hash_key(customer_id), "error_code": exc.code},
            )
            return None

    async def get_purchased_today(self, customer_id: str, variant_id: str) -> PurchasedTodayResponse:
        purchased = await self._purchased(customer_id, variant_id)
        if purchased is None:
            return PurchasedTodayResponse(
                currently_purchased=0,
                remaining=self._daily_limit,
                limit=self._daily_limit,
                warning="Could not retrieve limit data",
            )
        return PurchasedTodayResponse(
            currently_purchased=purchased,
            remaining=self._remaining(purchased),
            limit=self._daily_limit,
        )

    async def check(
        self,
        customer_id: str | None,
        variant_id: str,
        quantity: int,
    ) -> PurchaseLimitResult:
        """Check whether ``quantity`` more units fit today's limit.

        Without a customer there is nothing tracked, so only the absolute
        limit applies.
        """
        if customer_id is None:
            return PurchaseLimitResult(
                allowed=quantity <= self._daily_limit,
                currently_purchased=0,
                remaining=self._daily_limit,
                limit=self._daily_limit,
                requested_quantity=quantity,
            )

        purchased = await self._purchased(customer_id, variant_id)
        if purchased is None:
            return PurchaseLimitResult(
                allowed=True,
                currently_purchased=0,
                remaining=self._daily_limit,
                limit=self._daily_limit,
                requested_quantity=quantity,
                warning=UNVERIFIED_WARNING,
            )

        remaining = self._remaining(purchased)
        return PurchaseLimitResult(
            allowed=quantity <= remaining,
            currently_purchased=purchased,
            remaining=remaining,
            limit=self._daily_limit,
            requested_quantity=quantity,
        )

    async def track(self, customer_id: str, variant_id: str, quantity: int) -> TrackResult:
        """Add purchased units to today's tally and refresh its TTL."""

        key = self.tracking_key(customer_id, variant_id)
        try:
            new_total = await self._store.increment_by(key, quantity, self._ttl_seconds)
        except StoreUnavailableError as exc:
            logger.error(
                "purchase_limit.track_failed",
                extra={"customer_hash": hash_key(customer_id), "error_code": exc.code},
            )
            return TrackResult(success=False, new_total=0, remaining=self._daily_limit, limit=self._daily_limit)

        logger.info(
            "purchase_limit.tracked",
            extra={
                "customer_hash": hash_key(customer_id),
                "variant_id": variant_id,
                "quantity": quantity,
                "new_total": new_total,
            },
        )
        return TrackResult(
            success=True,
            new_total=new_total,
            remaining=self._remaining(new_total),
            limit=self._daily_limit,
        )

    async def untrack(self, customer_id: str, variant_id: str, quantity: int) -> TrackResult:
        """Remove units from today's tally (items taken out of the cart)."""

        key = self.tracking_key(customer_id, variant_id)
        try:
            new_total = await self._store.decrement_floor(key, quantity, self._ttl_seconds)
        except StoreUnavailableError as exc:
            logger.error(
                "purchase_limit.untrack_failed",
                extra={"customer_hash": hash_key(customer_id), "error_code": exc.code},
            )
            return TrackResult(success=False, new_total=0, remaining=self._daily_limit, limit=self._daily_limit)

        return TrackResult(
            success=True,
            new_total=new_total,
            remaining=self._remaining(new_total),
            limit=self._daily_limit,
        )
