"""Pydantic schemas for the daily purchase limit endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Responses use camelCase keys to match the storefront client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckLimitRequest(BaseModel):
    """Body of ``POST /store/purchase-limit/check``."""

    variant_id: str = Field(..., min_length=1, description="Product variant ID.")
    quantity: int = Field(..., ge=1, description="Units the customer wants to add.")
    cart_id: str | None = Field(
        default=None,
        description="Cart identifier; without it only the absolute limit is checked.",
    )


class TrackPurchaseRequest(BaseModel):
    """Body of ``POST /store/purchase-limit/track``."""

    variant_id: str = Field(..., min_length=1, description="Product variant ID.")
    quantity: int = Field(..., ge=0, description="Units added or removed.")
    cart_id: str = Field(..., min_length=1, description="Cart identifying the guest customer.")
    action: Literal["add", "remove"] = Field(
        default="add",
        description="'add' increments today's counter, 'remove' decrements it.",
    )


class PurchaseLimitResult(_CamelModel):
    """Whether a customer may buy more units of a variant today."""

    allowed: bool = Field(..., description="Whether the requested quantity fits today's limit.")
    currently_purchased: int = Field(..., ge=0, description="Units tracked today.")
    remaining: int = Field(..., ge=0, description="Units still available today.")
    limit: int = Field(..., description="Per-variant daily limit.")
    requested_quantity: int | None = Field(default=None, description="Quantity asked for.")
    warning: str | None = Field(
        default=None,
        description="Present when the limit could not be verified and the check failed open.",
    )


class TrackResult(_CamelModel):
    """Outcome of recording (or removing) purchased units."""

    success: bool = Field(..., description="False when the counter store could not be updated.")
    new_total: int = Field(..., ge=0, description="Units tracked today after the update.")
    remaining: int = Field(..., ge=0, description="Units still available today.")
    limit: int = Field(..., description="Per-variant daily limit.")


class PurchasedTodayResponse(_CamelModel):
    """Current tally for a customer and variant."""

    currently_purchased: int = Field(..., ge=0)
    remaining: int = Field(..., ge=0)
    limit: int
    warning: str | None = None
