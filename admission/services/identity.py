"""Identity resolution for admission control.

The identity key groups callers for quota purposes. By default it is the
caller's network origin; routes may pass an override key so the quota
follows a resource instead (for example the phone number an SMS code is
sent to, however many addresses the requests come from).

Forwarded-for headers are trusted by default because the service is meant
to sit behind a reverse proxy that overwrites them. Without such a proxy a
caller can choose its own key; set ``ADMISSION_TRUST_FORWARDED_HEADERS=false``
in that case.
"""

from __future__ import annotations

import re

from starlette.requests import Request

from admission.core.errors import ValidationAppError

UNKNOWN_IDENTITY = "unknown"

_NON_DIGITS = re.compile(r"\D")
_WHITESPACE = re.compile(r"\s+")


def resolve_identity(
    request: Request,
    override_key: str | None = None,
    *,
    trust_forwarded_headers: bool = True,
) -> str:
    """Derive the rate-limit key for the current request.

    Precedence: override key, first ``X-Forwarded-For`` entry, ``X-Real-IP``,
    transport peer address, then the shared ``"unknown"`` bucket.

    Args:
        request: Incoming request.
        override_key: Caller-supplied key used verbatim when non-empty.
        trust_forwarded_headers: Whether proxy headers may be used.

    Returns:
        str: Identity key (never empty).
    """
    if override_key:
        return override_key

    if trust_forwarded_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first

        real_ip = request.headers.get("x-real-ip")
        if real_ip and real_ip.strip():
            return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return UNKNOWN_IDENTITY


def normalize_phone_number(phone: str | None) -> str:
    """Normalize a phone number to E.164 form.

    Args:
        phone: Raw phone number, possibly containing spaces.

    Returns:
        The number without whitespace, e.g. ``"+355691234567"``.

    Raises:
        ValidationAppError: If the number is missing, lacks a country code,
            or has fewer than 8 or more than 15 digits.

    Examples:
        >>> normalize_phone_number("+355 69 123 4567")
        '+355691234567'
    """
    if not phone or not phone.strip():
        raise ValidationAppError(code="phone_required", message="Phone number is required")

    normalized = _WHITESPACE.sub("", phone)
    if not normalized.startswith("+"):
        raise ValidationAppError(
            code="phone_missing_country_code",
            message="Phone number must include country code (e.g., +355)",
        )

    digits = _NON_DIGITS.sub("", normalized)
    if not 8 <= len(digits) <= 15:
        raise ValidationAppError(
            code="phone_invalid_length",
            message="Invalid phone number length",
        )

    return normalized


def phone_override_key(phone: str | None) -> str:
    """Build the override key used by the ``phoneVerify`` policy."""

    return f"phone:{normalize_phone_number(phone)}"
