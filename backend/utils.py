"""Utility helpers shared across the backend services."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

CENTS = Decimal("0.01")


def parse_timestamp(raw: str | datetime | None) -> Optional[datetime]:
    """Parse an upstream timestamp into an aware UTC datetime.

    Returns ``None`` for empty or unparseable input so callers can decide how
    to treat orders with missing dates.
    """
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)

    text = (raw or "").strip()
    if not text:
        return None

    parsers: Iterable[str] = (
        "%Y-%m-%dT%H:%M:%S.%fZ",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d %H:%M",
        "%Y-%m-%d",
    )

    # Python's ISO parser covers most payloads; the explicit formats are fallbacks.
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    except ValueError:
        pass

    for fmt in parsers:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    return None


def to_decimal(value: str | int | float | Decimal | None) -> Decimal:
    """Parse a money string; anything unparseable counts as zero."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        parsed = Decimal(str(value).strip() or "0")
    except InvalidOperation:
        return Decimal("0")
    return parsed if parsed.is_finite() else Decimal("0")


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS)


def time_since_update(updated_at: datetime, now: datetime) -> str:
    """Short relative age such as ``5m ago``, ``3h ago`` or ``2d ago``."""
    seconds = max((now - updated_at).total_seconds(), 0)
    minutes = int(seconds // 60)
    if minutes < 60:
        return f"{minutes}m ago"
    hours = int(seconds // 3600)
    if hours < 24:
        return f"{hours}h ago"
    return f"{int(seconds // 86400)}d ago"


def calculate_percentage(part: float, total: float) -> float:
    if total == 0:
        return 0.0
    return (part / total) * 100


def store_address(
    line_one: Optional[str],
    line_two: Optional[str],
    city: Optional[str],
    state: Optional[str],
    zip_code: Optional[str],
) -> str:
    """Single-line ship-to address as shown on allocation reports."""
    street = line_one or ""
    if line_two:
        street = f"{street}, {line_two}"
    return f"{street}, {city or ''}, {state or ''} {zip_code or ''}".strip()


__all__ = [
    "CENTS",
    "parse_timestamp",
    "to_decimal",
    "quantize_money",
    "time_since_update",
    "calculate_percentage",
    "store_address",
]
