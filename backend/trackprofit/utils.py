"""
Shared utility functions.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """
    Return the current UTC time as a naive datetime (no tzinfo).
    Naive datetimes are used because our DB columns are TIMESTAMP WITHOUT TIME ZONE.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed to be UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a provider payload ("Z" suffix accepted)."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def to_float(value: Any, default: float = 0.0) -> float:
    """Coerce provider numbers (often strings) to float; unparseable values become ``default``."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def gid_tail(gid: Any) -> str:
    """Last path segment of a storefront global id (``gid://shopify/Order/123`` -> ``123``)."""
    if gid is None:
        return ""
    return str(gid).rsplit("/", 1)[-1]


def safe_ratio(numerator: float, denominator: float) -> float:
    """Division that yields exactly 0 for a zero denominator, rounded to 2 decimals."""
    if not denominator:
        return 0.0
    return round(numerator / denominator, 2)
