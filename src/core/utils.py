"""
Core Utility Functions.

Key normalization, ordered de-duplication and timestamp helpers shared by
the profile, ranking and retrieval modules.
"""

import math
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional


MS_PER_DAY = 24 * 60 * 60 * 1000


# =============================================================================
# Strings
# =============================================================================

def normalize_key(value: Any) -> str:
    """Trim and lower-case a string key. Non-strings normalize to ''."""
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def unique_first(items: Iterable[str], limit: Optional[int] = None) -> List[str]:
    """
    De-duplicate while keeping first occurrences, dropping empty entries.

    Args:
        items: Iterable of strings (already normalized by the caller)
        limit: Optional maximum number of entries to return

    Returns:
        Ordered list with no duplicates
    """
    seen = set()
    out: List[str] = []
    for item in items:
        if not item or item in seen:
            continue
        seen.add(item)
        out.append(item)
        if limit is not None and len(out) >= limit:
            break
    return out


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def to_float(value: Any, default: float = 0.0) -> float:
    """Coerce numbers and numeric strings to float; anything else -> default."""
    if isinstance(value, bool):
        return default
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(result):
        return default
    return result


# =============================================================================
# Timestamps
# =============================================================================

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Accepts the trailing 'Z' form. Returns None for anything unparseable.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        # Offsets that push the instant outside year 1..9999
        return None


def to_iso(dt: datetime) -> str:
    """Format as millisecond-precision UTC ISO string ('2026-02-10T00:00:00.000Z')."""
    dt = dt.astimezone(timezone.utc) if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return (
        f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}T"
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d}.{dt.microsecond // 1000:03d}Z"
    )


def to_epoch_ms(dt: datetime) -> float:
    return dt.timestamp() * 1000.0


def age_days(then: Optional[datetime], now: datetime, default: float = 365.0) -> float:
    """Non-negative age in days; `default` when the timestamp is unknown."""
    if then is None:
        return default
    return max(0.0, (to_epoch_ms(now) - to_epoch_ms(then)) / MS_PER_DAY)


def date_key(now: datetime) -> str:
    """UTC calendar day, e.g. '2026-02-10'."""
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")
