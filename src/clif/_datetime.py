from __future__ import annotations

from datetime import UTC, datetime


def ensure_utc(value: datetime, *, assume_utc_if_naive: bool = False) -> datetime:
    """Return ``value`` as a timezone-aware UTC datetime.

    Args:
        value: The datetime to normalise.
        assume_utc_if_naive: When ``True``, treat naive datetimes as already in UTC and
            attach ``datetime.UTC`` rather than raising.

    Raises:
        ValueError: If ``value`` is naive and ``assume_utc_if_naive`` is ``False``.
    """
    if value.tzinfo is None:
        if not assume_utc_if_naive:
            raise ValueError(
                "Expected an aware datetime; supply a value with tzinfo or pre-normalize to UTC."
            )
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as a second-precision ISO 8601 UTC string ending in ``Z``."""
    return ensure_utc(value).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 string (``Z`` or explicit offset) into an aware UTC datetime.

    Raises:
        ValueError: If ``value`` is empty or not ISO 8601.
    """
    if not value:
        raise ValueError("Expected an ISO 8601 timestamp")
    normalised = value[:-1] + "+00:00" if value.endswith("Z") else value
    return ensure_utc(datetime.fromisoformat(normalised), assume_utc_if_naive=True)


__all__ = ["ensure_utc", "format_timestamp", "parse_timestamp"]
