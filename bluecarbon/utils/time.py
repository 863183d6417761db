"""
Time utility functions.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    """Normalise an aware datetime to naive UTC; naive values are assumed UTC."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def canonical_timestamp(dt: datetime) -> str:
    """
    ISO-8601 form used inside hashed ledger fields.

    SQLite hands stored values back without tzinfo, so the aware value hashed
    at write time and the naive value read back must produce the same string.
    """
    return to_naive_utc(dt).isoformat(timespec="microseconds")
