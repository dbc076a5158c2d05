"""
Time helpers.

All timestamps written by the application are timezone-aware UTC.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)
