"""
Clock helpers.

Components take a `Clock` callable instead of calling `datetime.now` directly so
tests can drive timestamps deterministically.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


__all__ = ["Clock", "utc_now"]
