"""
Utilities package for Casebook.

Exports shared helpers for logging, clocks and other cross-cutting concerns.
Keep this package lightweight and free of domain-specific logic.
"""

from casebook.utils.clock import Clock, utc_now
from casebook.utils.logging import configure_logging, get_logger

__all__ = [
    "Clock",
    "utc_now",
    "configure_logging",
    "get_logger",
]
