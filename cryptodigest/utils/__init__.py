"""Utilities package initialization."""
from cryptodigest.utils.time import calendar_day, get_local_time, is_different_day
from cryptodigest.utils.formatting import format_digest, format_watchlist, format_allowed_symbols

__all__ = [
    "calendar_day",
    "get_local_time",
    "is_different_day",
    "format_digest",
    "format_watchlist",
    "format_allowed_symbols"
]
