"""Telegram message formatting utilities."""
from typing import Iterable, Sequence
from cryptodigest.models.metric import SymbolMetric


UP_INDICATOR = "🟢"
DOWN_INDICATOR = "🔴"


def direction(value: float) -> str:
    """Directional indicator for a change; zero counts as up."""
    return UP_INDICATOR if value >= 0 else DOWN_INDICATOR


def format_metric_line(metric: SymbolMetric) -> str:
    """Format one symbol as a single Markdown line."""
    return (
        f"*{metric.symbol}*: {metric.price:.2f}$"
        f" | D{direction(metric.change_percent_24h)}: {metric.change_percent_24h:.1f}%"
        f" | M{direction(metric.change_percent_30d)}: {metric.change_percent_30d:.1f}%"
        f" | Y{direction(metric.change_percent_year)}: {metric.change_percent_year:.1f}%"
        f" | A{direction(metric.change_percent_all_time)}: {metric.change_percent_all_time:.1f}%"
    )


def format_digest(metrics: Sequence[SymbolMetric]) -> str:
    """
    Format metrics into a digest message, one line per symbol.

    Args:
        metrics: Metrics in display order

    Returns:
        Digest text, or an empty string when there are no metrics
    """
    return "\n".join(format_metric_line(metric) for metric in metrics)


def format_watchlist(symbols: list) -> str:
    """
    Format watchlist for display.

    Args:
        symbols: List of symbols

    Returns:
        Formatted watchlist string
    """
    if not symbols:
        return "Your watchlist is empty. Use /add SYMBOL to add a coin."

    return f"📋 Your watchlist: {', '.join(symbols)}"


def format_allowed_symbols(symbols: Iterable[str]) -> str:
    """Format the allowed symbol catalog for display."""
    symbols = sorted(symbols)
    if not symbols:
        return "No symbols are available right now."
    return f"Available symbols: {', '.join(symbols)}"


HELP_TEXT = """
Commands:
/list - Show your watchlist
/symbols - Show the symbols you can add
/add SYMBOL - Add a coin to your watchlist (e.g., /add ETH)
/remove SYMBOL - Remove a coin from your watchlist (e.g., /remove BTC)
/help - Show this message

Each refresh replaces your previous price digest:
D = 24h, M = 30 days, Y = 1 year, A = all available history.
""".strip()


def format_welcome(allowed_symbols: Iterable[str], watch_list: list = None) -> str:
    """Welcome text for new and returning subscribers."""
    if watch_list is None:
        header = (
            "Welcome to the Crypto Price Bot! 🚀\n\n"
            "Add the coins you want to follow with /add and you'll get a "
            "price digest that refreshes automatically."
        )
    else:
        header = f"Welcome back! 🚀\n\n{format_watchlist(watch_list)}"

    return f"{header}\n\n{HELP_TEXT}\n\n{format_allowed_symbols(allowed_symbols)}"
