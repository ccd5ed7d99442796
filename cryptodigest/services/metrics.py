"""Multi-window price change aggregation.

Given the current price and three historical closes for a symbol, derive the
percentage change over 30 days, one year and the full available history. The
24 hour change is taken from the market-data source as-is.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Iterable, List, Optional

from cryptodigest.core.errors import MetricComputationError, MarketDataError
from cryptodigest.models.metric import SymbolMetric
from cryptodigest.providers import MarketDataProvider

logger = logging.getLogger(__name__)

MONTH_LOOKBACK = timedelta(days=30)
YEAR_LOOKBACK = timedelta(days=365)


def percent_change(current: float, reference: Optional[float], symbol: str, window: str) -> float:
    """
    Percentage change from reference to current.

    Raises:
        MetricComputationError: If reference is missing or zero
    """
    if reference is None or reference == 0:
        raise MetricComputationError(
            f"Missing or zero {window} close", symbol=symbol
        )
    return (current - reference) / reference * 100


def compute_metrics(
    symbol: str,
    current_price: float,
    stat_24h: float,
    close_30d_ago: Optional[float],
    close_1y_ago: Optional[float],
    close_earliest: Optional[float]
) -> SymbolMetric:
    """
    Compute the four percentage deltas for a symbol.

    Args:
        symbol: Symbol the inputs belong to
        current_price: Latest price
        stat_24h: 24h change in percent, passed through
        close_30d_ago: First daily close within the last 30 days
        close_1y_ago: First daily close within the last year
        close_earliest: Oldest close the source can return

    Returns:
        SymbolMetric

    Raises:
        MetricComputationError: If any close is missing or zero
    """
    return SymbolMetric(
        symbol=symbol,
        price=current_price,
        change_percent_24h=stat_24h,
        change_percent_30d=percent_change(current_price, close_30d_ago, symbol, "30d"),
        change_percent_year=percent_change(current_price, close_1y_ago, symbol, "1y"),
        change_percent_all_time=percent_change(current_price, close_earliest, symbol, "all-time"),
    )


async def fetch_symbol_metric(provider: MarketDataProvider, symbol: str) -> SymbolMetric:
    """
    Fetch all inputs for a symbol concurrently and compute its metric.

    Raises:
        QuoteUnavailableError, HistoryUnavailableError: From the provider
        MetricComputationError: If a historical close is missing or zero
    """
    price, stat_24h, close_30d, close_1y, close_earliest = await asyncio.gather(
        provider.current_price(symbol),
        provider.statistic_24h(symbol),
        provider.historical_close(symbol, MONTH_LOOKBACK),
        provider.historical_close(symbol, YEAR_LOOKBACK),
        provider.historical_close(symbol, None),
    )
    return compute_metrics(symbol, price, stat_24h, close_30d, close_1y, close_earliest)


async def collect_metrics(
    provider: MarketDataProvider,
    symbols: Iterable[str],
    subscriber_id: Optional[int] = None
) -> List[SymbolMetric]:
    """
    Fetch metrics for a watch-list.

    Every symbol is fetched concurrently and all fetches finish before this
    returns. Symbols failing with MetricComputationError are skipped; any
    other error is re-raised after tagging it with the subscriber id.

    Returns:
        Metrics in watch-list order
    """
    symbols = list(symbols)
    results = await asyncio.gather(
        *(fetch_symbol_metric(provider, symbol) for symbol in symbols),
        return_exceptions=True
    )

    metrics = []
    for symbol, result in zip(symbols, results):
        if isinstance(result, MetricComputationError):
            result.subscriber_id = subscriber_id
            logger.warning(f"Skipping {symbol} for subscriber {subscriber_id}: {result}")
            continue
        if isinstance(result, MarketDataError):
            result.subscriber_id = subscriber_id
            raise result
        if isinstance(result, BaseException):
            raise result
        metrics.append(result)

    return metrics
