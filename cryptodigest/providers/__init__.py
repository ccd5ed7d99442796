"""Abstract interface for market-data providers."""
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Optional
from cryptodigest.core.errors import QuoteUnavailableError, HistoryUnavailableError


class MarketDataProvider(ABC):
    """Abstract base class for price data providers."""

    @abstractmethod
    async def current_price(self, symbol: str) -> float:
        """
        Fetch the latest price for a symbol.

        Raises:
            QuoteUnavailableError: If the price cannot be fetched
        """
        pass

    @abstractmethod
    async def statistic_24h(self, symbol: str) -> float:
        """
        Fetch the rolling 24 hour change for a symbol, in percent.

        Raises:
            QuoteUnavailableError: If the statistic cannot be fetched
        """
        pass

    @abstractmethod
    async def historical_close(self, symbol: str, lookback: Optional[timedelta]) -> Optional[float]:
        """
        Fetch the earliest daily close within a lookback window.

        Args:
            symbol: Base asset symbol
            lookback: How far back the window starts, or None for the
                oldest close the provider can return

        Returns:
            Close price, or None if the provider has no candle in the window

        Raises:
            HistoryUnavailableError: If the history cannot be fetched
        """
        pass

    async def close(self):
        """Release provider resources."""
        pass


__all__ = ["MarketDataProvider", "QuoteUnavailableError", "HistoryUnavailableError"]
