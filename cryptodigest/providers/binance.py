"""Binance public REST market-data provider implementation."""
import httpx
from datetime import datetime, timezone, timedelta
from typing import Optional
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)
import logging
from cryptodigest.providers import MarketDataProvider
from cryptodigest.core.errors import QuoteUnavailableError, HistoryUnavailableError
from cryptodigest.core.config import settings


logger = logging.getLogger(__name__)

# Binance caps a klines response at 1000 candles; that bounds "all time"
MAX_KLINES = 1000
KLINE_CLOSE_INDEX = 4


class BinanceProvider(MarketDataProvider):
    """Binance spot market implementation of the market-data provider."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        quote_asset: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.base_url = (base_url or settings.binance_base_url).rstrip("/")
        self.quote_asset = quote_asset or settings.quote_asset
        self.client = httpx.AsyncClient(timeout=timeout or settings.http_timeout_seconds)

    def _pair(self, symbol: str) -> str:
        return f"{symbol.upper()}{self.quote_asset}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )
    async def _make_request(self, path: str, params: dict):
        """Make HTTP request with retry logic for transient failures.

        Retries up to 3 times with exponential backoff for timeouts and
        connection errors. HTTP status errors are not retried.
        """
        response = await self.client.get(f"{self.base_url}{path}", params=params)
        response.raise_for_status()
        return response.json()

    async def _request(self, path: str, params: dict, error_cls: type, symbol: str):
        """Run a request and translate transport failures into error_cls."""
        try:
            return await self._make_request(path, params)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 400:
                raise error_cls(f"Binance rejected {params.get('symbol')}: {e.response.text}", symbol=symbol)
            elif e.response.status_code in (418, 429):
                raise error_cls(
                    f"Binance rate limit exceeded ({e.response.status_code})", symbol=symbol
                )
            raise error_cls(f"Binance API error: {str(e)}", symbol=symbol)
        except httpx.TimeoutException as e:
            raise error_cls(f"Binance API timeout after retries: {str(e)}", symbol=symbol)
        except httpx.HTTPError as e:
            raise error_cls(f"Binance API connection error: {str(e)}", symbol=symbol)
        except ValueError as e:
            raise error_cls(f"Binance returned invalid JSON: {str(e)}", symbol=symbol)

    async def current_price(self, symbol: str) -> float:
        """Fetch the last traded price."""
        data = await self._request(
            "/ticker/price", {"symbol": self._pair(symbol)}, QuoteUnavailableError, symbol
        )
        price = _parse_float(data.get("price") if isinstance(data, dict) else None)
        if price is None or price <= 0:
            raise QuoteUnavailableError(f"No price data for {symbol}", symbol=symbol)
        return price

    async def statistic_24h(self, symbol: str) -> float:
        """Fetch the rolling 24h price change percentage."""
        data = await self._request(
            "/ticker/24hr", {"symbol": self._pair(symbol)}, QuoteUnavailableError, symbol
        )
        change = _parse_float(data.get("priceChangePercent") if isinstance(data, dict) else None)
        if change is None:
            raise QuoteUnavailableError(f"No 24h statistic for {symbol}", symbol=symbol)
        return change

    async def historical_close(self, symbol: str, lookback: Optional[timedelta]) -> Optional[float]:
        """
        Fetch the close of the first daily candle in the window.

        With a lookback the window starts at now - lookback; without one the
        last MAX_KLINES daily candles are requested and the oldest is used.
        """
        params = {"symbol": self._pair(symbol), "interval": "1d"}
        if lookback is None:
            params["limit"] = MAX_KLINES
        else:
            start = datetime.now(timezone.utc) - lookback
            params["startTime"] = int(start.timestamp() * 1000)

        candles = await self._request("/klines", params, HistoryUnavailableError, symbol)

        if not isinstance(candles, list):
            raise HistoryUnavailableError(f"Unexpected klines payload for {symbol}", symbol=symbol)
        if not candles:
            logger.debug(f"No candles for {symbol} (lookback={lookback})")
            return None

        try:
            return _parse_float(candles[0][KLINE_CLOSE_INDEX])
        except (IndexError, TypeError, KeyError):
            raise HistoryUnavailableError(f"Malformed candle for {symbol}", symbol=symbol)

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()


def _parse_float(value) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None
