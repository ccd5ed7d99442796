"""Shared pytest fixtures for broadcast engine tests."""
import os

os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")

import asyncio
import pytest
import fakeredis.aioredis
from datetime import timedelta
from typing import Dict, Optional

from cryptodigest.core.errors import DeliveryFailedError, DeleteFailedError
from cryptodigest.models.metric import SentMessage, SymbolMetric
from cryptodigest.providers import MarketDataProvider
from cryptodigest.services.message_lifecycle import MessageLifecycleManager
from cryptodigest.services.messaging import MessagingTransport
from cryptodigest.services.metrics import MONTH_LOOKBACK, YEAR_LOOKBACK
from cryptodigest.services.subscription_store import SubscriptionStore


class StaticProvider(MarketDataProvider):
    """Market-data provider serving fixed quotes.

    quotes maps symbol -> dict(price, stat_24h, close_30d, close_1y, close_all).
    failures maps symbol -> exception raised by every call for that symbol.
    """

    def __init__(self, quotes: Dict[str, dict], failures: Optional[Dict[str, Exception]] = None, delay: float = 0):
        self.quotes = quotes
        self.failures = failures or {}
        self.delay = delay
        self.calls = []

    async def _quote(self, symbol: str) -> dict:
        self.calls.append(symbol)
        if self.delay:
            await asyncio.sleep(self.delay)
        if symbol in self.failures:
            raise self.failures[symbol]
        return self.quotes[symbol]

    async def current_price(self, symbol: str) -> float:
        return (await self._quote(symbol))["price"]

    async def statistic_24h(self, symbol: str) -> float:
        return (await self._quote(symbol))["stat_24h"]

    async def historical_close(self, symbol: str, lookback: Optional[timedelta]) -> Optional[float]:
        quote = await self._quote(symbol)
        if lookback == MONTH_LOOKBACK:
            return quote["close_30d"]
        if lookback == YEAR_LOOKBACK:
            return quote["close_1y"]
        return quote["close_all"]


class RecordingTransport(MessagingTransport):
    """Messaging transport that tracks which messages are live per recipient."""

    def __init__(self, base_timestamp: int = 1_700_000_000):
        self.live: Dict[int, set] = {}
        self.sent = []
        self.deleted = []
        self.fail_send = set()
        self.fail_delete = set()
        self.base_timestamp = base_timestamp
        self._next_id = 100

    async def send(self, recipient_id: int, text: str) -> SentMessage:
        if recipient_id in self.fail_send:
            raise DeliveryFailedError("send refused", subscriber_id=recipient_id)
        self._next_id += 1
        self.live.setdefault(recipient_id, set()).add(self._next_id)
        self.sent.append((recipient_id, text))
        return SentMessage(message_id=self._next_id, timestamp=self.base_timestamp + self._next_id)

    async def delete(self, recipient_id: int, message_id: int) -> None:
        if recipient_id in self.fail_delete:
            raise DeleteFailedError("delete refused", subscriber_id=recipient_id)
        if message_id not in self.live.get(recipient_id, set()):
            raise DeleteFailedError("message to delete not found", subscriber_id=recipient_id)
        self.live[recipient_id].discard(message_id)
        self.deleted.append((recipient_id, message_id))

    def live_messages(self, recipient_id: int) -> set:
        return self.live.get(recipient_id, set())


BTC_QUOTE = {
    "price": 65000.0,
    "stat_24h": 3.0,
    "close_30d": 60000.0,
    "close_1y": 40000.0,
    "close_all": 10000.0,
}

ETH_QUOTE = {
    "price": 3000.0,
    "stat_24h": -1.5,
    "close_30d": 3200.0,
    "close_1y": 2000.0,
    "close_all": 1000.0,
}


@pytest.fixture
async def fake_redis():
    """Create a FakeRedis instance for testing."""
    redis = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield redis
    await redis.flushall()
    await redis.aclose()


@pytest.fixture
def store(fake_redis):
    """SubscriptionStore bound to fake Redis."""
    return SubscriptionStore(fake_redis, key_prefix="test:")


@pytest.fixture
def provider():
    """Provider with BTC and ETH quotes."""
    return StaticProvider({"BTC": dict(BTC_QUOTE), "ETH": dict(ETH_QUOTE)})


@pytest.fixture
def transport():
    """Recording messaging transport."""
    return RecordingTransport()


@pytest.fixture
def lifecycle(transport):
    """Message lifecycle manager over the recording transport."""
    return MessageLifecycleManager(transport, timezone_str="UTC")


def make_metric(
    symbol: str = "BTC",
    price: float = 50000.0,
    d: float = 2.5,
    m: float = 1.0,
    y: float = 10.0,
    a: float = 100.0
) -> SymbolMetric:
    """Factory function to create SymbolMetric instances for testing."""
    return SymbolMetric(
        symbol=symbol,
        price=price,
        change_percent_24h=d,
        change_percent_30d=m,
        change_percent_year=y,
        change_percent_all_time=a
    )
