"""Subscription store backed by Redis.

Each subscriber is a Redis hash (``<prefix>user:<id>``) so updates can merge
individual fields instead of rewriting the whole record. The allowed-symbol
catalog is a Redis set (``<prefix>available_cryptos``).
"""
import functools
import json
import logging
import uuid
from typing import Callable, Dict, List, Optional, Set, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from cryptodigest.core.config import settings
from cryptodigest.core.errors import StoreError
from cryptodigest.core.redis import get_redis
from cryptodigest.models.subscription import (
    FIELD_SUBSCRIBER_ID,
    FIELD_WATCH_LIST,
    RECORD_FIELDS,
    SubscriptionRecord,
    encode_field,
    normalize_watch_list,
)

logger = logging.getLogger(__name__)

MAX_WATCH_RETRIES = 10


def _store_errors(func):
    """Translate Redis failures into StoreError."""
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except RedisError as e:
            subscriber_id = args[0] if args and isinstance(args[0], int) else None
            raise StoreError(f"Redis {func.__name__} failed: {e}", subscriber_id=subscriber_id) from e
    return wrapper


class SubscriptionStore:
    """Read and write subscriber records and the allowed-symbol set."""

    def __init__(self, redis_client: redis.Redis, key_prefix: Optional[str] = None):
        self.redis = redis_client
        self.key_prefix = key_prefix if key_prefix is not None else settings.redis_key_prefix

    def _user_key(self, subscriber_id: int) -> str:
        return f"{self.key_prefix}user:{subscriber_id}"

    def _cycle_lock_key(self, subscriber_id: int) -> str:
        return f"{self.key_prefix}cycle_lock:{subscriber_id}"

    @property
    def allowed_symbols_key(self) -> str:
        return f"{self.key_prefix}available_cryptos"

    # ------------------------------------------------------------------
    # Subscriber records
    # ------------------------------------------------------------------

    @_store_errors
    async def get(self, subscriber_id: int) -> Optional[SubscriptionRecord]:
        """Get one record, or None if the subscriber is unknown."""
        data = await self.redis.hgetall(self._user_key(subscriber_id))
        if not data:
            return None
        data.setdefault(FIELD_SUBSCRIBER_ID, str(subscriber_id))
        return SubscriptionRecord.from_hash(data)

    @_store_errors
    async def get_all(self) -> List[SubscriptionRecord]:
        """
        Get every subscriber record.

        Records that cannot be decoded are logged and left out.
        """
        keys = [key async for key in self.redis.scan_iter(match=f"{self.key_prefix}user:*")]
        if not keys:
            return []

        async with self.redis.pipeline(transaction=False) as pipe:
            for key in keys:
                pipe.hgetall(key)
            rows = await pipe.execute()

        records = []
        for key, data in zip(keys, rows):
            if not data:
                continue
            try:
                records.append(SubscriptionRecord.from_hash(data))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed subscriber record {key}: {e}")
        return records

    @_store_errors
    async def merge(self, subscriber_id: int, fields: Optional[Dict] = None) -> None:
        """
        Create a record if absent, then merge the given fields into it.

        Fields set to None are removed from the record. All writes happen in
        a single MULTI transaction.

        Args:
            subscriber_id: Subscriber to update
            fields: Partial record keyed by SubscriptionRecord attribute names
        """
        fields = dict(fields or {})
        unknown = set(fields) - set(RECORD_FIELDS)
        if unknown:
            raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")

        if FIELD_WATCH_LIST in fields and fields[FIELD_WATCH_LIST] is None:
            fields[FIELD_WATCH_LIST] = []

        to_set = {name: encode_field(name, value) for name, value in fields.items() if value is not None}
        to_delete = [name for name, value in fields.items() if value is None]

        key = self._user_key(subscriber_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.hsetnx(key, FIELD_SUBSCRIBER_ID, str(subscriber_id))
            pipe.hsetnx(key, FIELD_WATCH_LIST, "[]")
            if to_set:
                pipe.hset(key, mapping=to_set)
            if to_delete:
                pipe.hdel(key, *to_delete)
            await pipe.execute()

    @_store_errors
    async def delete(self, subscriber_id: int) -> None:
        """Delete a subscriber record."""
        await self.redis.delete(self._user_key(subscriber_id))

    async def add_to_watch_list(self, subscriber_id: int, symbol: str) -> Tuple[bool, List[str]]:
        """
        Add a symbol to a watch-list.

        Returns:
            (added, watch_list) where added is False if already present
        """
        symbol = symbol.upper()

        def update(current: List[str]) -> List[str]:
            return current if symbol in current else current + [symbol]

        return await self._update_watch_list(subscriber_id, update)

    async def remove_from_watch_list(self, subscriber_id: int, symbol: str) -> Tuple[bool, List[str]]:
        """
        Remove a symbol from a watch-list.

        Returns:
            (removed, watch_list) where removed is False if it was not present
        """
        symbol = symbol.upper()

        def update(current: List[str]) -> List[str]:
            return [s for s in current if s != symbol]

        return await self._update_watch_list(subscriber_id, update)

    @_store_errors
    async def _update_watch_list(
        self,
        subscriber_id: int,
        update: Callable[[List[str]], List[str]]
    ) -> Tuple[bool, List[str]]:
        """Optimistic WATCH/MULTI read-modify-write of the watch-list field."""
        key = self._user_key(subscriber_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            for attempt in range(MAX_WATCH_RETRIES):
                try:
                    await pipe.watch(key)
                    raw = await pipe.hget(key, FIELD_WATCH_LIST)
                    current = normalize_watch_list(json.loads(raw)) if raw else []
                    updated = normalize_watch_list(update(list(current)))

                    if updated == current:
                        await pipe.reset()
                        return False, current

                    pipe.multi()
                    pipe.hsetnx(key, FIELD_SUBSCRIBER_ID, str(subscriber_id))
                    pipe.hset(key, FIELD_WATCH_LIST, encode_field(FIELD_WATCH_LIST, updated))
                    await pipe.execute()
                    return True, updated
                except WatchError:
                    logger.debug(f"Watch-list of {subscriber_id} changed concurrently, retry {attempt + 1}")
                    continue

        raise StoreError("Gave up updating watch-list after concurrent edits", subscriber_id=subscriber_id)

    # ------------------------------------------------------------------
    # Per-subscriber cycle lock
    # ------------------------------------------------------------------

    @_store_errors
    async def acquire_cycle_lock(self, subscriber_id: int, ttl_seconds: float) -> Optional[str]:
        """
        Try once to take the subscriber's refresh lock.

        The lock lives in Redis so cycles started by different processes
        (bot and standalone broadcaster) exclude each other. It expires after
        ttl_seconds in case its holder dies.

        Returns:
            Token needed to release the lock, or None if it is held elsewhere
        """
        token = uuid.uuid4().hex
        acquired = await self.redis.set(
            self._cycle_lock_key(subscriber_id), token, nx=True, px=int(ttl_seconds * 1000)
        )
        return token if acquired else None

    @_store_errors
    async def release_cycle_lock(self, subscriber_id: int, token: str) -> bool:
        """
        Release the refresh lock if it is still held with this token.

        Returns:
            False if the lock had expired or was taken over
        """
        key = self._cycle_lock_key(subscriber_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                if await pipe.get(key) != token:
                    await pipe.reset()
                    logger.warning(f"Cycle lock of {subscriber_id} expired before release")
                    return False
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
                return True
            except WatchError:
                logger.warning(f"Cycle lock of {subscriber_id} taken over before release")
                return False

    # ------------------------------------------------------------------
    # Allowed-symbol set
    # ------------------------------------------------------------------

    @_store_errors
    async def initialize_allowed_symbols(self, defaults: Optional[List[str]] = None) -> bool:
        """
        Seed the allowed-symbol set if it does not exist yet.

        Returns:
            True if the set was seeded
        """
        defaults = normalize_watch_list(defaults if defaults is not None else settings.default_symbols_list)
        if not defaults or await self.redis.exists(self.allowed_symbols_key):
            return False
        await self.redis.sadd(self.allowed_symbols_key, *defaults)
        logger.info(f"Seeded allowed symbols: {', '.join(defaults)}")
        return True

    @_store_errors
    async def get_allowed_symbols(self) -> Set[str]:
        """Get the allowed-symbol set."""
        return set(await self.redis.smembers(self.allowed_symbols_key))

    @_store_errors
    async def add_allowed_symbol(self, symbol: str) -> bool:
        """Add a symbol to the allowed set. Returns False if already present."""
        return bool(await self.redis.sadd(self.allowed_symbols_key, symbol.upper()))

    @_store_errors
    async def remove_allowed_symbol(self, symbol: str) -> bool:
        """Remove a symbol from the allowed set. Returns False if absent."""
        return bool(await self.redis.srem(self.allowed_symbols_key, symbol.upper()))


async def get_subscription_store() -> SubscriptionStore:
    """Get a store bound to the shared Redis pool."""
    return SubscriptionStore(await get_redis())
