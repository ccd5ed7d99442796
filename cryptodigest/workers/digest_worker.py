"""Digest worker running refresh cycles for subscribers."""
import asyncio
import logging
from typing import Optional, Tuple

from cryptodigest.core.config import settings
from cryptodigest.core.errors import CycleTimeoutError, DigestError, StoreError
from cryptodigest.models.metric import SentMessage, TickReport
from cryptodigest.models.subscription import (
    FIELD_LAST_MESSAGE_ID,
    FIELD_LAST_MESSAGE_TIMESTAMP,
    SubscriptionRecord,
)
from cryptodigest.providers import MarketDataProvider
from cryptodigest.services.message_lifecycle import MessageLifecycleManager, ReplacePolicy
from cryptodigest.services.metrics import collect_metrics
from cryptodigest.services.subscription_store import SubscriptionStore
from cryptodigest.utils.formatting import format_digest

logger = logging.getLogger(__name__)

LOCK_RETRY_DELAY = 0.1


class DigestWorker:
    """Refreshes subscriber digests: fetch metrics, format, replace, persist."""

    def __init__(
        self,
        store: SubscriptionStore,
        provider: MarketDataProvider,
        lifecycle: MessageLifecycleManager,
        policy: Optional[ReplacePolicy] = None,
        cycle_timeout: Optional[float] = None,
        max_concurrent_cycles: Optional[int] = None,
        lock_ttl: Optional[float] = None
    ):
        self.store = store
        self.provider = provider
        self.lifecycle = lifecycle
        self.policy = policy or ReplacePolicy(settings.replace_policy)
        self.cycle_timeout = cycle_timeout or settings.cycle_timeout_seconds
        self.lock_ttl = lock_ttl or settings.cycle_lock_seconds
        self._semaphore = asyncio.Semaphore(max_concurrent_cycles or settings.max_concurrent_cycles)

    async def _build_digest(self, record: SubscriptionRecord) -> Tuple[str, int]:
        metrics = await collect_metrics(self.provider, record.watch_list, subscriber_id=record.subscriber_id)
        return format_digest(metrics), len(metrics)

    async def refresh_subscriber(
        self,
        record: SubscriptionRecord,
        policy: Optional[ReplacePolicy] = None
    ) -> Optional[SentMessage]:
        """
        Run one refresh cycle for a subscriber record.

        Only the market-data stage is bounded by the cycle timeout. Once the
        new digest is sent, the cycle always goes on to record it or delete it.

        Args:
            record: Current record for the subscriber
            policy: Replacement policy (defaults to the worker's policy)

        Returns:
            The new message, or None if no metric could be computed

        Raises:
            DigestError: Market data, timeout, delivery or store failures
        """
        subscriber_id = record.subscriber_id
        try:
            text, symbol_count = await asyncio.wait_for(
                self._build_digest(record),
                timeout=self.cycle_timeout
            )
        except asyncio.TimeoutError:
            raise CycleTimeoutError(
                f"Fetching market data exceeded {self.cycle_timeout}s", subscriber_id=subscriber_id
            )

        if not text:
            logger.warning(f"No metrics available for subscriber {subscriber_id}, digest not sent")
            return None

        sent = await self.lifecycle.replace(
            subscriber_id,
            record.last_message_id,
            text,
            previous_timestamp=record.last_message_timestamp,
            policy=policy or self.policy
        )

        try:
            await self.store.merge(subscriber_id, {
                FIELD_LAST_MESSAGE_ID: sent.message_id,
                FIELD_LAST_MESSAGE_TIMESTAMP: sent.timestamp
            })
        except (StoreError, asyncio.CancelledError):
            # An unrecorded message could never be replaced later
            await asyncio.shield(self.lifecycle.discard(subscriber_id, sent.message_id))
            raise

        logger.info(f"Refreshed digest for subscriber {subscriber_id} ({symbol_count} symbols)")
        return sent

    async def _run_cycle(self, subscriber_id: int, policy: Optional[ReplacePolicy]) -> bool:
        # Re-read under the lock so the previous message id is current
        record = await self.store.get(subscriber_id)
        if record is None or not record.has_watch_list:
            return False
        sent = await self.refresh_subscriber(record, policy)
        return sent is not None

    async def _refresh_one(self, subscriber_id: int, policy: Optional[ReplacePolicy]) -> bool:
        """
        Refresh one subscriber unless a cycle for it is already running,
        in this process or another one.

        Returns:
            True if a new digest was delivered, False if skipped
        """
        token = await self.store.acquire_cycle_lock(subscriber_id, self.lock_ttl)
        if token is None:
            logger.info(f"Refresh already running for subscriber {subscriber_id}, skipping")
            return False

        try:
            return await self._run_cycle(subscriber_id, policy)
        finally:
            await self.store.release_cycle_lock(subscriber_id, token)

    async def _wait_for_cycle_lock(self, subscriber_id: int) -> Optional[str]:
        """Wait for a running cycle to finish, at most one lock lifetime."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.lock_ttl
        while True:
            token = await self.store.acquire_cycle_lock(subscriber_id, self.lock_ttl)
            if token is not None or loop.time() >= deadline:
                return token
            await asyncio.sleep(LOCK_RETRY_DELAY)

    async def _tick_one(self, subscriber_id: int, policy: Optional[ReplacePolicy], report: TickReport):
        try:
            async with self._semaphore:
                refreshed = await self._refresh_one(subscriber_id, policy)
        except DigestError as e:
            logger.error(f"Refresh failed for subscriber {subscriber_id}: {e.kind}: {e}")
            report.failed[subscriber_id] = f"{e.kind}: {e}"
            return
        except Exception as e:
            logger.error(f"Unexpected error refreshing subscriber {subscriber_id}: {e}", exc_info=True)
            report.failed[subscriber_id] = f"{type(e).__name__}: {e}"
            return

        if refreshed:
            report.refreshed.append(subscriber_id)
        else:
            report.skipped.append(subscriber_id)

    async def run_tick(self, policy: Optional[ReplacePolicy] = None) -> TickReport:
        """
        Refresh every subscriber with a non-empty watch-list.

        Subscribers are processed concurrently and independently; no
        per-subscriber failure escapes this method.
        """
        report = TickReport()

        try:
            records = await self.store.get_all()
        except Exception as e:
            logger.error(f"Could not list subscribers: {e}", exc_info=True)
            return report

        active = [record.subscriber_id for record in records if record.has_watch_list]
        if not active:
            logger.debug("No subscribers with a watch-list")
            return report

        await asyncio.gather(*(self._tick_one(subscriber_id, policy, report) for subscriber_id in active))

        logger.info(
            f"Tick complete: {len(report.refreshed)} refreshed, "
            f"{len(report.skipped)} skipped, {len(report.failed)} failed"
        )
        return report

    async def run_startup_pass(self) -> TickReport:
        """Refresh everyone once, deleting persisted digests regardless of age."""
        logger.info("Running startup refresh pass")
        return await self.run_tick(policy=ReplacePolicy.ALWAYS)

    async def trigger_immediate_refresh(
        self,
        subscriber_id: int,
        policy: Optional[ReplacePolicy] = None
    ) -> bool:
        """
        Refresh one subscriber now, outside the timer.

        Returns:
            True if a new digest was delivered, False if skipped

        Raises:
            DigestError: So the caller can report the failure
        """
        async with self._semaphore:
            return await self._refresh_one(subscriber_id, policy)

    async def clear_digest(self, subscriber_id: int) -> bool:
        """
        Delete a subscriber's digest once their watch-list is empty.

        Waits for a running cycle to finish first, so a digest that cycle
        sends is the one deleted. The message fields are cleared only after
        the message is deleted; if deletion fails they are kept so a later
        refresh replaces it.

        Returns:
            True if no digest remains referenced
        """
        token = await self._wait_for_cycle_lock(subscriber_id)
        if token is None:
            logger.warning(f"Cycle lock of {subscriber_id} still held, digest not cleared")
            return False

        try:
            record = await self.store.get(subscriber_id)
            if record is None or record.last_message_id is None:
                return True
            if record.has_watch_list:
                logger.debug(f"Watch-list of {subscriber_id} is no longer empty, keeping digest")
                return False

            if not await self.lifecycle.discard(subscriber_id, record.last_message_id):
                return False

            await self.store.merge(subscriber_id, {
                FIELD_LAST_MESSAGE_ID: None,
                FIELD_LAST_MESSAGE_TIMESTAMP: None
            })
            logger.info(f"Cleared digest for subscriber {subscriber_id}")
            return True
        finally:
            await self.store.release_cycle_lock(subscriber_id, token)
