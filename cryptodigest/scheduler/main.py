"""Digest broadcast scheduler."""
import logging
import asyncio
from typing import Awaitable, Callable, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.base import JobLookupError
from telegram import Bot
from cryptodigest.core.config import settings
from cryptodigest.core.redis import get_redis, close_redis
from cryptodigest.models.metric import TickReport
from cryptodigest.providers.binance import BinanceProvider
from cryptodigest.services.message_lifecycle import MessageLifecycleManager
from cryptodigest.services.messaging import TelegramTransport
from cryptodigest.services.subscription_store import SubscriptionStore
from cryptodigest.workers.digest_worker import DigestWorker

logger = logging.getLogger(__name__)


class BroadcastScheduler:
    """Owns the repeating timer that refreshes every subscriber's digest."""

    JOB_ID = "digest_broadcast"

    def __init__(self, worker: DigestWorker, scheduler: Optional[AsyncIOScheduler] = None):
        logger.debug("Creating BroadcastScheduler")
        self.worker = worker
        self.scheduler = scheduler if scheduler is not None else AsyncIOScheduler()
        self._job = None

    @property
    def running(self) -> bool:
        return self._job is not None

    def _cancel_job(self):
        if self._job is None:
            return
        try:
            self.scheduler.remove_job(self.JOB_ID)
        except JobLookupError:
            logger.debug("Broadcast job already removed")
        self._job = None

    def start(
        self,
        interval_seconds: Optional[float] = None,
        on_tick: Optional[Callable[[], Awaitable]] = None
    ):
        """
        Start (or restart) the periodic broadcast.

        Args:
            interval_seconds: Tick interval (defaults to the configured cadence)
            on_tick: Coroutine function run on every tick (defaults to the worker tick)
        """
        interval = interval_seconds if interval_seconds is not None else settings.refresh_interval_seconds
        if interval <= 0:
            raise ValueError("Tick interval must be positive")

        # The old timer is fully cancelled before the new one is armed
        self._cancel_job()

        self._job = self.scheduler.add_job(
            on_tick or self.worker.run_tick,
            trigger=IntervalTrigger(seconds=interval),
            id=self.JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

        if not self.scheduler.running:
            self.scheduler.start()

        logger.info(f"Broadcast scheduled every {interval} seconds (policy: {self.worker.policy.value})")

    def stop(self):
        """Stop scheduling ticks. A tick already running is allowed to finish."""
        self._cancel_job()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Broadcast stopped")

    async def run_startup_pass(self) -> TickReport:
        """Refresh every existing subscriber once before the first tick."""
        return await self.worker.run_startup_pass()

    async def trigger_immediate_refresh(self, subscriber_id: int) -> bool:
        """Refresh one subscriber now."""
        return await self.worker.trigger_immediate_refresh(subscriber_id)

    async def run(self):
        """Run the startup pass, then the scheduler indefinitely."""
        logger.info("="*60)
        logger.info("Starting broadcast scheduler...")
        logger.info(f"Log level: {settings.log_level}")
        logger.info(f"Refresh cadence: every {settings.refresh_interval_seconds} seconds")
        logger.info(f"Cycle timeout: {settings.cycle_timeout_seconds} seconds")
        logger.info("="*60)

        await self.run_startup_pass()
        self.start()

        try:
            # Keep running
            while True:
                await asyncio.sleep(1)
        finally:
            logger.info("Shutting down scheduler...")
            self.stop()


async def build_worker(bot: Bot) -> DigestWorker:
    """Wire a worker to Redis, Binance and Telegram."""
    store = SubscriptionStore(await get_redis())
    await store.initialize_allowed_symbols()
    return DigestWorker(
        store=store,
        provider=BinanceProvider(),
        lifecycle=MessageLifecycleManager(TelegramTransport(bot), timezone_str=settings.timezone)
    )


async def main():
    """Main entry point for a standalone broadcaster process."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    bot = Bot(token=settings.telegram_bot_token)
    worker = await build_worker(bot)
    scheduler = BroadcastScheduler(worker)

    async with bot:
        try:
            await scheduler.run()
        finally:
            await worker.provider.close()
            await close_redis()


if __name__ == "__main__":
    asyncio.run(main())
