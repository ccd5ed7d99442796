"""Unit tests for DigestWorker.

This module tests refresh cycles end to end against fake Redis, a static
market-data provider and a recording transport.
"""
import asyncio
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock

from cryptodigest.core.errors import QuoteUnavailableError, StoreError
from cryptodigest.services.message_lifecycle import ReplacePolicy
from cryptodigest.workers.digest_worker import DigestWorker
from tests.conftest import BTC_QUOTE, ETH_QUOTE, StaticProvider


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def worker(store, provider, lifecycle):
    """Worker deleting the previous digest on every refresh."""
    return DigestWorker(
        store, provider, lifecycle,
        policy=ReplacePolicy.ALWAYS,
        cycle_timeout=5,
        max_concurrent_cycles=4
    )


def make_worker(store, provider, lifecycle, **kwargs):
    kwargs.setdefault("policy", ReplacePolicy.ALWAYS)
    kwargs.setdefault("cycle_timeout", 5)
    return DigestWorker(store, provider, lifecycle, **kwargs)


# ============================================================================
# Tests for run_tick
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestRunTick:
    """Test run_tick method."""

    @pytest.mark.critical
    async def test_btc_digest(self, worker, store, transport):
        """✅ Digest text and record update for a single BTC subscriber."""
        await store.merge(1, {"watch_list": ["BTC"]})

        report = await worker.run_tick()

        assert report.refreshed == [1]
        recipient, text = transport.sent[0]
        assert recipient == 1
        assert "65000.00" in text
        assert "8.3" in text
        assert "62.5" in text
        assert "550.0" in text

        record = await store.get(1)
        assert record.last_message_id in transport.live_messages(1)
        assert record.last_message_timestamp == transport.base_timestamp + record.last_message_id

    async def test_digest_follows_watch_list_order(self, worker, store, transport):
        """✅ One line per symbol in watch-list order."""
        await store.merge(1, {"watch_list": ["ETH", "BTC"]})

        await worker.run_tick()

        lines = transport.sent[0][1].split("\n")
        assert lines[0].startswith("*ETH*")
        assert lines[1].startswith("*BTC*")

    @pytest.mark.critical
    async def test_failure_isolated_per_subscriber(self, store, lifecycle, transport):
        """✅ Quote failure for one subscriber does not affect the other."""
        provider = StaticProvider(
            {"BTC": dict(BTC_QUOTE)},
            failures={"ETH": QuoteUnavailableError("ticker down", symbol="ETH")}
        )
        worker = make_worker(store, provider, lifecycle)
        await store.merge(1, {"watch_list": ["BTC"]})
        await store.merge(2, {"watch_list": ["ETH"], "last_message_id": 55, "last_message_timestamp": 1})
        before = await store.get(2)

        report = await worker.run_tick()

        assert report.refreshed == [1]
        assert report.failed[2].startswith("QuoteUnavailableError")
        assert (await store.get(1)).last_message_id is not None
        assert await store.get(2) == before
        assert [recipient for recipient, _ in transport.sent] == [1]

    @pytest.mark.critical
    async def test_single_live_message(self, worker, store, transport):
        """✅ Repeated ticks leave exactly one live digest, the recorded one."""
        await store.merge(1, {"watch_list": ["BTC", "ETH"]})

        for _ in range(3):
            await worker.run_tick()

        record = await store.get(1)
        assert transport.live_messages(1) == {record.last_message_id}
        assert len(transport.sent) == 3
        assert len(transport.deleted) == 2

    async def test_many_subscribers(self, worker, store, transport):
        """✅ Every active subscriber refreshed in one tick."""
        for subscriber_id in range(1, 8):
            await store.merge(subscriber_id, {"watch_list": ["BTC"]})

        report = await worker.run_tick()

        assert sorted(report.refreshed) == list(range(1, 8))
        for subscriber_id in range(1, 8):
            assert len(transport.live_messages(subscriber_id)) == 1

    async def test_delivery_failure_keeps_record(self, worker, store, transport):
        """✅ DeliveryFailedError → record unchanged, reported as failed."""
        await store.merge(1, {"watch_list": ["BTC"]})
        transport.fail_send.add(1)

        report = await worker.run_tick()

        assert report.failed[1].startswith("DeliveryFailedError")
        record = await store.get(1)
        assert record.last_message_id is None
        assert record.last_message_timestamp is None

    async def test_empty_watch_lists_ignored(self, worker, store, transport):
        """✅ Subscribers without symbols are not visited."""
        await store.merge(1, {})
        await store.merge(2, {"watch_list": []})

        report = await worker.run_tick()

        assert report.total == 0
        assert transport.sent == []

    async def test_no_computable_metric(self, store, lifecycle, transport):
        """✅ Every symbol skipped → nothing sent, record unchanged."""
        provider = StaticProvider({"NEW": dict(ETH_QUOTE, close_30d=0.0)})
        worker = make_worker(store, provider, lifecycle)
        await store.merge(1, {"watch_list": ["NEW"], "last_message_id": 9})

        report = await worker.run_tick()

        assert report.skipped == [1]
        assert transport.sent == []
        assert (await store.get(1)).last_message_id == 9

    async def test_busy_subscriber_skipped(self, worker, store, transport):
        """✅ A subscriber with a running cycle is skipped, not queued."""
        await store.merge(1, {"watch_list": ["BTC"]})
        token = await store.acquire_cycle_lock(1, 10)

        report = await worker.run_tick()

        assert report.skipped == [1]
        assert transport.sent == []
        assert await store.release_cycle_lock(1, token) is True

    async def test_lock_released_after_cycle(self, worker, store, fake_redis):
        """✅ Cycle lock freed once the refresh finishes."""
        await store.merge(1, {"watch_list": ["BTC"]})

        await worker.run_tick()

        assert await fake_redis.exists("test:cycle_lock:1") == 0

    async def test_cycle_timeout(self, store, lifecycle, transport, fake_redis):
        """✅ Slow market data → CycleTimeoutError recorded, nothing sent."""
        provider = StaticProvider({"BTC": dict(BTC_QUOTE)}, delay=0.5)
        worker = make_worker(store, provider, lifecycle, cycle_timeout=0.05)
        await store.merge(1, {"watch_list": ["BTC"]})

        report = await worker.run_tick()

        assert report.failed[1].startswith("CycleTimeoutError")
        assert transport.sent == []
        assert await fake_redis.exists("test:cycle_lock:1") == 0

    async def test_listing_failure(self, worker, store, transport):
        """✅ Store listing failure → empty report, no exception."""
        store.get_all = AsyncMock(side_effect=StoreError("redis down"))

        report = await worker.run_tick()

        assert report.total == 0
        assert transport.sent == []


# ============================================================================
# Tests for persistence and policies
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestPersistence:
    """Test record updates and replacement policies."""

    @pytest.mark.critical
    async def test_store_failure_discards_new_message(self, worker, store, transport):
        """✅ Unrecorded digest is deleted again and the error surfaces."""
        await store.merge(1, {"watch_list": ["BTC"]})
        store.merge = AsyncMock(side_effect=StoreError("write failed", subscriber_id=1))

        with pytest.raises(StoreError):
            await worker.trigger_immediate_refresh(1)

        assert len(transport.sent) == 1
        assert transport.live_messages(1) == set()

    @pytest.mark.critical
    async def test_slow_persist_not_cut_by_timeout(self, store, provider, lifecycle, transport):
        """✅ Store write slower than the cycle timeout still records the digest."""
        worker = make_worker(store, provider, lifecycle, cycle_timeout=0.05)
        await store.merge(1, {"watch_list": ["BTC"]})
        real_merge = store.merge

        async def slow_merge(*args, **kwargs):
            await asyncio.sleep(0.3)
            return await real_merge(*args, **kwargs)

        store.merge = slow_merge
        first = await worker.run_tick()
        second = await worker.run_tick()

        assert first.refreshed == [1]
        assert second.refreshed == [1]
        record = await store.get(1)
        assert transport.live_messages(1) == {record.last_message_id}

    @pytest.mark.critical
    async def test_cancelled_persist_discards_new_message(self, worker, store, transport, fake_redis):
        """✅ Cycle cancelled while recording → new digest deleted, lock freed."""
        await store.merge(1, {"watch_list": ["BTC"]})

        async def stalled_merge(*args, **kwargs):
            await asyncio.sleep(10)

        store.merge = stalled_merge
        task = asyncio.create_task(worker.trigger_immediate_refresh(1))
        await asyncio.sleep(0.1)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(transport.sent) == 1
        assert transport.live_messages(1) == set()
        assert await fake_redis.exists("test:cycle_lock:1") == 0

    @pytest.mark.critical
    async def test_workers_in_two_processes_never_overlap(self, store, lifecycle, transport):
        """✅ Tick in one worker and immediate refresh in another → one digest."""
        provider = StaticProvider({"BTC": dict(BTC_QUOTE)}, delay=0.1)
        broadcaster = make_worker(store, provider, lifecycle)
        bot_worker = make_worker(store, provider, lifecycle)
        await store.merge(1, {"watch_list": ["BTC"]})

        report, refreshed = await asyncio.gather(
            broadcaster.run_tick(),
            bot_worker.trigger_immediate_refresh(1)
        )

        assert len(report.refreshed) + int(refreshed) == 1
        assert len(transport.sent) == 1
        assert transport.live_messages(1) == {(await store.get(1)).last_message_id}

    async def test_startup_pass_deletes_same_day_digest(self, store, provider, lifecycle, transport):
        """✅ Startup pass replaces the digest even under STALE_ONLY."""
        worker = make_worker(store, provider, lifecycle, policy=ReplacePolicy.STALE_ONLY)
        old = await transport.send(1, "old")
        now = int(datetime.now(timezone.utc).timestamp())
        await store.merge(1, {
            "watch_list": ["BTC"],
            "last_message_id": old.message_id,
            "last_message_timestamp": now
        })

        report = await worker.run_startup_pass()

        assert report.refreshed == [1]
        assert (1, old.message_id) in transport.deleted
        assert transport.live_messages(1) == {(await store.get(1)).last_message_id}

    async def test_stale_only_keeps_same_day_digest(self, store, provider, lifecycle, transport):
        """✅ Regular tick under STALE_ONLY keeps today's digest."""
        worker = make_worker(store, provider, lifecycle, policy=ReplacePolicy.STALE_ONLY)
        old = await transport.send(1, "old")
        now = int(datetime.now(timezone.utc).timestamp())
        await store.merge(1, {
            "watch_list": ["BTC"],
            "last_message_id": old.message_id,
            "last_message_timestamp": now
        })

        await worker.run_tick()

        assert transport.deleted == []
        assert old.message_id in transport.live_messages(1)
        # The record only tracks the new digest; the one kept is left behind
        assert (await store.get(1)).last_message_id != old.message_id
        assert len(transport.live_messages(1)) == 2


# ============================================================================
# Tests for trigger_immediate_refresh / clear_digest
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestOnDemand:
    """Test immediate refresh and digest clearing."""

    async def test_immediate_refresh(self, worker, store, transport):
        """✅ Immediate refresh sends and records a digest."""
        await store.merge(1, {"watch_list": ["ETH"]})

        assert await worker.trigger_immediate_refresh(1) is True
        assert (await store.get(1)).last_message_id in transport.live_messages(1)

    async def test_immediate_refresh_unknown_subscriber(self, worker, transport):
        """✅ Unknown subscriber → nothing to do."""
        assert await worker.trigger_immediate_refresh(404) is False
        assert transport.sent == []

    async def test_immediate_refresh_raises(self, store, lifecycle):
        """✅ Market-data failure surfaces to the caller."""
        provider = StaticProvider({}, failures={"BTC": QuoteUnavailableError("down", symbol="BTC")})
        worker = make_worker(store, provider, lifecycle)
        await store.merge(1, {"watch_list": ["BTC"]})

        with pytest.raises(QuoteUnavailableError) as exc_info:
            await worker.trigger_immediate_refresh(1)

        assert exc_info.value.subscriber_id == 1

    @pytest.mark.critical
    async def test_clear_after_last_symbol_removed(self, worker, store, transport):
        """✅ Removing the only symbol deletes the digest and clears its fields."""
        await store.merge(1, {"watch_list": ["BTC"]})
        await worker.trigger_immediate_refresh(1)
        await store.remove_from_watch_list(1, "BTC")

        assert await worker.clear_digest(1) is True

        record = await store.get(1)
        assert record.last_message_id is None
        assert record.last_message_timestamp is None
        assert transport.live_messages(1) == set()

    async def test_clear_delete_failure_keeps_fields(self, worker, store, transport):
        """✅ Failed deletion keeps the message fields for a later retry."""
        await store.merge(1, {"watch_list": ["BTC"]})
        await worker.trigger_immediate_refresh(1)
        await store.remove_from_watch_list(1, "BTC")
        transport.fail_delete.add(1)

        assert await worker.clear_digest(1) is False
        assert (await store.get(1)).last_message_id is not None

    async def test_clear_with_symbols_again(self, worker, store, transport):
        """✅ Watch-list refilled before clearing → digest kept."""
        await store.merge(1, {"watch_list": ["BTC"]})
        await worker.trigger_immediate_refresh(1)

        assert await worker.clear_digest(1) is False
        assert transport.deleted == []

    async def test_clear_without_digest(self, worker, store):
        """✅ Nothing recorded → nothing to clear."""
        await store.merge(1, {})

        assert await worker.clear_digest(1) is True
        assert await worker.clear_digest(999) is True

    @pytest.mark.critical
    async def test_clear_waits_for_running_cycle(self, store, lifecycle, transport):
        """✅ Clearing during a refresh deletes the digest that refresh sends."""
        provider = StaticProvider({"BTC": dict(BTC_QUOTE)}, delay=0.2)
        broadcaster = make_worker(store, provider, lifecycle)
        bot_worker = make_worker(store, provider, lifecycle)
        await store.merge(1, {"watch_list": ["BTC"]})

        refresh = asyncio.create_task(broadcaster.trigger_immediate_refresh(1))
        await asyncio.sleep(0.05)
        await store.remove_from_watch_list(1, "BTC")

        assert await bot_worker.clear_digest(1) is True
        assert await refresh is True

        record = await store.get(1)
        assert record.last_message_id is None
        assert len(transport.sent) == 1
        assert transport.live_messages(1) == set()

    async def test_clear_gives_up_on_held_lock(self, store, provider, lifecycle):
        """✅ Lock never released within its lifetime → digest kept."""
        worker = make_worker(store, provider, lifecycle, lock_ttl=0.2)
        await store.merge(1, {"watch_list": [], "last_message_id": 5})
        await store.acquire_cycle_lock(1, 10)

        assert await worker.clear_digest(1) is False
        assert (await store.get(1)).last_message_id == 5
