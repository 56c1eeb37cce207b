"""Tests for bridge status polling."""

import asyncio

import pytest
import pytest_asyncio

from conftest import OWNER, USDC_BASE, USDC_ETHEREUM, FakeClock, FakeStatusProvider, SlowStorage, done
from swapbridge.core.bridge import BridgeState, BridgeTransactionStore, TransactionNotFoundError
from swapbridge.core.bridge.poller import StatusPollingScheduler
from swapbridge.providers.base import StatusResult, StatusValue

PENDING = StatusResult(status=StatusValue.PENDING, substatus="WAIT_DESTINATION_TRANSACTION")
NOT_FOUND = StatusResult(status=StatusValue.NOT_FOUND)


# =============================================================================
# Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def store():
    store = BridgeTransactionStore()
    await store.set_active_account(OWNER)
    return store


@pytest.fixture
def poll_clock():
    return FakeClock()


@pytest.fixture
def make_scheduler(store, poll_clock):
    def factory(provider, interval_seconds=15.0, max_poll_seconds=1800.0):
        async def sleep(seconds):
            poll_clock.advance(seconds)
            await asyncio.sleep(0)

        return StatusPollingScheduler(
            store,
            {"lifi": provider},
            interval_seconds=interval_seconds,
            max_poll_seconds=max_poll_seconds,
            clock=poll_clock,
            sleep=sleep,
        )

    return factory


async def submitted_tx(store):
    tx = await store.create(
        source_chain=1,
        dest_chain=8453,
        source_asset=USDC_ETHEREUM,
        dest_asset=USDC_BASE,
        from_amount="100000000",
        to_amount="99500000",
        provider_name="lifi",
        tool="stargate",
    )
    await store.transition(tx.id, BridgeState.CHECKING_APPROVAL)
    return await store.transition(tx.id, BridgeState.PENDING_SOURCE, source_tx_hash="0xsource")


async def wait_done(scheduler, tx_id):
    entry = scheduler._tasks.get(tx_id)
    if entry is not None:
        await asyncio.wait_for(entry.task, timeout=1)


# =============================================================================
# Scheduled polling
# =============================================================================

class TestPolling:

    @pytest.mark.asyncio
    async def test_pending_then_done_completes_record(self, store, make_scheduler):
        provider = FakeStatusProvider([PENDING, done("0xdest", "99400000")])
        scheduler = make_scheduler(provider)
        tx = await submitted_tx(store)

        assert scheduler.start(tx)
        await wait_done(scheduler, tx.id)

        final = store.get(tx.id)
        assert final.state == BridgeState.COMPLETED
        assert final.dest_tx_hash == "0xdest"
        assert final.dest_amount == "99400000"
        assert [t.to_state for t in final.history][-2:] == [BridgeState.BRIDGING, BridgeState.COMPLETED]
        assert provider.calls == ["0xsource", "0xsource"]
        assert not scheduler.is_polling(tx.id)

    @pytest.mark.asyncio
    async def test_failed_status_marks_record_failed(self, store, make_scheduler):
        provider = FakeStatusProvider([StatusResult(status=StatusValue.FAILED, substatus="REFUNDED")])
        scheduler = make_scheduler(provider)
        tx = await submitted_tx(store)

        scheduler.start(tx)
        await wait_done(scheduler, tx.id)

        final = store.get(tx.id)
        assert final.state == BridgeState.FAILED
        assert final.error == "REFUNDED"

    @pytest.mark.asyncio
    async def test_provider_errors_are_retried_next_tick(self, store, make_scheduler):
        provider = FakeStatusProvider([RuntimeError("502 Bad Gateway"), done()])
        scheduler = make_scheduler(provider)
        tx = await submitted_tx(store)

        scheduler.start(tx)
        await wait_done(scheduler, tx.id)

        assert store.get(tx.id).state == BridgeState.COMPLETED
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_storage_errors_are_retried_next_tick(self, poll_clock):
        storage = SlowStorage()
        store = BridgeTransactionStore(storage=storage)
        await store.set_active_account(OWNER)
        provider = FakeStatusProvider([done()])

        async def sleep(seconds):
            poll_clock.advance(seconds)
            await asyncio.sleep(0)

        scheduler = StatusPollingScheduler(store, {"lifi": provider}, clock=poll_clock, sleep=sleep)
        tx = await submitted_tx(store)
        storage.put_errors.append(OSError("disk full"))

        scheduler.start(tx)
        await wait_done(scheduler, tx.id)

        assert store.get(tx.id).state == BridgeState.COMPLETED
        assert (await storage.get(OWNER))[0]["state"] == "completed"
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_polling_gives_up_after_budget(self, store, make_scheduler, poll_clock):
        provider = FakeStatusProvider([NOT_FOUND])
        scheduler = make_scheduler(provider, interval_seconds=15.0, max_poll_seconds=60.0)
        tx = await submitted_tx(store)

        scheduler.start(tx)
        await wait_done(scheduler, tx.id)

        # Polls at 0, 15, 30, 45 and 60 seconds, then stops at 75
        assert len(provider.calls) == 5
        assert store.get(tx.id).state == BridgeState.PENDING_SOURCE
        assert not scheduler.is_polling(tx.id)

    @pytest.mark.asyncio
    async def test_one_task_per_transaction(self, store, make_scheduler):
        scheduler = make_scheduler(FakeStatusProvider([NOT_FOUND]))
        tx = await submitted_tx(store)

        assert scheduler.start(tx)
        assert not scheduler.start(tx)
        assert scheduler.active_ids == [tx.id]

        await scheduler.shutdown()
        assert scheduler.active_ids == []

    @pytest.mark.asyncio
    async def test_records_without_source_hash_are_not_polled(self, store, make_scheduler):
        scheduler = make_scheduler(FakeStatusProvider([done()]))
        tx = await store.create(
            source_chain=1,
            dest_chain=8453,
            source_asset=USDC_ETHEREUM,
            dest_asset=USDC_BASE,
            from_amount="1",
            to_amount="1",
            provider_name="lifi",
        )

        assert not scheduler.start(tx)

    @pytest.mark.asyncio
    async def test_resume_pending_after_restart(self, store, make_scheduler):
        provider = FakeStatusProvider([done()])
        scheduler = make_scheduler(provider)
        tx = await submitted_tx(store)

        assert scheduler.resume_pending() == 1
        await wait_done(scheduler, tx.id)

        assert store.get(tx.id).state == BridgeState.COMPLETED


# =============================================================================
# Manual refresh
# =============================================================================

class TestPollOnce:

    @pytest.mark.asyncio
    async def test_poll_once_applies_status(self, store, make_scheduler):
        scheduler = make_scheduler(FakeStatusProvider([done()]))
        tx = await submitted_tx(store)

        updated = await scheduler.poll_once(tx.id)

        assert updated.state == BridgeState.COMPLETED

    @pytest.mark.asyncio
    async def test_poll_once_unknown_id(self, store, make_scheduler):
        scheduler = make_scheduler(FakeStatusProvider([done()]))

        with pytest.raises(TransactionNotFoundError):
            await scheduler.poll_once("missing")

    @pytest.mark.asyncio
    async def test_terminal_record_is_left_alone(self, store, make_scheduler):
        provider = FakeStatusProvider([done()])
        scheduler = make_scheduler(provider)
        tx = await submitted_tx(store)
        await store.transition(tx.id, BridgeState.FAILED, error="Reverted")

        updated = await scheduler.poll_once(tx.id)

        assert updated.state == BridgeState.FAILED
        assert provider.calls == []
