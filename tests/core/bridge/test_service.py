"""Tests for bridge submission and manual refresh."""

import asyncio

import pytest

from conftest import OTHER_OWNER, OWNER, FakeSigner, FakeStatusProvider, SlowStorage, done, make_quote
from swapbridge.core.bridge import BridgeState, BridgeTransactionStore, NoActiveAccountError
from swapbridge.core.bridge.poller import StatusPollingScheduler
from swapbridge.core.bridge.service import BridgeService
from swapbridge.providers.base import StatusResult, StatusValue

NOT_FOUND = StatusResult(status=StatusValue.NOT_FOUND)


@pytest.fixture
def make_service():
    def factory(signer=None, status=None, storage=None):
        store = BridgeTransactionStore(storage=storage)
        scheduler = StatusPollingScheduler(store, {"fake": FakeStatusProvider(status or [NOT_FOUND])})
        return BridgeService(store, scheduler, signer=signer)

    return factory


def _states(tx):
    return [t.to_state for t in tx.history]


class TestSubmitBridge:

    @pytest.mark.asyncio
    async def test_sufficient_allowance_skips_approval(self, make_service):
        signer = FakeSigner(sufficient=True)
        service = make_service(signer)

        tx_id = await service.submit_bridge(make_quote(), owner=OWNER)

        tx = service.store.get(tx_id, OWNER)
        assert tx.state == BridgeState.PENDING_SOURCE
        assert tx.source_tx_hash == "0xsource"
        assert tx.approval_tx_hash is None
        assert _states(tx) == [BridgeState.CHECKING_APPROVAL, BridgeState.PENDING_SOURCE]
        assert signer.calls == ["allowance", "send"]
        assert service.scheduler.is_polling(tx_id)
        await service.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_low_allowance_goes_through_approval(self, make_service):
        signer = FakeSigner(sufficient=False)
        service = make_service(signer)

        tx_id = await service.submit_bridge(make_quote(), owner=OWNER)

        tx = service.store.get(tx_id, OWNER)
        assert _states(tx) == [
            BridgeState.CHECKING_APPROVAL,
            BridgeState.AWAITING_APPROVAL,
            BridgeState.APPROVING,
            BridgeState.PENDING_SOURCE,
        ]
        assert tx.approval_tx_hash == "0xapprove"
        assert signer.calls == ["allowance", "approve", "send"]
        await service.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_rejected_approval_fails_record(self, make_service):
        signer = FakeSigner(sufficient=False, approve_error=RuntimeError("User rejected the request"))
        service = make_service(signer)

        tx_id = await service.submit_bridge(make_quote(), owner=OWNER)

        tx = service.store.get(tx_id, OWNER)
        assert tx.state == BridgeState.FAILED
        assert tx.error == "User rejected the request"
        assert "send" not in signer.calls
        assert not service.scheduler.is_polling(tx_id)

    @pytest.mark.asyncio
    async def test_failed_source_transaction_uses_fallback_message(self, make_service):
        service = make_service(FakeSigner(send_error=RuntimeError("")))

        tx_id = await service.submit_bridge(make_quote(), owner=OWNER)

        tx = service.store.get(tx_id, OWNER)
        assert tx.state == BridgeState.FAILED
        assert tx.error == "Source transaction failed"

    @pytest.mark.asyncio
    async def test_requires_signer(self, make_service):
        service = make_service(signer=None)

        with pytest.raises(RuntimeError):
            await service.submit_bridge(make_quote(), owner=OWNER)

    @pytest.mark.asyncio
    async def test_concurrent_submits_keep_their_owners(self, make_service):
        service = make_service(FakeSigner(), storage=SlowStorage())

        first_id, second_id = await asyncio.gather(
            service.submit_bridge(make_quote(), owner=OWNER),
            service.submit_bridge(make_quote(), owner=OTHER_OWNER),
        )

        assert service.store.get(first_id, OWNER).owner_address == OWNER.lower()
        assert service.store.get(second_id, OTHER_OWNER).owner_address == OTHER_OWNER.lower()
        assert [tx.id for tx in service.store.list(OWNER)] == [first_id]
        assert [tx.id for tx in service.store.list(OTHER_OWNER)] == [second_id]
        assert service.store.active_account is None
        await service.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_requires_account(self, make_service):
        service = make_service(FakeSigner())

        with pytest.raises(NoActiveAccountError):
            await service.submit_bridge(make_quote())


class TestRefresh:

    @pytest.mark.asyncio
    async def test_refresh_completes_and_stops_polling(self, make_service):
        service = make_service(FakeSigner(), status=[done()])
        tx_id = await service.submit_bridge(make_quote(), owner=OWNER)

        updated = await service.refresh(tx_id, OWNER)

        assert updated.state == BridgeState.COMPLETED
        assert not service.scheduler.is_polling(tx_id)

    @pytest.mark.asyncio
    async def test_refresh_restarts_lost_poll_task(self, make_service):
        service = make_service(FakeSigner())
        tx_id = await service.submit_bridge(make_quote(), owner=OWNER)
        service.scheduler.stop(tx_id)

        updated = await service.refresh(tx_id, OWNER)

        assert updated.state == BridgeState.PENDING_SOURCE
        assert service.scheduler.is_polling(tx_id)
        await service.scheduler.shutdown()
