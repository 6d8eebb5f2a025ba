"""
Transfer orchestrator tests

Covers on-chain and Lightning sends end to end: fee debits, lifecycle states,
compensation on broadcast failure or timeout, survival of a cancelled caller,
and serialization of concurrent sends against one balance.
"""

import asyncio
from decimal import Decimal

import pytest

from models import FeeType, Transfer, TransferKind, TransferStatus
from services.balance_ledger import BalanceLedger
from services.history_store import HistoryStore
from services.key_value_store import TRANSFER_HISTORY_KEY, WALLET_BALANCE_KEY, InMemoryKeyValueStore
from services.payment_network import BroadcastReceipt, NetworkBroadcaster
from services.transfer_orchestrator import TransferOrchestrator
from services.wallet_repository import WalletRepository
from utils.error_handler import (
    ErrorCodes,
    InsufficientFundsError,
    NetworkError,
    PersistenceError,
    ValidationError,
    WalletNotInitializedError,
)
from tests.conftest import (
    BECH32_ADDRESS,
    LEGACY_ADDRESS,
    LIGHTNING_ADDRESS,
    WALLET_BTC_ADDRESS,
    WALLET_LIGHTNING_ADDRESS,
)


class RecordingBroadcaster(NetworkBroadcaster):
    """Records the status each transfer had when it reached the network"""

    def __init__(self):
        self.seen = []

    async def broadcast(self, transfer: Transfer) -> BroadcastReceipt:
        self.seen.append((transfer.id, transfer.status))
        return BroadcastReceipt(tx_hash="ab" * 32)


class FailingBroadcaster(NetworkBroadcaster):
    def __init__(self, error: Exception):
        self.error = error

    async def broadcast(self, transfer: Transfer) -> BroadcastReceipt:
        raise self.error


class GatedBroadcaster(NetworkBroadcaster):
    """Blocks every broadcast until the gate opens"""

    def __init__(self):
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def broadcast(self, transfer: Transfer) -> BroadcastReceipt:
        self.entered.set()
        await self.gate.wait()
        return BroadcastReceipt(tx_hash="cd" * 32)


def _orchestrator(ledger, fee_collector, history, wallet_repository, broadcaster, timeout=5):
    return TransferOrchestrator(
        ledger=ledger,
        fee_collector=fee_collector,
        history=history,
        broadcaster=broadcaster,
        wallet_repository=wallet_repository,
        broadcast_timeout=timeout,
    )


class TestOnChainSend:
    """Successful on-chain sends"""

    @pytest.mark.asyncio
    async def test_normal_speed_send(self, transfer_orchestrator, ledger, fee_collector):
        transfer = await transfer_orchestrator.send_on_chain(BECH32_ADDRESS, Decimal("0.005"), "normal")

        assert transfer.status is TransferStatus.CONFIRMED
        assert transfer.kind is TransferKind.ONCHAIN
        assert transfer.id.startswith("btc_")
        assert transfer.from_address == WALLET_BTC_ADDRESS
        assert transfer.to_address == BECH32_ADDRESS
        assert transfer.fee == Decimal("0.00004")
        assert transfer.network_fee == Decimal("0.000015")
        assert transfer.protocol_fee == Decimal("0.000025")
        assert len(transfer.tx_hash) == 64
        assert transfer.confirmed_at is not None
        assert transfer.estimated_confirmation_seconds == 1800
        assert await ledger.get_balance("btc") == Decimal("0.00496")

        await fee_collector.drain(timeout=1)
        fees = await transfer_orchestrator.get_fee_collection_history()
        assert [(f.transaction_id, f.fee_amount, f.fee_type) for f in fees] == [
            (transfer.id, Decimal("0.000025"), FeeType.PROTOCOL)
        ]

    @pytest.mark.asyncio
    async def test_history_newest_first(self, transfer_orchestrator):
        first = await transfer_orchestrator.send_on_chain(LEGACY_ADDRESS, Decimal("0.001"), "slow")
        second = await transfer_orchestrator.send_on_chain(BECH32_ADDRESS, Decimal("0.001"), "fast")

        history = await transfer_orchestrator.get_transfer_history()
        assert [t.id for t in history] == [second.id, first.id]
        assert history[0].status is TransferStatus.CONFIRMED
        assert history[0].amount == Decimal("0.001")

    @pytest.mark.asyncio
    async def test_broadcast_sees_broadcasting_state(
        self, ledger, fee_collector, history, wallet_repository
    ):
        broadcaster = RecordingBroadcaster()
        orchestrator = _orchestrator(ledger, fee_collector, history, wallet_repository, broadcaster)

        transfer = await orchestrator.send_on_chain(BECH32_ADDRESS, Decimal("0.001"))

        assert broadcaster.seen == [(transfer.id, TransferStatus.BROADCASTING)]
        await fee_collector.drain(timeout=1)

    @pytest.mark.asyncio
    async def test_fee_collection_address_and_network_fees(self, transfer_orchestrator):
        assert transfer_orchestrator.get_fee_collection_address().startswith("bc1")
        assert transfer_orchestrator.get_current_network_fees()["normal"] == Decimal("0.000015")

    def test_address_helpers(self):
        assert TransferOrchestrator.validate_bitcoin_address(LEGACY_ADDRESS)
        assert not TransferOrchestrator.validate_bitcoin_address(LIGHTNING_ADDRESS)
        assert TransferOrchestrator.validate_lightning_address(LIGHTNING_ADDRESS)


class TestLightningSend:
    @pytest.mark.asyncio
    async def test_lightning_send(self, transfer_orchestrator, ledger):
        transfer = await transfer_orchestrator.send_lightning(LIGHTNING_ADDRESS, Decimal("0.001"))

        assert transfer.status is TransferStatus.CONFIRMED
        assert transfer.kind is TransferKind.LIGHTNING
        assert transfer.id.startswith("ln_")
        assert transfer.tx_hash.startswith("ln_")
        assert transfer.from_address == WALLET_LIGHTNING_ADDRESS
        assert transfer.fee == Decimal("0.000006")
        assert transfer.fee_rate is None
        # 0.01 - 0.001 - 0.000006
        assert await ledger.get_balance("btc") == Decimal("0.008994")

    @pytest.mark.asyncio
    async def test_sub_satoshi_amount_rejected(self, transfer_orchestrator, ledger):
        with pytest.raises(ValidationError) as exc_info:
            await transfer_orchestrator.send_lightning(LIGHTNING_ADDRESS, Decimal("0.0000000015"))

        assert exc_info.value.code == ErrorCodes.INVALID_AMOUNT
        assert await ledger.get_balance("btc") == Decimal("0.01")

    @pytest.mark.asyncio
    async def test_bitcoin_address_rejected_for_lightning(self, transfer_orchestrator, ledger):
        with pytest.raises(ValidationError) as exc_info:
            await transfer_orchestrator.send_lightning(BECH32_ADDRESS, Decimal("0.001"))

        assert exc_info.value.code == ErrorCodes.INVALID_ADDRESS
        assert await ledger.get_balance("btc") == Decimal("0.01")


class TestSendValidation:
    """Rejected before any side effect"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "address,amount,fee_rate",
        [
            ("not-an-address", Decimal("0.001"), "normal"),
            (BECH32_ADDRESS, Decimal("0"), "normal"),
            (BECH32_ADDRESS, Decimal("-0.001"), "normal"),
            (BECH32_ADDRESS, Decimal("0.001"), "instant"),
            (LIGHTNING_ADDRESS, Decimal("0.001"), "normal"),
        ],
    )
    async def test_invalid_input(self, transfer_orchestrator, ledger, address, amount, fee_rate):
        with pytest.raises(ValidationError):
            await transfer_orchestrator.send_on_chain(address, amount, fee_rate)

        assert await ledger.get_balance("btc") == Decimal("0.01")
        assert await transfer_orchestrator.get_transfer_history() == []
        assert transfer_orchestrator.runner.active_count == 0

    @pytest.mark.asyncio
    async def test_wallet_required(self, ledger, fee_collector, history, broadcaster):
        orchestrator = _orchestrator(
            ledger, fee_collector, history, WalletRepository(InMemoryKeyValueStore()), broadcaster
        )

        with pytest.raises(WalletNotInitializedError):
            await orchestrator.send_on_chain(BECH32_ADDRESS, Decimal("0.001"))
        assert await ledger.get_balance("btc") == Decimal("0.01")

    @pytest.mark.asyncio
    async def test_insufficient_funds_creates_no_transfer(self, transfer_orchestrator, ledger, broadcaster):
        with pytest.raises(InsufficientFundsError):
            await transfer_orchestrator.send_on_chain(BECH32_ADDRESS, Decimal("0.00997"), "normal")

        assert await ledger.get_balance("btc") == Decimal("0.01")
        assert broadcaster.broadcast_count == 0


class TestBroadcastFailures:
    """The debit is reversed whenever the transfer ends failed"""

    @pytest.mark.asyncio
    async def test_broadcast_error_compensates(self, ledger, fee_collector, history, wallet_repository):
        orchestrator = _orchestrator(
            ledger, fee_collector, history, wallet_repository, FailingBroadcaster(RuntimeError("node rejected"))
        )

        with pytest.raises(NetworkError) as exc_info:
            await orchestrator.send_on_chain(BECH32_ADDRESS, Decimal("0.005"))

        failed = exc_info.value.entity
        assert failed.status is TransferStatus.FAILED
        assert "node rejected" in failed.failure_reason
        assert await ledger.get_balance("btc") == Decimal("0.01")
        assert await orchestrator.get_transfer_history() == []

        await fee_collector.drain(timeout=1)
        assert await fee_collector.get_fee_collection_history() == []

    @pytest.mark.asyncio
    async def test_broadcast_timeout_compensates(self, ledger, fee_collector, history, wallet_repository):
        orchestrator = _orchestrator(
            ledger, fee_collector, history, wallet_repository, GatedBroadcaster(), timeout=0.05
        )

        with pytest.raises(NetworkError) as exc_info:
            await orchestrator.send_lightning(LIGHTNING_ADDRESS, Decimal("0.002"))

        assert exc_info.value.code == ErrorCodes.EXTERNAL_TIMEOUT
        assert exc_info.value.entity.status is TransferStatus.FAILED
        assert await ledger.get_balance("btc") == Decimal("0.01")

    @pytest.mark.asyncio
    async def test_failed_compensation_propagates(self, flaky_store, fee_collector, history, wallet_repository):
        ledger = BalanceLedger(flaky_store, initial_balances={"btc": "0.01"})

        class BreakStorageThenFail(NetworkBroadcaster):
            async def broadcast(self, transfer):
                flaky_store.fail_keys.add(WALLET_BALANCE_KEY)
                raise RuntimeError("node rejected")

        orchestrator = _orchestrator(ledger, fee_collector, history, wallet_repository, BreakStorageThenFail())

        with pytest.raises(PersistenceError):
            await orchestrator.send_on_chain(BECH32_ADDRESS, Decimal("0.005"))

    @pytest.mark.asyncio
    async def test_history_write_failure_does_not_fail_send(
        self, ledger, fee_collector, wallet_repository, broadcaster, flaky_store
    ):
        flaky_store.fail_keys.add(TRANSFER_HISTORY_KEY)
        orchestrator = _orchestrator(ledger, fee_collector, HistoryStore(flaky_store), wallet_repository, broadcaster)

        transfer = await orchestrator.send_on_chain(BECH32_ADDRESS, Decimal("0.005"))

        assert transfer.status is TransferStatus.CONFIRMED
        assert await ledger.get_balance("btc") == Decimal("0.00496")
        await fee_collector.drain(timeout=1)


class TestLifecycleIsolation:
    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_transfer(
        self, ledger, fee_collector, history, wallet_repository
    ):
        broadcaster = GatedBroadcaster()
        orchestrator = _orchestrator(ledger, fee_collector, history, wallet_repository, broadcaster)

        caller = asyncio.create_task(orchestrator.send_on_chain(BECH32_ADDRESS, Decimal("0.005")))
        await broadcaster.entered.wait()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        assert orchestrator.runner.active_count == 1
        broadcaster.gate.set()
        await orchestrator.drain(timeout=1)
        await fee_collector.drain(timeout=1)

        history_entries = await orchestrator.get_transfer_history()
        assert len(history_entries) == 1
        assert history_entries[0].status is TransferStatus.CONFIRMED
        assert await ledger.get_balance("btc") == Decimal("0.00496")

    @pytest.mark.asyncio
    async def test_shutdown_cancellation_compensates(self, ledger, fee_collector, history, wallet_repository):
        broadcaster = GatedBroadcaster()
        orchestrator = _orchestrator(ledger, fee_collector, history, wallet_repository, broadcaster)

        caller = asyncio.create_task(orchestrator.send_on_chain(BECH32_ADDRESS, Decimal("0.005")))
        await broadcaster.entered.wait()
        await orchestrator.runner.cancel_all()

        with pytest.raises(asyncio.CancelledError):
            await caller
        assert await ledger.get_balance("btc") == Decimal("0.01")
        assert await orchestrator.get_transfer_history() == []

    @pytest.mark.asyncio
    async def test_concurrent_sends_never_overdraw(self, transfer_orchestrator, ledger):
        results = await asyncio.gather(
            *(transfer_orchestrator.send_on_chain(BECH32_ADDRESS, Decimal("0.003")) for _ in range(5)),
            return_exceptions=True,
        )

        confirmed = [r for r in results if isinstance(r, Transfer)]
        rejected = [r for r in results if isinstance(r, InsufficientFundsError)]
        assert len(confirmed) == 3
        assert len(rejected) == 2
        assert await ledger.get_balance("btc") == Decimal("0.00091")
