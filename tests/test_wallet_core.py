"""
End-to-end tests over the fully wired engine
"""

from decimal import Decimal

import pytest

from config import Config
from models import TransferStatus
from services.key_value_store import WALLET_DATA_KEY
from services.payment_network import SimulatedNetworkBroadcaster, SimulatedSettlementProvider
from services.wallet_repository import WalletRepository
from utils.error_handler import ValidationError
from wallet_core import build_wallet_core
from tests.conftest import (
    BECH32_ADDRESS,
    LIGHTNING_ADDRESS,
    WALLET_BTC_ADDRESS,
    WALLET_LIGHTNING_ADDRESS,
)


@pytest.fixture
def fast_core(sqlite_store):
    return build_wallet_core(
        store=sqlite_store,
        initial_balances={"btc": "0.05"},
        broadcaster=SimulatedNetworkBroadcaster(onchain_delay_seconds=0, lightning_delay_seconds=0),
        settlement_provider=SimulatedSettlementProvider(delay_seconds=0),
        fee_collection_delay=0,
    )


class TestWalletCore:
    """Sends, conversion and fee trail through one SQLite-backed engine"""

    @pytest.mark.asyncio
    async def test_send_then_convert(self, fast_core):
        await fast_core.wallet_repository.initialize_wallet(WALLET_BTC_ADDRESS, WALLET_LIGHTNING_ADDRESS)

        onchain = await fast_core.transfers.send_on_chain(BECH32_ADDRESS, Decimal("0.005"), "normal")
        lightning = await fast_core.transfers.send_lightning(LIGHTNING_ADDRESS, Decimal("0.001"))
        order = await fast_core.conversions.convert(Decimal("0.01"), "zm")
        await fast_core.shutdown(timeout=5)

        assert onchain.status is TransferStatus.CONFIRMED
        assert lightning.status is TransferStatus.CONFIRMED
        # 0.05 - 0.00504 - 0.001006 - 0.01006
        assert await fast_core.ledger.get_balance("btc") == Decimal("0.033894")
        assert await fast_core.ledger.get_balance("zmw") == Decimal("8325.00")

        fee_ids = {f.transaction_id for f in await fast_core.transfers.get_fee_collection_history()}
        assert fee_ids == {onchain.id, lightning.id, order.id}
        assert len(await fast_core.transfers.get_transfer_history()) == 2
        assert len(await fast_core.conversions.get_conversion_history()) == 1

    @pytest.mark.asyncio
    async def test_state_survives_rebuild(self, sqlite_store, fast_core):
        await fast_core.wallet_repository.initialize_wallet(WALLET_BTC_ADDRESS, WALLET_LIGHTNING_ADDRESS)
        await fast_core.transfers.send_on_chain(BECH32_ADDRESS, Decimal("0.005"))
        await fast_core.shutdown(timeout=5)

        rebuilt = build_wallet_core(store=sqlite_store, initial_balances={"btc": "1"})
        assert await rebuilt.ledger.get_balance("btc") == Decimal("0.04496")
        assert len(await rebuilt.transfers.get_transfer_history()) == 1


class TestWalletRepository:
    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, memory_store):
        repository = WalletRepository(memory_store)
        first = await repository.initialize_wallet(WALLET_BTC_ADDRESS, WALLET_LIGHTNING_ADDRESS)
        second = await repository.initialize_wallet(BECH32_ADDRESS, LIGHTNING_ADDRESS)

        assert second == first
        assert (await memory_store.get(WALLET_DATA_KEY))["btc_address"] == WALLET_BTC_ADDRESS

    @pytest.mark.asyncio
    async def test_invalid_wallet_address(self, memory_store):
        repository = WalletRepository(memory_store)

        with pytest.raises(ValidationError):
            await repository.initialize_wallet("bc1qinvalid", WALLET_LIGHTNING_ADDRESS)
        assert await repository.get() is None


def test_default_configuration_is_consistent():
    assert Config.validate_configuration() == []
