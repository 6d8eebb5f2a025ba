"""
Shared fixtures for the wallet engine test suite.

Key Components:
1. In-memory and SQLite-backed key-value stores, plus a store that fails on demand
2. Ledger, history, fee collector and rate cache wired like production, with zero delays
3. Orchestrators over an initialized wallet
4. A controllable clock for TTL tests
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Set

import pytest
import pytest_asyncio

from database import build_engine, create_session_factory, create_tables
from services.balance_ledger import BalanceLedger
from services.conversion_orchestrator import ConversionOrchestrator
from services.fee_collector import FeeCollector
from services.history_store import HistoryStore
from services.key_value_store import InMemoryKeyValueStore, SqlKeyValueStore
from services.payment_network import SimulatedNetworkBroadcaster, SimulatedSettlementProvider
from services.rate_cache import RateCache
from services.rate_provider import StaticRateProvider
from services.transfer_orchestrator import TransferOrchestrator
from services.wallet_repository import WalletRepository
from utils.error_handler import PersistenceError

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Well-formed destinations
LEGACY_ADDRESS = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
BECH32_ADDRESS = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"
TAPROOT_ADDRESS = "bc1p" + "5d7rjq7g6rdk2yhzks9smlaqtedr4dekq08ge8ztwac72sfr9rusxg3297"
LIGHTNING_ADDRESS = "satoshi@walletofsatoshi.com"
WALLET_BTC_ADDRESS = "bc1qxy2kgdygjrsqtzq2n0yrf2493p83kkfjhx0wlh"
WALLET_LIGHTNING_ADDRESS = "wallet@voltx.app"


class FlakyKeyValueStore(InMemoryKeyValueStore):
    """In-memory store whose writes fail for selected keys (or all keys)"""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_keys: Set[str] = set()
        self.fail_all_writes = False
        self.write_attempts = 0

    def _should_fail(self, key: str) -> bool:
        return self.fail_all_writes or key in self.fail_keys

    async def set(self, key: str, value: Any) -> None:
        self.write_attempts += 1
        if self._should_fail(key):
            raise PersistenceError(f"Simulated write failure for '{key}'")
        await super().set(key, value)


class FakeClock:
    """Manually advanced UTC clock"""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def memory_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def flaky_store():
    return FlakyKeyValueStore()


@pytest_asyncio.fixture
async def sqlite_store():
    """SqlKeyValueStore over a private in-memory SQLite database"""
    engine = build_engine("sqlite:///:memory:")
    await create_tables(engine)
    store = SqlKeyValueStore(create_session_factory(engine), engine=engine)
    yield store
    await store.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(memory_store):
    return BalanceLedger(memory_store, initial_balances={"btc": Decimal("0.01")})


@pytest.fixture
def history(memory_store):
    return HistoryStore(memory_store)


@pytest.fixture
def fee_collector(history):
    return FeeCollector(history, delay_seconds=0)


@pytest.fixture
def rate_provider():
    return StaticRateProvider()


@pytest.fixture
def rate_cache(rate_provider, memory_store, clock):
    return RateCache(rate_provider, memory_store, clock=clock)


@pytest.fixture
def broadcaster():
    return SimulatedNetworkBroadcaster(onchain_delay_seconds=0, lightning_delay_seconds=0)


@pytest.fixture
def settlement_provider():
    return SimulatedSettlementProvider(delay_seconds=0)


@pytest_asyncio.fixture
async def wallet_repository(memory_store):
    repository = WalletRepository(memory_store)
    await repository.initialize_wallet(WALLET_BTC_ADDRESS, WALLET_LIGHTNING_ADDRESS)
    return repository


@pytest_asyncio.fixture
async def transfer_orchestrator(ledger, fee_collector, history, broadcaster, wallet_repository):
    orchestrator = TransferOrchestrator(
        ledger=ledger,
        fee_collector=fee_collector,
        history=history,
        broadcaster=broadcaster,
        wallet_repository=wallet_repository,
        broadcast_timeout=5,
    )
    yield orchestrator
    await orchestrator.drain(timeout=5)
    await fee_collector.drain(timeout=5)


@pytest_asyncio.fixture
async def conversion_orchestrator(ledger, rate_cache, fee_collector, history, settlement_provider, memory_store):
    orchestrator = ConversionOrchestrator(
        ledger=ledger,
        rate_cache=rate_cache,
        fee_collector=fee_collector,
        history=history,
        settlement_provider=settlement_provider,
        store=memory_store,
        settlement_timeout=5,
    )
    yield orchestrator
    await orchestrator.drain(timeout=5)
    await fee_collector.drain(timeout=5)
