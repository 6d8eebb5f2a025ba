#!/usr/bin/env python3
"""
Wallet Engine Composition Root

Wires every collaborator by construction:
- key-value store → wallet repository, ledger, history, rate cache
- fee collector and history shared by both orchestrators
- auto-convert monitor and job scheduler on top
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional, Union

from config import Config
from database import build_engine, create_session_factory, create_tables, verify_connection
from jobs.auto_convert_monitor import AutoConvertMonitor
from jobs.scheduler import WalletJobScheduler
from services.balance_ledger import BalanceLedger
from services.conversion_orchestrator import ConversionOrchestrator
from services.fee_collector import FeeCollector
from services.history_store import HistoryStore
from services.key_value_store import InMemoryKeyValueStore, KeyValueStore, SqlKeyValueStore
from services.payment_network import (
    NetworkBroadcaster,
    SettlementProvider,
    SimulatedNetworkBroadcaster,
    SimulatedSettlementProvider,
)
from services.rate_cache import RateCache
from services.rate_provider import RateProvider, StaticRateProvider
from services.transfer_orchestrator import TransferOrchestrator
from services.wallet_repository import WalletRepository
from utils.error_handler import PersistenceError

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(level=level or Config.LOG_LEVEL, format=LOG_FORMAT)


@dataclass
class WalletCore:
    """Fully wired engine"""

    store: KeyValueStore
    wallet_repository: WalletRepository
    ledger: BalanceLedger
    history: HistoryStore
    fee_collector: FeeCollector
    rate_cache: RateCache
    transfers: TransferOrchestrator
    conversions: ConversionOrchestrator
    auto_convert_monitor: AutoConvertMonitor
    scheduler: WalletJobScheduler

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop jobs, then let in-flight lifecycles and fee collections settle"""
        logger.info("🛑 Wallet engine shutting down...")
        await self.scheduler.stop()
        await self.transfers.drain(timeout)
        await self.conversions.drain(timeout)
        await self.fee_collector.drain(timeout)
        logger.info("✅ Wallet engine stopped")


async def build_sql_store(database_url: str = Config.DATABASE_URL) -> SqlKeyValueStore:
    engine = build_engine(database_url)
    if not await verify_connection(engine):
        raise PersistenceError(f"Cannot connect to database at {engine.url.render_as_string(hide_password=True)}")
    await create_tables(engine)
    return SqlKeyValueStore(create_session_factory(engine), engine=engine)


def build_wallet_core(
    store: Optional[KeyValueStore] = None,
    initial_balances: Optional[Mapping[str, Union[Decimal, str]]] = None,
    broadcaster: Optional[NetworkBroadcaster] = None,
    settlement_provider: Optional[SettlementProvider] = None,
    rate_provider: Optional[RateProvider] = None,
    fee_collection_delay: float = Config.FEE_COLLECTION_DELAY_SECONDS,
    broadcast_timeout: float = Config.BROADCAST_TIMEOUT_SECONDS,
    settlement_timeout: float = Config.SETTLEMENT_TIMEOUT_SECONDS,
) -> WalletCore:
    """Build the engine; omitted collaborators get the simulated defaults and an in-memory store"""
    store = store if store is not None else InMemoryKeyValueStore()

    wallet_repository = WalletRepository(store)
    ledger = BalanceLedger(store, initial_balances=initial_balances)
    history = HistoryStore(store)
    fee_collector = FeeCollector(history, delay_seconds=fee_collection_delay)
    rate_cache = RateCache(rate_provider or StaticRateProvider(), store)

    transfers = TransferOrchestrator(
        ledger=ledger,
        fee_collector=fee_collector,
        history=history,
        broadcaster=broadcaster or SimulatedNetworkBroadcaster(),
        wallet_repository=wallet_repository,
        broadcast_timeout=broadcast_timeout,
    )
    conversions = ConversionOrchestrator(
        ledger=ledger,
        rate_cache=rate_cache,
        fee_collector=fee_collector,
        history=history,
        settlement_provider=settlement_provider or SimulatedSettlementProvider(),
        store=store,
        settlement_timeout=settlement_timeout,
    )
    monitor = AutoConvertMonitor(conversions, ledger)
    scheduler = WalletJobScheduler(monitor, conversions, rate_cache)

    logger.info("✅ Wallet engine wired")
    return WalletCore(
        store=store,
        wallet_repository=wallet_repository,
        ledger=ledger,
        history=history,
        fee_collector=fee_collector,
        rate_cache=rate_cache,
        transfers=transfers,
        conversions=conversions,
        auto_convert_monitor=monitor,
        scheduler=scheduler,
    )


async def main() -> None:
    setup_logging()
    problems = Config.validate_configuration()
    if problems and Config.IS_PRODUCTION:
        raise SystemExit(f"Refusing to start with configuration problems: {problems}")

    store = await build_sql_store()
    core = build_wallet_core(store=store)
    core.scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        await core.shutdown(timeout=Config.SETTLEMENT_TIMEOUT_SECONDS)
        await store.dispose()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted")
