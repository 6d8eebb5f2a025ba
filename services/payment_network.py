"""
Payment network collaborators.

Signing, broadcasting and fiat settlement happen outside the engine. The
orchestrators talk only to `NetworkBroadcaster` and `SettlementProvider`; the
simulated implementations stand in for a node and a settlement partner.
"""

import asyncio
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass

from config import Config
from models import ConversionOrder, Transfer, TransferKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BroadcastReceipt:
    tx_hash: str


class NetworkBroadcaster(ABC):
    @abstractmethod
    async def broadcast(self, transfer: Transfer) -> BroadcastReceipt:
        """Submit the transfer; raise on rejection"""
        ...


class SettlementProvider(ABC):
    @abstractmethod
    async def settle(self, order: ConversionOrder) -> None:
        """Settle the local-currency leg; raise on failure"""
        ...


class SimulatedNetworkBroadcaster(NetworkBroadcaster):
    """Accepts every transfer after a fixed latency and returns a random hash"""

    def __init__(
        self,
        onchain_delay_seconds: float = Config.ONCHAIN_BROADCAST_DELAY_SECONDS,
        lightning_delay_seconds: float = Config.LIGHTNING_BROADCAST_DELAY_SECONDS,
    ):
        self.onchain_delay_seconds = onchain_delay_seconds
        self.lightning_delay_seconds = lightning_delay_seconds
        self.broadcast_count = 0

    async def broadcast(self, transfer: Transfer) -> BroadcastReceipt:
        is_lightning = transfer.kind == TransferKind.LIGHTNING
        delay = self.lightning_delay_seconds if is_lightning else self.onchain_delay_seconds
        if delay:
            await asyncio.sleep(delay)

        tx_hash = secrets.token_hex(32)
        if is_lightning:
            tx_hash = f"ln_{tx_hash}"
        self.broadcast_count += 1
        logger.info(f"📡 BROADCAST_ACCEPTED: {transfer.id} → {tx_hash[:16]}...")
        return BroadcastReceipt(tx_hash=tx_hash)


class SimulatedSettlementProvider(SettlementProvider):
    """Settles every order after a fixed latency"""

    def __init__(self, delay_seconds: float = Config.SETTLEMENT_DELAY_SECONDS):
        self.delay_seconds = delay_seconds
        self.settled_ids = []

    async def settle(self, order: ConversionOrder) -> None:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        self.settled_ids.append(order.settlement_id)
        logger.info(
            f"🏦 SETTLEMENT_COMPLETED: {order.settlement_id} for {order.id} "
            f"{order.to_amount} {order.to_currency}"
        )
