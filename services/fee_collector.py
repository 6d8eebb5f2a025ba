"""
Fee Collector
Fire-and-forget recording of protocol and conversion fees into the capped
fee-collection trail. Callers never wait on, or see failures from, this path.

Collection is idempotent per (transaction_id, fee_type): a second request for a
pair that is in flight or already collected is skipped.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple, Union

from config import Config
from models import FeeCollectionRecord, FeeCollectionStatus, FeeType
from services.history_store import HistoryStore
from services.key_value_store import FEE_COLLECTION_HISTORY_KEY
from utils.financial_audit_logger import (
    EntityType,
    FinancialAuditLogger,
    FinancialContext,
    FinancialEventType,
    financial_audit_logger,
)
from utils.helpers import utc_now

logger = logging.getLogger(__name__)


class FeeCollector:
    """Schedules fee collections as background tasks and tracks them until drained"""

    def __init__(
        self,
        history: HistoryStore,
        collection_address: str = Config.FEE_COLLECTION_ADDRESS,
        delay_seconds: float = Config.FEE_COLLECTION_DELAY_SECONDS,
        audit_logger: FinancialAuditLogger = financial_audit_logger,
    ):
        self.history = history
        self.collection_address = collection_address
        self.delay_seconds = delay_seconds
        self.audit_logger = audit_logger
        self._tasks: Set[asyncio.Task] = set()
        self._claimed: Set[Tuple[str, str]] = set()
        self.stats = {"scheduled": 0, "collected": 0, "duplicates_skipped": 0, "failures": 0}

    def get_fee_collection_address(self) -> str:
        return self.collection_address

    def record(self, transaction_id: str, amount: Decimal, fee_type: Union[FeeType, str]) -> None:
        """Schedule collection of a fee and return immediately"""
        fee_type = FeeType(fee_type) if not isinstance(fee_type, FeeType) else fee_type
        key = (transaction_id, fee_type.value)

        if amount is None or amount <= 0:
            logger.info(f"⏭️ FEE_SKIPPED: {transaction_id} {fee_type.value} amount={amount}")
            return
        if key in self._claimed:
            self.stats["duplicates_skipped"] += 1
            logger.warning(f"🔁 FEE_DUPLICATE_SKIPPED: {transaction_id} {fee_type.value}")
            return

        self._claimed.add(key)
        record = FeeCollectionRecord(
            transaction_id=transaction_id,
            fee_amount=amount,
            fee_type=fee_type,
            collection_address=self.collection_address,
            timestamp=utc_now(),
            status=FeeCollectionStatus.PENDING,
        )
        task = asyncio.get_running_loop().create_task(
            self._collect(record), name=f"fee_collect_{transaction_id}_{fee_type.value}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self.stats["scheduled"] += 1
        logger.info(f"🧾 FEE_SCHEDULED: {transaction_id} {fee_type.value} {amount} BTC")

    async def _already_collected(self, record: FeeCollectionRecord) -> bool:
        for entry in await self.history.list(FEE_COLLECTION_HISTORY_KEY):
            if (
                entry.get("transaction_id") == record.transaction_id
                and entry.get("fee_type") == record.fee_type.value
                and entry.get("status") == FeeCollectionStatus.COLLECTED.value
            ):
                return True
        return False

    async def _collect(self, record: FeeCollectionRecord) -> None:
        try:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)

            if await self._already_collected(record):
                self.stats["duplicates_skipped"] += 1
                logger.warning(
                    f"🔁 FEE_ALREADY_COLLECTED: {record.transaction_id} {record.fee_type.value}"
                )
                return

            record.status = FeeCollectionStatus.COLLECTED
            await self.history.append(FEE_COLLECTION_HISTORY_KEY, record.to_dict())
            self.stats["collected"] += 1

            logger.info(
                f"✅ FEE_COLLECTED: {record.transaction_id} {record.fee_type.value} "
                f"{record.fee_amount} BTC → {record.collection_address}"
            )
            self.audit_logger.log_financial_event(
                event_type=FinancialEventType.PLATFORM_FEE_COLLECTED,
                entity_type=EntityType.PLATFORM_REVENUE,
                entity_id=record.transaction_id,
                financial_context=FinancialContext(
                    fee_amount=record.fee_amount, currency="btc"
                ),
                additional_data={
                    "fee_type": record.fee_type,
                    "collection_address": record.collection_address,
                },
            )
        except asyncio.CancelledError:
            self._claimed.discard((record.transaction_id, record.fee_type.value))
            raise
        except Exception as e:
            # Released so a later request for the same fee can retry
            self._claimed.discard((record.transaction_id, record.fee_type.value))
            self.stats["failures"] += 1
            logger.error(
                f"❌ FEE_COLLECTION_FAILED: {record.transaction_id} {record.fee_type.value}: {e}",
                exc_info=True,
            )

    async def get_fee_collection_history(self) -> List[FeeCollectionRecord]:
        return [
            FeeCollectionRecord.from_dict(entry)
            for entry in await self.history.list(FEE_COLLECTION_HISTORY_KEY)
        ]

    @property
    def pending_count(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding collections"""
        while self._tasks:
            pending = list(self._tasks)
            done, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                logger.warning(f"⚠️ FEE_DRAIN_TIMEOUT: {len(not_done)} collections still pending")
                return
