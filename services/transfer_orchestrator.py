"""
Transfer Orchestrator
=====================

Outbound on-chain and Lightning sends from the custodial BTC balance.

Lifecycle: pending → broadcasting → confirmed | failed

`amount + fee` is debited before the broadcast is delegated and credited back if
the transfer fails, so its net effect on the ledger is applied exactly once.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Union

from config import Config
from models import FeeRate, FeeType, Transfer, TransferKind, TransferStatus, WalletInfo
from services.balance_ledger import BalanceLedger
from services.fee_collector import FeeCollector
from services.history_store import HistoryStore
from services.key_value_store import TRANSFER_HISTORY_KEY
from services.payment_network import NetworkBroadcaster
from services.state_transition_service import StateTransitionService
from services.unified_fee_service import UnifiedFeeService
from services.wallet_repository import WalletRepository
from utils.address_detector import (
    format_address_error,
    is_valid_bitcoin_address,
    is_valid_lightning_address,
)
from utils.background_task_runner import BackgroundTaskRunner
from utils.decimal_precision import MonetaryDecimal
from utils.error_handler import (
    ErrorCodes,
    NetworkError,
    ValidationError,
    WalletNotInitializedError,
)
from utils.financial_audit_logger import (
    EntityType,
    FinancialAuditLogger,
    FinancialContext,
    FinancialEventType,
    financial_audit_logger,
)
from utils.helpers import format_duration, generate_entity_id, utc_now

logger = logging.getLogger(__name__)


class TransferOrchestrator:
    """Validates, debits, broadcasts and settles outbound BTC transfers"""

    def __init__(
        self,
        ledger: BalanceLedger,
        fee_collector: FeeCollector,
        history: HistoryStore,
        broadcaster: NetworkBroadcaster,
        wallet_repository: WalletRepository,
        broadcast_timeout: float = Config.BROADCAST_TIMEOUT_SECONDS,
        audit_logger: FinancialAuditLogger = financial_audit_logger,
    ):
        self.ledger = ledger
        self.fee_collector = fee_collector
        self.history = history
        self.broadcaster = broadcaster
        self.wallet_repository = wallet_repository
        self.broadcast_timeout = broadcast_timeout
        self.audit_logger = audit_logger
        self.runner = BackgroundTaskRunner("transfers")

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def validate_bitcoin_address(address: str) -> bool:
        return is_valid_bitcoin_address(address)

    @staticmethod
    def validate_lightning_address(address: str) -> bool:
        return is_valid_lightning_address(address)

    async def _require_wallet(self) -> WalletInfo:
        wallet = await self.wallet_repository.get()
        if wallet is None:
            raise WalletNotInitializedError("No wallet on record; initialize the wallet before sending")
        return wallet

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def send_on_chain(
        self, to_address: str, amount: Union[Decimal, str], fee_rate: Union[FeeRate, str] = FeeRate.NORMAL
    ) -> Transfer:
        """
        Send `amount` BTC to an on-chain address.

        Raises:
            ValidationError: bad amount, fee rate or address; nothing is debited
            WalletNotInitializedError: no wallet on record
            InsufficientFundsError: amount + fee exceeds the BTC balance; no transfer is created
            NetworkError: the broadcast failed or timed out; the debit is reversed
                and the failed transfer is attached as `.entity`
        """
        amount = MonetaryDecimal.validate_btc_amount(amount, "onchain_amount")
        rate = UnifiedFeeService.resolve_fee_rate(fee_rate)
        if not is_valid_bitcoin_address(to_address):
            raise ValidationError(
                f"Invalid Bitcoin address: {to_address!r}",
                code=ErrorCodes.INVALID_ADDRESS,
                user_message=format_address_error(to_address, "onchain"),
            )
        wallet = await self._require_wallet()

        fees = UnifiedFeeService.calculate_onchain_fees(amount, rate)
        return await self._send(
            kind=TransferKind.ONCHAIN,
            from_address=wallet.btc_address,
            to_address=to_address,
            amount=amount,
            fees=fees,
            fee_rate=rate,
            estimated_seconds=Config.CONFIRMATION_TIME_SECONDS[rate.value],
        )

    async def send_lightning(self, address: str, amount: Union[Decimal, str]) -> Transfer:
        """Send `amount` BTC over Lightning to a user@domain address or an LNURL"""
        amount = MonetaryDecimal.validate_btc_amount(amount, "lightning_amount")
        if not is_valid_lightning_address(address):
            raise ValidationError(
                f"Invalid Lightning address: {address!r}",
                code=ErrorCodes.INVALID_ADDRESS,
                user_message=format_address_error(address, "lightning"),
            )
        wallet = await self._require_wallet()

        fees = UnifiedFeeService.calculate_lightning_fees(amount)
        return await self._send(
            kind=TransferKind.LIGHTNING,
            from_address=wallet.lightning_address,
            to_address=address,
            amount=amount,
            fees=fees,
            fee_rate=None,
            estimated_seconds=Config.LIGHTNING_CONFIRMATION_SECONDS,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _send(
        self,
        kind: TransferKind,
        from_address: str,
        to_address: str,
        amount: Decimal,
        fees: Dict[str, Decimal],
        fee_rate: Optional[FeeRate],
        estimated_seconds: int,
    ) -> Transfer:
        transfer_id = generate_entity_id(kind.value)
        total_debit = fees["total_cost"]

        await self.ledger.try_debit("btc", total_debit, reference=transfer_id)

        transfer = Transfer(
            id=transfer_id,
            kind=kind,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
            fee=fees["total_fee"],
            network_fee=fees["network_fee"],
            protocol_fee=fees["protocol_fee"],
            fee_rate=fee_rate,
            status=TransferStatus.PENDING,
            created_at=utc_now(),
            estimated_confirmation_seconds=estimated_seconds,
        )
        logger.info(
            f"🚀 TRANSFER_CREATED: {transfer.id} {kind.value} {amount} BTC → {to_address} "
            f"(fee={transfer.fee}, debited={total_debit}, ETA {format_duration(estimated_seconds)})"
        )
        self.audit_logger.log_financial_event(
            event_type=FinancialEventType.TRANSFER_INITIATED,
            entity_type=EntityType.TRANSFER,
            entity_id=transfer.id,
            financial_context=FinancialContext(amount=amount, currency="btc", fee_amount=transfer.fee),
            new_state=transfer.status.value,
            additional_data={"kind": kind, "to_address": to_address},
        )

        return await self.runner.run_shielded(self._drive(transfer), task_name=f"transfer_{transfer.id}")

    async def _drive(self, transfer: Transfer) -> Transfer:
        StateTransitionService.transition(transfer, TransferStatus.BROADCASTING, context="BROADCAST")

        try:
            receipt = await asyncio.wait_for(
                self.broadcaster.broadcast(transfer), timeout=self.broadcast_timeout
            )
        except asyncio.CancelledError:
            await self._fail(transfer, "Broadcast cancelled during shutdown")
            raise
        except asyncio.TimeoutError:
            reason = f"Broadcast timed out after {self.broadcast_timeout}s"
            await self._fail(transfer, reason)
            raise NetworkError(
                f"Transfer {transfer.id} failed: {reason}",
                entity=transfer,
                code=ErrorCodes.EXTERNAL_TIMEOUT,
            ) from None
        except Exception as e:
            await self._fail(transfer, f"Broadcast failed: {e}")
            raise NetworkError(
                f"Transfer {transfer.id} failed: {e}",
                entity=transfer,
            ) from e

        transfer.tx_hash = receipt.tx_hash
        StateTransitionService.transition(transfer, TransferStatus.CONFIRMED, context="BROADCAST")
        transfer.confirmed_at = utc_now()

        logger.info(f"✅ TRANSFER_CONFIRMED: {transfer.id} tx={transfer.tx_hash}")
        self.audit_logger.log_financial_event(
            event_type=FinancialEventType.TRANSFER_CONFIRMED,
            entity_type=EntityType.TRANSFER,
            entity_id=transfer.id,
            financial_context=FinancialContext(amount=transfer.amount, currency="btc", fee_amount=transfer.fee),
            previous_state=TransferStatus.BROADCASTING.value,
            new_state=transfer.status.value,
            additional_data={"tx_hash": transfer.tx_hash},
        )

        self.fee_collector.record(transfer.id, transfer.protocol_fee, FeeType.PROTOCOL)
        try:
            await self.history.append(TRANSFER_HISTORY_KEY, transfer.to_dict())
        except Exception as e:
            logger.error(f"❌ TRANSFER_HISTORY_WRITE_FAILED: {transfer.id}: {e}")

        return transfer

    async def _fail(self, transfer: Transfer, reason: str) -> None:
        """Mark the transfer failed and reverse its debit"""
        StateTransitionService.transition(transfer, TransferStatus.FAILED, context="BROADCAST")
        transfer.failure_reason = reason
        logger.error(f"❌ TRANSFER_FAILED: {transfer.id}: {reason}")

        try:
            await self.ledger.credit("btc", transfer.total_debit, reference=transfer.id, compensating=True)
        except Exception:
            logger.critical(
                f"🚨 COMPENSATION_FAILED: {transfer.id} {transfer.total_debit} BTC was debited "
                f"and could not be credited back; manual reconciliation required",
                exc_info=True,
            )
            raise

        self.audit_logger.log_financial_event(
            event_type=FinancialEventType.TRANSFER_FAILED,
            entity_type=EntityType.TRANSFER,
            entity_id=transfer.id,
            financial_context=FinancialContext(amount=transfer.amount, currency="btc", fee_amount=transfer.fee),
            previous_state=TransferStatus.BROADCASTING.value,
            new_state=transfer.status.value,
            additional_data={"reason": reason},
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_transfer_history(self) -> List[Transfer]:
        """Confirmed transfers, newest first"""
        return [Transfer.from_dict(entry) for entry in await self.history.list(TRANSFER_HISTORY_KEY)]

    async def get_fee_collection_history(self):
        return await self.fee_collector.get_fee_collection_history()

    def get_fee_collection_address(self) -> str:
        return self.fee_collector.get_fee_collection_address()

    @staticmethod
    def get_current_network_fees() -> Dict[str, Decimal]:
        return UnifiedFeeService.get_current_network_fees()

    async def drain(self, timeout: Optional[float] = None) -> None:
        await self.runner.drain(timeout)
