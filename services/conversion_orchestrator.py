"""
Conversion Orchestrator
=======================

BTC → local-currency conversions for the supported southern-African countries.

Lifecycle: pending → processing → completed | failed

The BTC principal and its fees are debited in one step before settlement is
delegated; a failed order gets the whole debit credited back. The local amount
is credited only after settlement succeeds.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from config import Config
from models import (
    AutoConvertPolicy,
    ConversionFees,
    ConversionOrder,
    ConversionStatus,
    Country,
    FeeType,
)
from services.balance_ledger import BalanceLedger
from services.fee_collector import FeeCollector
from services.history_store import HistoryStore
from services.key_value_store import (
    AUTO_CONVERT_SETTINGS_KEY,
    CONVERSION_HISTORY_KEY,
    SELECTED_COUNTRY_KEY,
    KeyValueStore,
)
from services.payment_network import SettlementProvider
from services.rate_cache import RateCache
from services.state_transition_service import StateTransitionService
from services.unified_fee_service import UnifiedFeeService
from utils.background_task_runner import BackgroundTaskRunner
from utils.countries import get_country_by_id, resolve_country
from utils.decimal_precision import MonetaryDecimal
from utils.error_handler import ErrorCodes, NetworkError, ValidationError
from utils.financial_audit_logger import (
    EntityType,
    FinancialAuditLogger,
    FinancialContext,
    FinancialEventType,
    financial_audit_logger,
)
from utils.helpers import generate_entity_id, utc_now

logger = logging.getLogger(__name__)

CountryRef = Union[Country, str]


class ConversionOrchestrator:
    """Quotes, debits, settles and credits BTC → local conversions"""

    def __init__(
        self,
        ledger: BalanceLedger,
        rate_cache: RateCache,
        fee_collector: FeeCollector,
        history: HistoryStore,
        settlement_provider: SettlementProvider,
        store: KeyValueStore,
        settlement_timeout: float = Config.SETTLEMENT_TIMEOUT_SECONDS,
        reserve_btc: Decimal = Config.CONVERSION_RESERVE_BTC,
        audit_logger: FinancialAuditLogger = financial_audit_logger,
    ):
        self.ledger = ledger
        self.rate_cache = rate_cache
        self.fee_collector = fee_collector
        self.history = history
        self.settlement_provider = settlement_provider
        self.store = store
        self.settlement_timeout = settlement_timeout
        self.reserve_btc = reserve_btc
        self.audit_logger = audit_logger
        self.runner = BackgroundTaskRunner("conversions")

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    async def convert(self, btc_amount: Union[Decimal, str], country: CountryRef) -> ConversionOrder:
        """
        Convert `btc_amount` BTC into `country`'s currency.

        Raises:
            ValidationError: bad amount or unsupported country; nothing is debited
            NetworkError: rates unavailable (no order), or settlement failed or timed out
                (order attached as `.entity`, BTC debit reversed)
            InsufficientFundsError: btc_amount + fees exceeds the BTC balance; no order is created
        """
        btc_amount = MonetaryDecimal.validate_btc_amount(btc_amount, "conversion_amount")
        country = resolve_country(country)

        rate = await self.rate_cache.get(country)
        fees = self._price(btc_amount, rate.btc_to_local, country)

        order_id = generate_entity_id("conversion")
        await self.ledger.try_debit("btc", fees["total_cost"], reference=order_id)

        order = ConversionOrder(
            id=order_id,
            from_amount=btc_amount,
            to_amount=fees["local_amount"],
            to_currency=country.currency,
            status=ConversionStatus.PENDING,
            route=["BTC", "USDT", country.currency],
            fees=ConversionFees(
                network=fees["network_fee"],
                protocol=fees["protocol_fee_local"],
                protocol_btc=fees["protocol_fee_btc"],
                total=fees["total_fee"],
            ),
            settlement_id=generate_entity_id("settlement"),
            btc_to_local=rate.btc_to_local,
            country_id=country.id,
            created_at=utc_now(),
            estimated_time_seconds=Config.CONVERSION_ESTIMATED_SECONDS,
        )
        logger.info(
            f"🔄 CONVERSION_CREATED: {order.id} {btc_amount} BTC → {order.to_amount} {country.currency} "
            f"@ {rate.btc_to_local} (fees={order.fees.total} BTC)"
        )
        self.audit_logger.log_financial_event(
            event_type=FinancialEventType.CONVERSION_INITIATED,
            entity_type=EntityType.CONVERSION_ORDER,
            entity_id=order.id,
            financial_context=FinancialContext(
                amount=btc_amount, currency="btc", exchange_rate=rate.btc_to_local, fee_amount=order.fees.total
            ),
            new_state=order.status.value,
            additional_data={"country_id": country.id, "settlement_id": order.settlement_id},
        )

        return await self.runner.run_shielded(
            self._drive(order, country), task_name=f"conversion_{order.id}"
        )

    async def _drive(self, order: ConversionOrder, country: Country) -> ConversionOrder:
        StateTransitionService.transition(order, ConversionStatus.PROCESSING, context="SETTLEMENT")

        settled = False
        try:
            await asyncio.wait_for(
                self.settlement_provider.settle(order), timeout=self.settlement_timeout
            )
            settled = True
            await self.ledger.credit(country.balance_key, order.to_amount, reference=order.id)
        except asyncio.CancelledError:
            await self._fail(order, "Settlement cancelled during shutdown")
            raise
        except asyncio.TimeoutError:
            reason = f"Settlement timed out after {self.settlement_timeout}s"
            await self._fail(order, reason)
            raise NetworkError(
                f"Conversion {order.id} failed: {reason}",
                entity=order,
                code=ErrorCodes.EXTERNAL_TIMEOUT,
            ) from None
        except Exception as e:
            stage = "Local credit failed" if settled else "Settlement failed"
            await self._fail(order, f"{stage}: {e}")
            raise NetworkError(
                f"Conversion {order.id} failed: {e}",
                entity=order,
                code=ErrorCodes.SETTLEMENT_FAILED,
            ) from e

        self.fee_collector.record(order.id, order.fees.protocol_btc, FeeType.CONVERSION)
        StateTransitionService.transition(order, ConversionStatus.COMPLETED, context="SETTLEMENT")
        order.completed_at = utc_now()

        logger.info(f"✅ CONVERSION_COMPLETED: {order.id} credited {order.to_amount} {order.to_currency}")
        self.audit_logger.log_financial_event(
            event_type=FinancialEventType.CONVERSION_COMPLETED,
            entity_type=EntityType.CONVERSION_ORDER,
            entity_id=order.id,
            financial_context=FinancialContext(
                amount=order.to_amount, currency=country.balance_key, exchange_rate=order.btc_to_local
            ),
            previous_state=ConversionStatus.PROCESSING.value,
            new_state=order.status.value,
        )

        try:
            await self.history.append(CONVERSION_HISTORY_KEY, order.to_dict())
        except Exception as e:
            logger.error(f"❌ CONVERSION_HISTORY_WRITE_FAILED: {order.id}: {e}")

        return order

    async def _fail(self, order: ConversionOrder, reason: str) -> None:
        """Mark the order failed and credit back its BTC debit"""
        StateTransitionService.transition(order, ConversionStatus.FAILED, context="SETTLEMENT")
        order.failure_reason = reason
        logger.error(f"❌ CONVERSION_FAILED: {order.id}: {reason}")

        try:
            await self.ledger.credit("btc", order.total_debit, reference=order.id, compensating=True)
        except Exception:
            logger.critical(
                f"🚨 COMPENSATION_FAILED: {order.id} {order.total_debit} BTC was debited "
                f"and could not be credited back; manual reconciliation required",
                exc_info=True,
            )
            raise

        self.audit_logger.log_financial_event(
            event_type=FinancialEventType.CONVERSION_FAILED,
            entity_type=EntityType.CONVERSION_ORDER,
            entity_id=order.id,
            financial_context=FinancialContext(amount=order.from_amount, currency="btc"),
            previous_state=ConversionStatus.PROCESSING.value,
            new_state=order.status.value,
            additional_data={"reason": reason},
        )

    # ------------------------------------------------------------------
    # Quotes and rates
    # ------------------------------------------------------------------

    async def quote(self, btc_amount: Union[Decimal, str], country: CountryRef) -> Dict[str, Any]:
        """Preview a conversion; touches no balance"""
        btc_amount = MonetaryDecimal.validate_btc_amount(btc_amount, "conversion_amount")
        country = resolve_country(country)
        rate = await self.rate_cache.get(country)
        fees = self._price(btc_amount, rate.btc_to_local, country)
        return {
            "country_id": country.id,
            "currency": country.currency,
            "btc_to_local": rate.btc_to_local,
            "rate_fetched_at": rate.fetched_at,
            **fees,
        }

    @staticmethod
    def _price(btc_amount: Decimal, btc_to_local: Decimal, country: Country) -> Dict[str, Decimal]:
        fees = UnifiedFeeService.calculate_conversion_fees(btc_amount, btc_to_local)
        if fees["local_amount"] <= 0:
            raise ValidationError(
                f"{btc_amount} BTC converts to {fees['local_amount']} {country.currency}",
                code=ErrorCodes.INVALID_AMOUNT,
                user_message=f"Amount is too small to convert to {country.currency}.",
            )
        return fees

    async def get_btc_to_local_rate(self, country: CountryRef) -> Decimal:
        """Current BTC → local rate, falling back to the reference rate when the provider is down"""
        country = resolve_country(country)
        try:
            return (await self.rate_cache.get(country)).btc_to_local
        except NetworkError as e:
            fallback = Config.REFERENCE_BTC_USD_RATE * country.exchange_rate
            logger.warning(f"⚠️ RATE_FALLBACK: {country.id} using reference rate {fallback}: {e}")
            return fallback

    async def get_max_convertible_amount(self) -> Decimal:
        """BTC balance minus the fee reserve, never negative"""
        btc = await self.ledger.get_balance("btc")
        return max(Decimal("0"), btc - self.reserve_btc)

    # ------------------------------------------------------------------
    # Auto-convert policy and country selection
    # ------------------------------------------------------------------

    async def enable_auto_convert(
        self,
        threshold: Union[Decimal, str] = Config.AUTO_CONVERT_DEFAULT_THRESHOLD,
        country: Optional[CountryRef] = None,
    ) -> AutoConvertPolicy:
        threshold = MonetaryDecimal.validate_positive(threshold, "auto_convert_threshold")
        country_id = resolve_country(country).id if country is not None else None
        policy = AutoConvertPolicy(
            enabled=True, threshold=threshold, updated_at=utc_now(), country_id=country_id
        )
        await self.store.set(AUTO_CONVERT_SETTINGS_KEY, policy.to_dict())
        logger.info(f"⚙️ AUTO_CONVERT_ENABLED: threshold={threshold} BTC country={country_id or 'selected'}")
        return policy

    async def disable_auto_convert(self) -> None:
        await self.store.remove(AUTO_CONVERT_SETTINGS_KEY)
        logger.info("⚙️ AUTO_CONVERT_DISABLED")

    async def get_auto_convert_policy(self) -> Optional[AutoConvertPolicy]:
        data = await self.store.get(AUTO_CONVERT_SETTINGS_KEY)
        return AutoConvertPolicy.from_dict(data) if data else None

    async def get_selected_country(self) -> Country:
        country_id = await self.store.get(SELECTED_COUNTRY_KEY)
        country = get_country_by_id(country_id) if country_id else None
        return country or resolve_country(Config.DEFAULT_COUNTRY_ID)

    async def set_selected_country(self, country: CountryRef) -> Country:
        country = resolve_country(country)
        await self.store.set(SELECTED_COUNTRY_KEY, country.id)
        logger.info(f"🌍 COUNTRY_SELECTED: {country.id} ({country.currency})")
        return country

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_conversion_history(self) -> List[ConversionOrder]:
        """Completed conversions, newest first"""
        return [
            ConversionOrder.from_dict(entry)
            for entry in await self.history.list(CONVERSION_HISTORY_KEY)
        ]

    async def drain(self, timeout: Optional[float] = None) -> None:
        await self.runner.drain(timeout)
