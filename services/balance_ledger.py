"""
Balance Ledger
Serialized, persisted per-currency balances of the custodial wallet.

Every mutation runs read → check → persist → apply under one asyncio.Lock, so
concurrent sends can never jointly overdraw and a failed persist never leaves the
in-memory balance ahead of storage.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Dict, Mapping, Optional, Union

from services.key_value_store import KeyValueStore, WALLET_BALANCE_KEY
from utils.decimal_precision import MonetaryDecimal
from utils.error_handler import InsufficientFundsError, PersistenceError, ValidationError
from utils.financial_audit_logger import (
    EntityType,
    FinancialAuditLogger,
    FinancialContext,
    FinancialEventType,
    financial_audit_logger,
)

logger = logging.getLogger(__name__)

Amount = Union[Decimal, str, int]


class BalanceLedger:
    """Atomic debit and credit over a persisted balance map"""

    def __init__(
        self,
        store: KeyValueStore,
        initial_balances: Optional[Mapping[str, Amount]] = None,
        audit_logger: FinancialAuditLogger = financial_audit_logger,
        wallet_id: str = "primary",
    ):
        self.store = store
        self.wallet_id = wallet_id
        self.audit_logger = audit_logger
        self._initial_balances = initial_balances or {}
        self._balances: Optional[Dict[str, Decimal]] = None
        self._lock = asyncio.Lock()

        self.metrics = {
            "debits": 0,
            "debits_rejected": 0,
            "credits": 0,
            "persist_failures": 0,
        }

    @staticmethod
    def _normalize_currency(currency: str) -> str:
        if not isinstance(currency, str) or not currency.strip():
            raise ValidationError(f"Invalid currency code: {currency!r}")
        return currency.strip().lower()

    async def _load(self) -> Dict[str, Decimal]:
        """Load persisted balances once; caller holds the lock"""
        if self._balances is None:
            persisted = await self.store.get(WALLET_BALANCE_KEY)
            source = persisted if persisted else self._initial_balances
            balances = {}
            for currency, amount in source.items():
                value = MonetaryDecimal.to_decimal(amount, f"{currency}_balance")
                if value < 0:
                    raise PersistenceError(f"Negative {currency} balance on record: {value}")
                balances[self._normalize_currency(currency)] = value
            self._balances = balances
            logger.info(
                f"📒 LEDGER_LOADED [{self.wallet_id}]: "
                f"{'persisted' if persisted else 'seeded'} {len(balances)} currencies"
            )
        return self._balances

    async def _persist(self, balances: Dict[str, Decimal]) -> None:
        try:
            await self.store.set(
                WALLET_BALANCE_KEY, {currency: str(amount) for currency, amount in balances.items()}
            )
        except PersistenceError:
            self.metrics["persist_failures"] += 1
            raise
        except Exception as e:
            self.metrics["persist_failures"] += 1
            logger.error(f"❌ LEDGER_PERSIST_FAILED [{self.wallet_id}]: {e}")
            raise PersistenceError(f"Failed to persist balances: {e}") from e

    async def get_balances(self) -> Dict[str, Decimal]:
        async with self._lock:
            return dict(await self._load())

    async def get_balance(self, currency: str) -> Decimal:
        currency = self._normalize_currency(currency)
        async with self._lock:
            return (await self._load()).get(currency, Decimal("0"))

    async def try_debit(self, currency: str, amount: Amount, reference: Optional[str] = None) -> Decimal:
        """
        Subtract `amount` from `currency` in one atomic step.

        Returns:
            The balance after the debit

        Raises:
            ValidationError: amount is not a positive finite number
            InsufficientFundsError: amount exceeds the current balance; nothing changes
            PersistenceError: the new balance could not be stored; nothing changes
        """
        currency = self._normalize_currency(currency)
        amount = MonetaryDecimal.validate_positive(amount, f"{currency}_debit")

        async with self._lock:
            balances = await self._load()
            available = balances.get(currency, Decimal("0"))

            if amount > available:
                self.metrics["debits_rejected"] += 1
                logger.warning(
                    f"🚫 DEBIT_REJECTED [{self.wallet_id}]: {currency} requested={amount} available={available}"
                )
                self.audit_logger.log_financial_event(
                    event_type=FinancialEventType.WALLET_DEBIT_REJECTED,
                    entity_type=EntityType.WALLET,
                    entity_id=self.wallet_id,
                    financial_context=FinancialContext(
                        amount=amount, currency=currency, balance_before=available
                    ),
                    additional_data={"reference": reference},
                )
                raise InsufficientFundsError(currency, amount, available)

            updated = dict(balances)
            updated[currency] = available - amount
            await self._persist(updated)
            self._balances = updated
            self.metrics["debits"] += 1

        logger.info(
            f"💸 DEBIT_APPLIED [{self.wallet_id}]: {currency} -{amount} → {updated[currency]}"
            + (f" ref={reference}" if reference else "")
        )
        self.audit_logger.log_financial_event(
            event_type=FinancialEventType.WALLET_DEBIT,
            entity_type=EntityType.WALLET,
            entity_id=self.wallet_id,
            financial_context=FinancialContext(
                amount=amount, currency=currency, balance_before=available, balance_after=updated[currency]
            ),
            additional_data={"reference": reference},
        )
        return updated[currency]

    async def credit(
        self,
        currency: str,
        amount: Amount,
        reference: Optional[str] = None,
        compensating: bool = False,
    ) -> Decimal:
        """
        Add `amount` to `currency`, creating the entry if needed.

        `compensating` marks the reversal of an earlier debit in the audit trail.
        """
        currency = self._normalize_currency(currency)
        amount = MonetaryDecimal.validate_positive(amount, f"{currency}_credit")

        async with self._lock:
            balances = await self._load()
            before = balances.get(currency, Decimal("0"))
            updated = dict(balances)
            updated[currency] = before + amount
            await self._persist(updated)
            self._balances = updated
            self.metrics["credits"] += 1

        tag = "COMPENSATING_CREDIT" if compensating else "CREDIT_APPLIED"
        logger.info(
            f"💰 {tag} [{self.wallet_id}]: {currency} +{amount} → {updated[currency]}"
            + (f" ref={reference}" if reference else "")
        )
        self.audit_logger.log_financial_event(
            event_type=(
                FinancialEventType.WALLET_COMPENSATING_CREDIT if compensating
                else FinancialEventType.WALLET_CREDIT
            ),
            entity_type=EntityType.WALLET,
            entity_id=self.wallet_id,
            financial_context=FinancialContext(
                amount=amount, currency=currency, balance_before=before, balance_after=updated[currency]
            ),
            additional_data={"reference": reference},
        )
        return updated[currency]
