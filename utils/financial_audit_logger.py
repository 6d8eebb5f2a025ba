"""
Financial Audit Logger
Emits one structured JSON line per balance mutation and lifecycle outcome
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("financial_audit")


class FinancialEventType(Enum):
    """Types of financial events for comprehensive tracking"""

    # Ledger events
    WALLET_CREDIT = "wallet_credit"
    WALLET_DEBIT = "wallet_debit"
    WALLET_DEBIT_REJECTED = "wallet_debit_rejected"
    WALLET_COMPENSATING_CREDIT = "wallet_compensating_credit"

    # Transfer events
    TRANSFER_INITIATED = "transfer_initiated"
    TRANSFER_CONFIRMED = "transfer_confirmed"
    TRANSFER_FAILED = "transfer_failed"

    # Conversion events
    CONVERSION_INITIATED = "conversion_initiated"
    CONVERSION_COMPLETED = "conversion_completed"
    CONVERSION_FAILED = "conversion_failed"

    # Platform revenue events
    PLATFORM_FEE_COLLECTED = "platform_fee_collected"


class EntityType(Enum):
    """Entity types for financial tracking"""
    WALLET = "wallet"
    TRANSFER = "transfer"
    CONVERSION_ORDER = "conversion_order"
    PLATFORM_REVENUE = "platform_revenue"


@dataclass
class FinancialContext:
    """Financial context for audit events"""
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    exchange_rate: Optional[Decimal] = None
    fee_amount: Optional[Decimal] = None
    balance_before: Optional[Decimal] = None
    balance_after: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for key, value in self.__dict__.items():
            if value is not None:
                result[key] = str(value) if isinstance(value, Decimal) else value
        return result


class FinancialAuditLogger:
    """Structured audit trail for money movements"""

    SENSITIVE_FIELDS = {"password", "secret", "token", "private", "mnemonic", "seed", "credential"}

    def _sanitize(self, data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if not data:
            return {}
        sanitized = {}
        for key, value in data.items():
            key_str = str(key)
            if any(sensitive in key_str.lower() for sensitive in self.SENSITIVE_FIELDS):
                sanitized[key_str] = "[REDACTED]"
            elif isinstance(value, Decimal):
                sanitized[key_str] = str(value)
            elif isinstance(value, datetime):
                sanitized[key_str] = value.isoformat()
            elif isinstance(value, Enum):
                sanitized[key_str] = value.value
            else:
                sanitized[key_str] = value
        return sanitized

    def log_financial_event(
        self,
        event_type: FinancialEventType,
        entity_type: EntityType,
        entity_id: str,
        financial_context: Optional[FinancialContext] = None,
        previous_state: Optional[str] = None,
        new_state: Optional[str] = None,
        additional_data: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log a financial event as a single JSON line

        Returns:
            Event ID for correlation
        """
        event_id = str(uuid.uuid4())
        record = {
            "event_id": event_id,
            "event_type": event_type.value,
            "entity_type": entity_type.value,
            "entity_id": entity_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if financial_context:
            record["financial"] = financial_context.to_dict()
        if previous_state or new_state:
            record["state"] = {"previous": previous_state, "new": new_state}
        if additional_data:
            record["data"] = self._sanitize(additional_data)

        try:
            audit_logger.info(json.dumps(record, sort_keys=True, default=str))
        except (TypeError, ValueError) as e:
            logger.error(f"❌ AUDIT_SERIALIZE_FAILED: {event_type.value} {entity_id}: {e}")

        return event_id


# Stateless; shared across services
financial_audit_logger = FinancialAuditLogger()
