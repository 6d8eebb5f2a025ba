"""
Wallet Engine Data Model
========================

Domain records for the custodial wallet engine:
- Outbound on-chain and Lightning transfers
- BTC to local-currency conversion orders
- Exchange-rate snapshots and fee-collection records

Plus the single persistence table backing the key-value store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, String, Text, DateTime, func
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class TransferKind(Enum):
    """Payment rail used by an outbound transfer"""
    ONCHAIN = "onchain"
    LIGHTNING = "lightning"


class TransferStatus(Enum):
    """Outbound transfer lifecycle states"""
    PENDING = "pending"
    BROADCASTING = "broadcasting"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ConversionStatus(Enum):
    """Conversion order lifecycle states"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FeeRate(Enum):
    """On-chain confirmation speed selected by the sender"""
    SLOW = "slow"
    NORMAL = "normal"
    FAST = "fast"


class FeeType(Enum):
    NETWORK = "network"
    PROTOCOL = "protocol"
    CONVERSION = "conversion"


class FeeCollectionStatus(Enum):
    PENDING = "pending"
    COLLECTED = "collected"


# ============================================================================
# SERIALIZATION HELPERS
# ============================================================================

def _dt(value: Optional[str]) -> Optional[datetime]:
    return None if value is None else datetime.fromisoformat(value)


def _dt_str(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else value.isoformat()


# ============================================================================
# DOMAIN RECORDS
# ============================================================================

@dataclass(frozen=True)
class Country:
    """Supported conversion destination"""

    id: str
    name: str
    currency: str
    currency_symbol: str
    exchange_rate: Decimal  # USD -> local reference rate

    @property
    def balance_key(self) -> str:
        """Ledger currency code for this country's local currency"""
        return self.currency.lower()


@dataclass
class WalletInfo:
    """Addresses of the custodial wallet on record"""

    btc_address: str
    lightning_address: str
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "btc_address": self.btc_address,
            "lightning_address": self.lightning_address,
            "created_at": _dt_str(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletInfo":
        return cls(
            btc_address=data["btc_address"],
            lightning_address=data["lightning_address"],
            created_at=_dt(data.get("created_at")),
        )


@dataclass(frozen=True)
class RateQuote:
    """Raw rate pair returned by a rate provider"""

    btc_to_usd: Decimal
    usd_to_local: Decimal


@dataclass(frozen=True)
class RateSnapshot:
    """Immutable exchange-rate snapshot for one country"""

    btc_to_usd: Decimal
    usd_to_local: Decimal
    btc_to_local: Decimal
    fetched_at: datetime
    country_id: str

    @classmethod
    def from_quote(cls, quote: RateQuote, country_id: str, fetched_at: datetime) -> "RateSnapshot":
        return cls(
            btc_to_usd=quote.btc_to_usd,
            usd_to_local=quote.usd_to_local,
            btc_to_local=quote.btc_to_usd * quote.usd_to_local,
            fetched_at=fetched_at,
            country_id=country_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "btc_to_usd": str(self.btc_to_usd),
            "usd_to_local": str(self.usd_to_local),
            "btc_to_local": str(self.btc_to_local),
            "fetched_at": self.fetched_at.isoformat(),
            "country_id": self.country_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RateSnapshot":
        return cls(
            btc_to_usd=Decimal(data["btc_to_usd"]),
            usd_to_local=Decimal(data["usd_to_local"]),
            btc_to_local=Decimal(data["btc_to_local"]),
            fetched_at=datetime.fromisoformat(data["fetched_at"]),
            country_id=data["country_id"],
        )


@dataclass
class Transfer:
    """Outbound BTC payment driven by the transfer orchestrator"""

    id: str
    kind: TransferKind
    from_address: str
    to_address: str
    amount: Decimal
    fee: Decimal
    network_fee: Decimal
    protocol_fee: Decimal
    status: TransferStatus
    created_at: datetime
    fee_rate: Optional[FeeRate] = None
    tx_hash: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    estimated_confirmation_seconds: Optional[int] = None
    failure_reason: Optional[str] = None

    @property
    def total_debit(self) -> Decimal:
        return self.amount + self.fee

    @property
    def is_terminal(self) -> bool:
        return self.status in (TransferStatus.CONFIRMED, TransferStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "amount": str(self.amount),
            "fee": str(self.fee),
            "network_fee": str(self.network_fee),
            "protocol_fee": str(self.protocol_fee),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "fee_rate": self.fee_rate.value if self.fee_rate else None,
            "tx_hash": self.tx_hash,
            "confirmed_at": _dt_str(self.confirmed_at),
            "estimated_confirmation_seconds": self.estimated_confirmation_seconds,
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transfer":
        return cls(
            id=data["id"],
            kind=TransferKind(data["kind"]),
            from_address=data["from_address"],
            to_address=data["to_address"],
            amount=Decimal(data["amount"]),
            fee=Decimal(data["fee"]),
            network_fee=Decimal(data["network_fee"]),
            protocol_fee=Decimal(data["protocol_fee"]),
            status=TransferStatus(data["status"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            fee_rate=FeeRate(data["fee_rate"]) if data.get("fee_rate") else None,
            tx_hash=data.get("tx_hash"),
            confirmed_at=_dt(data.get("confirmed_at")),
            estimated_confirmation_seconds=data.get("estimated_confirmation_seconds"),
            failure_reason=data.get("failure_reason"),
        )


@dataclass
class ConversionFees:
    """Fee breakdown of a conversion; protocol is in local units, the rest in BTC"""

    network: Decimal
    protocol: Decimal
    protocol_btc: Decimal
    total: Decimal

    def to_dict(self) -> Dict[str, str]:
        return {
            "network": str(self.network),
            "protocol": str(self.protocol),
            "protocol_btc": str(self.protocol_btc),
            "total": str(self.total),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversionFees":
        return cls(
            network=Decimal(data["network"]),
            protocol=Decimal(data["protocol"]),
            protocol_btc=Decimal(data["protocol_btc"]),
            total=Decimal(data["total"]),
        )


@dataclass
class ConversionOrder:
    """BTC to local-currency conversion driven by the conversion orchestrator"""

    id: str
    from_amount: Decimal
    to_amount: Decimal
    to_currency: str
    status: ConversionStatus
    fees: ConversionFees
    settlement_id: str
    btc_to_local: Decimal
    country_id: str
    created_at: datetime
    from_currency: str = "BTC"
    route: List[str] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    estimated_time_seconds: Optional[int] = None
    failure_reason: Optional[str] = None

    @property
    def total_debit(self) -> Decimal:
        return self.from_amount + self.fees.total

    @property
    def is_terminal(self) -> bool:
        return self.status in (ConversionStatus.COMPLETED, ConversionStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from_amount": str(self.from_amount),
            "from_currency": self.from_currency,
            "to_amount": str(self.to_amount),
            "to_currency": self.to_currency,
            "status": self.status.value,
            "route": list(self.route),
            "fees": self.fees.to_dict(),
            "settlement_id": self.settlement_id,
            "btc_to_local": str(self.btc_to_local),
            "country_id": self.country_id,
            "created_at": self.created_at.isoformat(),
            "completed_at": _dt_str(self.completed_at),
            "estimated_time_seconds": self.estimated_time_seconds,
            "failure_reason": self.failure_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversionOrder":
        return cls(
            id=data["id"],
            from_amount=Decimal(data["from_amount"]),
            from_currency=data.get("from_currency", "BTC"),
            to_amount=Decimal(data["to_amount"]),
            to_currency=data["to_currency"],
            status=ConversionStatus(data["status"]),
            route=list(data.get("route", [])),
            fees=ConversionFees.from_dict(data["fees"]),
            settlement_id=data["settlement_id"],
            btc_to_local=Decimal(data["btc_to_local"]),
            country_id=data["country_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            completed_at=_dt(data.get("completed_at")),
            estimated_time_seconds=data.get("estimated_time_seconds"),
            failure_reason=data.get("failure_reason"),
        )


@dataclass
class FeeCollectionRecord:
    """Entry in the append-only fee collection trail"""

    transaction_id: str
    fee_amount: Decimal
    fee_type: FeeType
    collection_address: str
    timestamp: datetime
    status: FeeCollectionStatus = FeeCollectionStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "fee_amount": str(self.fee_amount),
            "fee_type": self.fee_type.value,
            "collection_address": self.collection_address,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeeCollectionRecord":
        return cls(
            transaction_id=data["transaction_id"],
            fee_amount=Decimal(data["fee_amount"]),
            fee_type=FeeType(data["fee_type"]),
            collection_address=data["collection_address"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            status=FeeCollectionStatus(data["status"]),
        )


@dataclass
class AutoConvertPolicy:
    """Persisted instruction for the external balance monitor"""

    enabled: bool
    threshold: Decimal
    updated_at: datetime
    country_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "threshold": str(self.threshold),
            "updated_at": self.updated_at.isoformat(),
            "country_id": self.country_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutoConvertPolicy":
        return cls(
            enabled=bool(data.get("enabled", False)),
            threshold=Decimal(data["threshold"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            country_id=data.get("country_id"),
        )


# ============================================================================
# PERSISTENCE
# ============================================================================

class KeyValueEntry(Base):
    """JSON document stored under a stable key"""
    __tablename__ = 'key_value_store'

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
