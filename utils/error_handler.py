"""Error taxonomy and standardized error responses for the wallet engine"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Error categories for classification"""

    VALIDATION = "validation"
    PAYMENT = "payment"
    NETWORK = "network"
    DATABASE = "database"
    SYSTEM = "system"
    BUSINESS_LOGIC = "business_logic"


class ErrorSeverity(Enum):
    """Error severity levels"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCodes:
    """Centralized error codes"""

    # Validation Errors (1000-1999)
    INVALID_INPUT = "1001"
    INVALID_AMOUNT = "1005"
    INVALID_ADDRESS = "1006"
    UNSUPPORTED_COUNTRY = "1007"
    INVALID_FEE_RATE = "1008"

    # Payment Errors (5000-5999)
    INSUFFICIENT_FUNDS = "5001"
    PAYMENT_FAILED = "5002"
    PAYMENT_TIMEOUT = "5004"
    SETTLEMENT_FAILED = "5007"

    # External API Errors (6000-6999)
    EXTERNAL_SERVICE_UNAVAILABLE = "6001"
    EXTERNAL_TIMEOUT = "6003"
    INVALID_API_RESPONSE = "6004"

    # Database Errors (7000-7999)
    DATABASE_ERROR = "7001"

    # System Errors (8000-8999)
    INTERNAL_ERROR = "8001"

    # Business Logic Errors (9000-9999)
    WALLET_NOT_INITIALIZED = "9006"
    INVALID_STATE_TRANSITION = "9007"


@dataclass
class StandardError:
    """Standard error response structure"""

    code: str
    message: str
    category: ErrorCategory
    severity: ErrorSeverity
    user_message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None
    recoverable: bool = True

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["severity"] = self.severity.value
        return data


class WalletServiceError(Exception):
    """Base class for every error the wallet engine raises on purpose"""

    code = ErrorCodes.INTERNAL_ERROR
    category = ErrorCategory.SYSTEM
    severity = ErrorSeverity.HIGH
    default_user_message = "An unexpected error occurred. Please try again."
    recoverable = True

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        user_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.user_message = user_message or self.default_user_message
        self.details = details or {}

    def to_standard_error(self) -> StandardError:
        return StandardError(
            code=self.code,
            message=self.message,
            category=self.category,
            severity=self.severity,
            user_message=self.user_message,
            details=self.details or None,
            recoverable=self.recoverable,
        )


class ValidationError(WalletServiceError):
    """Bad amount, address, fee rate or country; raised before any side effect"""

    code = ErrorCodes.INVALID_INPUT
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.LOW
    default_user_message = "Please check your input and try again."


class InsufficientFundsError(WalletServiceError):
    code = ErrorCodes.INSUFFICIENT_FUNDS
    category = ErrorCategory.PAYMENT
    severity = ErrorSeverity.LOW
    default_user_message = "Insufficient balance for this amount including fees."

    def __init__(self, currency: str, requested, available, **kwargs):
        super().__init__(
            f"Insufficient {currency.upper()} balance: requested {requested}, available {available}",
            details={"currency": currency, "requested": str(requested), "available": str(available)},
            **kwargs,
        )
        self.currency = currency
        self.requested = requested
        self.available = available


class WalletNotInitializedError(WalletServiceError):
    code = ErrorCodes.WALLET_NOT_INITIALIZED
    category = ErrorCategory.BUSINESS_LOGIC
    severity = ErrorSeverity.MEDIUM
    default_user_message = "Your wallet has not been set up yet."
    recoverable = False


class NetworkError(WalletServiceError):
    """External delegation failed; `entity` holds the failed transfer or order when there is one"""

    code = ErrorCodes.EXTERNAL_SERVICE_UNAVAILABLE
    category = ErrorCategory.NETWORK
    severity = ErrorSeverity.HIGH
    default_user_message = "The network is temporarily unavailable. Your balance has not been charged."

    def __init__(self, message: str, *, entity: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.entity = entity


class PersistenceError(WalletServiceError):
    code = ErrorCodes.DATABASE_ERROR
    category = ErrorCategory.DATABASE
    severity = ErrorSeverity.CRITICAL
    default_user_message = "System temporarily unavailable. Please try again later."
    recoverable = False


class StateTransitionError(WalletServiceError):
    code = ErrorCodes.INVALID_STATE_TRANSITION
    category = ErrorCategory.BUSINESS_LOGIC
    severity = ErrorSeverity.HIGH
    recoverable = False


def build_error_response(error: Exception, context: Optional[Dict[str, Any]] = None) -> StandardError:
    """Convert any exception into a StandardError for the presentation layer"""
    if isinstance(error, WalletServiceError):
        standard_error = error.to_standard_error()
    else:
        standard_error = StandardError(
            code=ErrorCodes.INTERNAL_ERROR,
            message=f"Unexpected error: {error}",
            category=ErrorCategory.SYSTEM,
            severity=ErrorSeverity.HIGH,
            user_message=WalletServiceError.default_user_message,
            details={"exception_type": error.__class__.__name__},
        )

    if context:
        standard_error.details = {**(standard_error.details or {}), **context}

    log_message = (
        f"Error {standard_error.code}: {standard_error.message} "
        f"(category={standard_error.category.value})"
    )
    if standard_error.severity == ErrorSeverity.CRITICAL:
        logger.critical(log_message)
    elif standard_error.severity == ErrorSeverity.HIGH:
        logger.error(log_message)
    elif standard_error.severity == ErrorSeverity.MEDIUM:
        logger.warning(log_message)
    else:
        logger.info(log_message)

    return standard_error
