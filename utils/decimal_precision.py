"""
Decimal Precision Utilities for Wallet Calculations
Enforces consistent Decimal usage across every BTC and local-currency amount
"""

import logging
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP, ROUND_UP, getcontext
from typing import Union

from utils.error_handler import ErrorCodes, ValidationError

logger = logging.getLogger(__name__)

# Set global decimal precision for financial calculations
getcontext().prec = 28

Numeric = Union[str, int, float, Decimal]


class MonetaryDecimal:
    """Enforces Decimal-only monetary operations with proper precision"""

    LOCAL_PRECISION = Decimal("0.01")  # 2 decimal places for fiat
    CRYPTO_PRECISION = Decimal("0.00000001")  # 8 decimal places (1 satoshi)
    RATE_PRECISION = Decimal("0.00000001")

    @classmethod
    def to_decimal(cls, value: Numeric, context: str = "monetary") -> Decimal:
        """Convert any numeric value to a finite Decimal or raise ValidationError"""
        if value is None or isinstance(value, bool):
            raise ValidationError(f"Missing or non-numeric {context}: {value!r}")

        if isinstance(value, Decimal):
            decimal_value = value
        else:
            try:
                # Convert to string first to avoid float precision issues
                decimal_value = Decimal(str(value))
            except (InvalidOperation, ValueError, TypeError) as e:
                logger.error(f"Failed to convert {value!r} to Decimal in context {context}: {e}")
                raise ValidationError(f"Invalid {context}: {value!r}") from e

        if not decimal_value.is_finite():
            raise ValidationError(f"Non-finite {context}: {value!r}")

        if abs(decimal_value) > Decimal("999999999999"):
            logger.warning(f"Unusually large monetary value: {decimal_value} in context: {context}")

        return decimal_value

    @classmethod
    def validate_positive(cls, value: Numeric, context: str = "amount") -> Decimal:
        """Validate that amount is positive and return as Decimal"""
        amount = cls.to_decimal(value, context)
        if amount <= 0:
            raise ValidationError(
                f"Amount must be positive in context {context}: {amount}",
                code=ErrorCodes.INVALID_AMOUNT,
                user_message="Please enter an amount greater than zero.",
            )
        return amount

    @classmethod
    def validate_btc_amount(cls, value: Numeric, context: str = "btc_amount") -> Decimal:
        """Validate a positive BTC amount expressed in whole satoshis"""
        amount = cls.validate_positive(value, context)
        if amount != amount.quantize(cls.CRYPTO_PRECISION, rounding=ROUND_DOWN):
            raise ValidationError(
                f"Amount below satoshi precision in context {context}: {amount}",
                code=ErrorCodes.INVALID_AMOUNT,
                user_message="BTC amounts can have at most 8 decimal places.",
            )
        return amount

    @classmethod
    def quantize_local(cls, amount: Numeric) -> Decimal:
        """Quantize a local-currency amount to 2 decimal places, half up"""
        return cls.to_decimal(amount, "local").quantize(cls.LOCAL_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def quantize_crypto(cls, amount: Numeric) -> Decimal:
        """Quantize amount to crypto precision (8 decimal places)"""
        return cls.to_decimal(amount, "crypto").quantize(cls.CRYPTO_PRECISION, rounding=ROUND_HALF_UP)

    @classmethod
    def ceil_crypto(cls, amount: Numeric) -> Decimal:
        """Round a fee up to the next satoshi so it is never under-charged"""
        return cls.to_decimal(amount, "fee").quantize(cls.CRYPTO_PRECISION, rounding=ROUND_UP)

    @classmethod
    def floor_crypto(cls, amount: Numeric) -> Decimal:
        """Round down to a whole satoshi"""
        return cls.to_decimal(amount, "crypto").quantize(cls.CRYPTO_PRECISION, rounding=ROUND_DOWN)

    @classmethod
    def divide_precise(cls, dividend: Numeric, divisor: Numeric) -> Decimal:
        """Divide with zero protection"""
        dividend_decimal = cls.to_decimal(dividend, "divide_dividend")
        divisor_decimal = cls.to_decimal(divisor, "divide_divisor")

        if divisor_decimal == 0:
            logger.error(f"Division by zero attempted: {dividend} / {divisor}")
            raise ValidationError(f"Division by zero: {dividend} / {divisor}")

        return dividend_decimal / divisor_decimal

    @classmethod
    def format_crypto(cls, amount: Numeric, currency: str = "BTC") -> str:
        """Format amount as crypto string without trailing zeros"""
        amount_decimal = cls.quantize_crypto(amount)
        formatted = f"{amount_decimal:f}".rstrip("0").rstrip(".")
        return f"{formatted or '0'} {currency}"

    @classmethod
    def format_local(cls, amount: Numeric, symbol: str) -> str:
        """Format amount with a local currency symbol, e.g. K8,325.00"""
        amount_decimal = cls.quantize_local(amount)
        return f"{symbol}{amount_decimal:,.2f}"
