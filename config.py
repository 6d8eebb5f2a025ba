"""Configuration management for the wallet transfer and conversion engine"""

import os
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, List

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _validate_decimal(
    env_var: str, default: str, min_val: str = "0", max_val: str = None
) -> Decimal:
    """Read a Decimal setting with bounds checking, falling back to the default"""
    value_str = os.getenv(env_var, default)
    try:
        value = Decimal(value_str)
    except (InvalidOperation, TypeError) as e:
        logger.error(f"❌ Invalid {env_var} value '{value_str}': {e}. Using default {default}")
        return Decimal(default)

    if not value.is_finite() or value < Decimal(min_val):
        logger.error(f"❌ {env_var}={value} is below minimum {min_val}. Using default {default}")
        return Decimal(default)

    if max_val is not None and value > Decimal(max_val):
        logger.error(f"❌ {env_var}={value} exceeds maximum {max_val}. Using default {default}")
        return Decimal(default)

    return value


def _validate_int(env_var: str, default: int, min_val: int = 1) -> int:
    """Read an integer setting, falling back to the default when malformed or too small"""
    value_str = os.getenv(env_var, str(default))
    try:
        value = int(value_str)
    except ValueError:
        logger.error(f"❌ Invalid {env_var} value '{value_str}'. Using default {default}")
        return default

    if value < min_val:
        logger.error(f"❌ {env_var}={value} is below minimum {min_val}. Using default {default}")
        return default
    return value


class Config:
    """Application configuration"""

    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Storage
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///wallet_core.db")

    # Fee schedule (BTC unless stated otherwise)
    PROTOCOL_FEE_RATE = _validate_decimal("PROTOCOL_FEE_RATE", "0.005", "0", "0.1")  # 0.5%
    MIN_NETWORK_FEE = _validate_decimal("MIN_NETWORK_FEE", "0.00001")  # 1000 sats
    LIGHTNING_FEE_RATE = _validate_decimal("LIGHTNING_FEE_RATE", "0.001", "0", "0.1")  # 0.1%
    LIGHTNING_MIN_FEE = _validate_decimal("LIGHTNING_MIN_FEE", "0.000001")  # 100 sats
    CONVERSION_NETWORK_FEE = _validate_decimal("CONVERSION_NETWORK_FEE", "0.00001")

    FEE_RATE_MULTIPLIERS: Dict[str, Decimal] = {
        "slow": Decimal("1"),
        "normal": Decimal("1.5"),
        "fast": Decimal("2.5"),
    }

    # Advisory confirmation estimates in seconds
    CONFIRMATION_TIME_SECONDS: Dict[str, int] = {
        "slow": 3600,
        "normal": 1800,
        "fast": 600,
    }
    LIGHTNING_CONFIRMATION_SECONDS = 5
    CONVERSION_ESTIMATED_SECONDS = 180

    # Conversion
    CONVERSION_RESERVE_BTC = _validate_decimal("CONVERSION_RESERVE_BTC", "0.0001")
    AUTO_CONVERT_DEFAULT_THRESHOLD = _validate_decimal("AUTO_CONVERT_DEFAULT_THRESHOLD", "0.001")
    AUTO_CONVERT_CHECK_INTERVAL_SECONDS = _validate_int("AUTO_CONVERT_CHECK_INTERVAL_SECONDS", 60)
    RATE_PREFETCH_INTERVAL_SECONDS = _validate_int("RATE_PREFETCH_INTERVAL_SECONDS", 30)
    DEFAULT_COUNTRY_ID = os.getenv("DEFAULT_COUNTRY_ID", "zm")

    # Rates
    RATE_CACHE_TTL_SECONDS = _validate_int("RATE_CACHE_TTL_SECONDS", 60)
    REFERENCE_BTC_USD_RATE = _validate_decimal("REFERENCE_BTC_USD_RATE", "45000", "0.01")

    # History caps
    TRANSFER_HISTORY_CAP = _validate_int("TRANSFER_HISTORY_CAP", 100)
    CONVERSION_HISTORY_CAP = _validate_int("CONVERSION_HISTORY_CAP", 100)
    FEE_COLLECTION_HISTORY_CAP = _validate_int("FEE_COLLECTION_HISTORY_CAP", 200)

    # Fee collection
    FEE_COLLECTION_ADDRESS = os.getenv(
        "FEE_COLLECTION_ADDRESS",
        "bc1pax0kxjzq6wamarvpxgt8unhzqyz0elm8g7frxajg34wIxcpsy5wzen",
    )
    FEE_COLLECTION_DELAY_SECONDS = float(os.getenv("FEE_COLLECTION_DELAY_SECONDS", "0.5"))

    # External delegation timeouts
    BROADCAST_TIMEOUT_SECONDS = float(os.getenv("BROADCAST_TIMEOUT_SECONDS", "30"))
    SETTLEMENT_TIMEOUT_SECONDS = float(os.getenv("SETTLEMENT_TIMEOUT_SECONDS", "300"))

    # Simulated network latency
    ONCHAIN_BROADCAST_DELAY_SECONDS = float(os.getenv("ONCHAIN_BROADCAST_DELAY_SECONDS", "2.0"))
    LIGHTNING_BROADCAST_DELAY_SECONDS = float(os.getenv("LIGHTNING_BROADCAST_DELAY_SECONDS", "1.0"))
    SETTLEMENT_DELAY_SECONDS = float(os.getenv("SETTLEMENT_DELAY_SECONDS", "1.0"))

    @staticmethod
    def validate_configuration() -> List[str]:
        """Validate cross-field configuration and log the effective settings"""
        problems = []

        if Config.BROADCAST_TIMEOUT_SECONDS <= Config.ONCHAIN_BROADCAST_DELAY_SECONDS:
            problems.append(
                "BROADCAST_TIMEOUT_SECONDS must exceed ONCHAIN_BROADCAST_DELAY_SECONDS"
            )
        if Config.SETTLEMENT_TIMEOUT_SECONDS <= Config.SETTLEMENT_DELAY_SECONDS:
            problems.append(
                "SETTLEMENT_TIMEOUT_SECONDS must exceed SETTLEMENT_DELAY_SECONDS"
            )
        if Config.CONVERSION_RESERVE_BTC < Config.CONVERSION_NETWORK_FEE:
            problems.append(
                "CONVERSION_RESERVE_BTC should cover at least CONVERSION_NETWORK_FEE"
            )
        if not Config.FEE_COLLECTION_ADDRESS:
            problems.append("FEE_COLLECTION_ADDRESS is not configured")

        logger.info("🔧 Wallet engine configuration:")
        logger.info(f"   Environment: {Config.ENVIRONMENT.upper()}")
        logger.info(f"   Protocol fee rate: {Config.PROTOCOL_FEE_RATE}")
        logger.info(f"   Minimum network fee: {Config.MIN_NETWORK_FEE} BTC")
        logger.info(f"   Rate cache TTL: {Config.RATE_CACHE_TTL_SECONDS}s")
        logger.info(
            f"   Timeouts: broadcast={Config.BROADCAST_TIMEOUT_SECONDS}s, "
            f"settlement={Config.SETTLEMENT_TIMEOUT_SECONDS}s"
        )

        for problem in problems:
            logger.warning(f"⚠️ CONFIG_PROBLEM: {problem}")

        return problems
