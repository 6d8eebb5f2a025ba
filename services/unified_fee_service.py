"""
Unified Fee Service - Centralized fee calculation for transfers and conversions
Single source of the fee schedule used by both orchestrators and by previews
"""

import logging
from decimal import Decimal
from typing import Dict, Union

from config import Config
from models import FeeRate
from utils.decimal_precision import MonetaryDecimal
from utils.error_handler import ErrorCodes, ValidationError

logger = logging.getLogger(__name__)


class UnifiedFeeService:
    """Centralized fee calculation service for on-chain, Lightning and conversion flows"""

    PROTOCOL_FEE_RATE = Config.PROTOCOL_FEE_RATE
    MIN_NETWORK_FEE = Config.MIN_NETWORK_FEE
    LIGHTNING_FEE_RATE = Config.LIGHTNING_FEE_RATE
    LIGHTNING_MIN_FEE = Config.LIGHTNING_MIN_FEE
    CONVERSION_NETWORK_FEE = Config.CONVERSION_NETWORK_FEE

    @classmethod
    def resolve_fee_rate(cls, fee_rate: Union[FeeRate, str]) -> FeeRate:
        if isinstance(fee_rate, FeeRate):
            return fee_rate
        try:
            return FeeRate(str(fee_rate).lower())
        except ValueError:
            raise ValidationError(
                f"Unsupported fee rate: {fee_rate!r}",
                code=ErrorCodes.INVALID_FEE_RATE,
                user_message="Choose a fee speed of slow, normal or fast.",
            ) from None

    @classmethod
    def get_current_network_fees(cls) -> Dict[str, Decimal]:
        """Per-speed on-chain network fee table in BTC"""
        return {
            rate.value: cls.network_fee_for(rate)
            for rate in (FeeRate.SLOW, FeeRate.NORMAL, FeeRate.FAST)
        }

    @classmethod
    def network_fee_for(cls, fee_rate: Union[FeeRate, str]) -> Decimal:
        rate = cls.resolve_fee_rate(fee_rate)
        multiplier = Config.FEE_RATE_MULTIPLIERS[rate.value]
        return MonetaryDecimal.ceil_crypto(max(cls.MIN_NETWORK_FEE * multiplier, cls.MIN_NETWORK_FEE))

    @classmethod
    def protocol_fee_for(cls, amount: Decimal) -> Decimal:
        return MonetaryDecimal.ceil_crypto(amount * cls.PROTOCOL_FEE_RATE)

    @classmethod
    def calculate_onchain_fees(
        cls, amount: Union[Decimal, str], fee_rate: Union[FeeRate, str] = FeeRate.NORMAL
    ) -> Dict[str, Decimal]:
        """
        Calculate all fees for an on-chain send

        Network and protocol fees are rounded up to the next satoshi.
        Returns: {
            'network_fee': Decimal,
            'protocol_fee': Decimal,
            'total_fee': Decimal,
            'total_cost': Decimal   # amount + total_fee, debited from the ledger
        }
        """
        amount = MonetaryDecimal.validate_positive(amount, "onchain_amount")
        network_fee = cls.network_fee_for(fee_rate)
        protocol_fee = cls.protocol_fee_for(amount)
        total_fee = network_fee + protocol_fee

        logger.debug(
            f"Calculated on-chain fees: amount={amount} BTC, network={network_fee}, "
            f"protocol={protocol_fee}, total={total_fee}"
        )
        return {
            "network_fee": network_fee,
            "protocol_fee": protocol_fee,
            "total_fee": total_fee,
            "total_cost": amount + total_fee,
        }

    @classmethod
    def calculate_lightning_fees(cls, amount: Union[Decimal, str]) -> Dict[str, Decimal]:
        """Routing fee is a percentage with a floor; protocol fee as on-chain. Both round up to the satoshi"""
        amount = MonetaryDecimal.validate_positive(amount, "lightning_amount")
        network_fee = MonetaryDecimal.ceil_crypto(
            max(amount * cls.LIGHTNING_FEE_RATE, cls.LIGHTNING_MIN_FEE)
        )
        protocol_fee = cls.protocol_fee_for(amount)
        total_fee = network_fee + protocol_fee

        logger.debug(
            f"Calculated Lightning fees: amount={amount} BTC, routing={network_fee}, "
            f"protocol={protocol_fee}, total={total_fee}"
        )
        return {
            "network_fee": network_fee,
            "protocol_fee": protocol_fee,
            "total_fee": total_fee,
            "total_cost": amount + total_fee,
        }

    @classmethod
    def calculate_conversion_fees(
        cls, btc_amount: Union[Decimal, str], btc_to_local: Decimal
    ) -> Dict[str, Decimal]:
        """
        Calculate a conversion's local amount and fees

        The protocol fee is assessed in local units and charged in BTC at the same rate,
        rounded up to the next satoshi. The local amount rounds half up to 2dp.
        Returns: {
            'local_amount': Decimal,         # credited in local currency, 2dp
            'network_fee': Decimal,          # BTC
            'protocol_fee_local': Decimal,   # local units
            'protocol_fee_btc': Decimal,     # BTC
            'total_fee': Decimal,            # BTC
            'total_cost': Decimal            # btc_amount + total_fee
        }
        """
        btc_amount = MonetaryDecimal.validate_positive(btc_amount, "conversion_amount")
        btc_to_local = MonetaryDecimal.validate_positive(btc_to_local, "btc_to_local_rate")

        local_amount = MonetaryDecimal.quantize_local(btc_amount * btc_to_local)
        network_fee = cls.CONVERSION_NETWORK_FEE
        protocol_fee_local = local_amount * cls.PROTOCOL_FEE_RATE
        protocol_fee_btc = MonetaryDecimal.ceil_crypto(
            MonetaryDecimal.divide_precise(protocol_fee_local, btc_to_local)
        )
        total_fee = network_fee + protocol_fee_btc

        logger.debug(
            f"Calculated conversion fees: {btc_amount} BTC -> {local_amount} local, "
            f"network={network_fee}, protocol={protocol_fee_local} local ({protocol_fee_btc} BTC)"
        )
        return {
            "local_amount": local_amount,
            "network_fee": network_fee,
            "protocol_fee_local": protocol_fee_local,
            "protocol_fee_btc": protocol_fee_btc,
            "total_fee": total_fee,
            "total_cost": btc_amount + total_fee,
        }
