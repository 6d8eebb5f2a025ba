"""
Fee schedule tests: on-chain speeds, Lightning floor, conversion fees in local and BTC units
"""

from decimal import Decimal

import pytest

from models import FeeRate
from services.unified_fee_service import UnifiedFeeService
from utils.error_handler import ErrorCodes, ValidationError


class TestOnChainFees:
    """Network fee by speed plus 0.5% protocol fee"""

    def test_normal_speed_send(self):
        fees = UnifiedFeeService.calculate_onchain_fees(Decimal("0.005"), "normal")

        assert fees["network_fee"] == Decimal("0.000015")
        assert fees["protocol_fee"] == Decimal("0.000025")
        assert fees["total_fee"] == Decimal("0.00004")
        assert fees["total_cost"] == Decimal("0.00504")

    @pytest.mark.parametrize(
        "fee_rate,expected",
        [
            (FeeRate.SLOW, Decimal("0.00001")),
            (FeeRate.NORMAL, Decimal("0.000015")),
            (FeeRate.FAST, Decimal("0.000025")),
        ],
    )
    def test_network_fee_by_speed(self, fee_rate, expected):
        assert UnifiedFeeService.network_fee_for(fee_rate) == expected

    def test_network_fee_never_below_minimum(self):
        for fee in UnifiedFeeService.get_current_network_fees().values():
            assert fee >= UnifiedFeeService.MIN_NETWORK_FEE

    def test_current_network_fee_table(self):
        assert UnifiedFeeService.get_current_network_fees() == {
            "slow": Decimal("0.00001"),
            "normal": Decimal("0.000015"),
            "fast": Decimal("0.000025"),
        }

    def test_fee_rate_accepts_any_case(self):
        assert UnifiedFeeService.resolve_fee_rate("FAST") is FeeRate.FAST

    def test_unknown_fee_rate_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            UnifiedFeeService.calculate_onchain_fees(Decimal("0.001"), "turbo")
        assert exc_info.value.code == ErrorCodes.INVALID_FEE_RATE

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-0.001"), "abc", None])
    def test_non_positive_or_malformed_amount_rejected(self, amount):
        with pytest.raises(ValidationError):
            UnifiedFeeService.calculate_onchain_fees(amount, "normal")

    def test_protocol_fee_rounds_up_to_whole_satoshi(self):
        # 0.00000123 * 0.005 is a fraction of a satoshi
        assert UnifiedFeeService.protocol_fee_for(Decimal("0.00000123")) == Decimal("0.00000001")


class TestLightningFees:
    """0.1% routing fee with a 100 sat floor plus protocol fee"""

    def test_small_payment_hits_routing_floor(self):
        fees = UnifiedFeeService.calculate_lightning_fees(Decimal("0.0005"))

        assert fees["network_fee"] == Decimal("0.000001")
        assert fees["protocol_fee"] == Decimal("0.0000025")
        assert fees["total_fee"] == Decimal("0.0000035")
        assert fees["total_cost"] == Decimal("0.0005035")

    def test_large_payment_uses_percentage(self):
        fees = UnifiedFeeService.calculate_lightning_fees(Decimal("0.5"))

        assert fees["network_fee"] == Decimal("0.0005")
        assert fees["protocol_fee"] == Decimal("0.0025")


class TestConversionFees:
    """Protocol fee assessed in local units, charged in BTC"""

    def test_zambia_conversion(self):
        fees = UnifiedFeeService.calculate_conversion_fees(Decimal("0.01"), Decimal("832500"))

        assert fees["local_amount"] == Decimal("8325.00")
        assert fees["network_fee"] == Decimal("0.00001")
        assert fees["protocol_fee_local"] == Decimal("41.625")
        assert fees["protocol_fee_btc"] == Decimal("0.00005")
        assert fees["total_fee"] == Decimal("0.00006")
        assert fees["total_cost"] == Decimal("0.01006")

    def test_local_amount_rounds_half_up_to_cents(self):
        fees = UnifiedFeeService.calculate_conversion_fees(Decimal("0.00000001"), Decimal("832500"))
        # 0.008325 local units
        assert fees["local_amount"] == Decimal("0.01")

    def test_zero_rate_rejected(self):
        with pytest.raises(ValidationError):
            UnifiedFeeService.calculate_conversion_fees(Decimal("0.01"), Decimal("0"))
