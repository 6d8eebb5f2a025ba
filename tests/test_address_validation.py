"""
Destination grammar tests for on-chain and Lightning sends
"""

import pytest

from utils.address_detector import (
    detect_bitcoin_address_type,
    detect_network_from_address,
    format_address_error,
    is_valid_bitcoin_address,
    is_valid_lightning_address,
)
from tests.conftest import BECH32_ADDRESS, LEGACY_ADDRESS, LIGHTNING_ADDRESS, TAPROOT_ADDRESS


class TestBitcoinAddresses:
    """Legacy, bech32 and taproot formats"""

    @pytest.mark.parametrize(
        "address,expected_type",
        [
            (LEGACY_ADDRESS, "legacy"),
            ("3J98t1WpEZ73CNmQviecrnyiWrnqRhWNLy", "legacy"),
            (BECH32_ADDRESS, "bech32"),
            (TAPROOT_ADDRESS, "taproot"),
        ],
    )
    def test_valid_formats(self, address, expected_type):
        assert is_valid_bitcoin_address(address)
        assert detect_bitcoin_address_type(address) == expected_type

    @pytest.mark.parametrize(
        "address",
        [
            "",
            None,
            "2A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa",  # wrong leading digit
            "1A1zP1eP5QGefi2D",  # too short
            "1A1zP1eP5QGefi2DMPTfTL5SLmv7Div0Na",  # '0' is not base58
            BECH32_ADDRESS.upper(),  # bech32 grammar is lower-case only
            "bc1qshort",
            "tb1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq",  # testnet prefix
        ],
    )
    def test_invalid_formats(self, address):
        assert not is_valid_bitcoin_address(address)


class TestLightningAddresses:
    """user@domain or LNURL tokens"""

    @pytest.mark.parametrize(
        "address",
        [
            LIGHTNING_ADDRESS,
            "alice.bob+tips@pay.example.co.zm",
            "lnurl1dp68gurn8ghj7um9wfmxjcm99e3k7mf0v9cxj0m385ekvcenxc6r2c35",
            "LNURL1DP68GURN8GHJ7UM9WFMXJCM99E3K7MF0V9CXJ0M385EKVCENXC6R2C35",
        ],
    )
    def test_valid(self, address):
        assert is_valid_lightning_address(address)

    @pytest.mark.parametrize(
        "address",
        ["", None, "user@", "@domain.com", "user@domain", "lnurl", "lnurl-abc", LEGACY_ADDRESS],
    )
    def test_invalid(self, address):
        assert not is_valid_lightning_address(address)


class TestNetworkDetection:
    def test_detects_rail(self):
        assert detect_network_from_address(BECH32_ADDRESS) == ("onchain", True)
        assert detect_network_from_address(LIGHTNING_ADDRESS) == ("lightning", True)
        assert detect_network_from_address("bc1qbad") == ("onchain", False)
        assert detect_network_from_address("nobody@") == ("lightning", False)
        assert detect_network_from_address("hello") == (None, False)

    def test_error_messages_name_the_rail(self):
        assert "Bitcoin" in format_address_error("bc1qbad", "onchain")
        assert "Lightning" in format_address_error("x@", "lightning")
        assert "Unrecognized" in format_address_error("hello")
