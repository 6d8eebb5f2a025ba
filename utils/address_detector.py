"""Detect and validate Bitcoin and Lightning destination formats"""

import re
import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Legacy P2PKH and P2SH
LEGACY_PATTERN = re.compile(r"^[13][a-km-zA-HJ-NP-Z1-9]{25,34}$")
# Bech32 (native SegWit)
BECH32_PATTERN = re.compile(r"^bc1[a-z0-9]{39,59}$")
# Bech32m (Taproot)
TAPROOT_PATTERN = re.compile(r"^bc1p[a-z0-9]{58}$")

LIGHTNING_ADDRESS_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
LNURL_PATTERN = re.compile(r"^lnurl[a-z0-9]+$", re.IGNORECASE)


def detect_bitcoin_address_type(address: str) -> Optional[str]:
    """
    Detect the on-chain address format

    Returns:
        "taproot", "bech32", "legacy", or None when the address matches no grammar
    """
    if not address or not isinstance(address, str):
        return None

    if TAPROOT_PATTERN.match(address):
        return "taproot"
    if BECH32_PATTERN.match(address):
        return "bech32"
    if LEGACY_PATTERN.match(address):
        return "legacy"
    return None


def is_valid_bitcoin_address(address: str) -> bool:
    return detect_bitcoin_address_type(address) is not None


def is_valid_lightning_address(address: str) -> bool:
    """Lightning address (user@domain) or an LNURL token"""
    if not address or not isinstance(address, str):
        return False
    return bool(LIGHTNING_ADDRESS_PATTERN.match(address) or LNURL_PATTERN.match(address))


def detect_network_from_address(address: str) -> Tuple[Optional[str], bool]:
    """
    Detect the payment rail from a destination string

    Returns:
        tuple: (network, is_valid) where network is "onchain", "lightning", or None
    """
    if not address:
        return None, False

    address = address.strip()

    if is_valid_bitcoin_address(address):
        return "onchain", True
    if is_valid_lightning_address(address):
        return "lightning", True

    # Partial guesses for a helpful error message
    if address.startswith(("1", "3", "bc1")):
        return "onchain", False
    if "@" in address or address.lower().startswith("lnurl"):
        return "lightning", False

    return None, False


def format_address_error(address: str, detected_network: Optional[str] = None) -> str:
    """Format helpful error message for invalid destination"""
    if detected_network == "onchain":
        return (
            "❌ Invalid Bitcoin Address\n\n"
            "Address format requirements:\n"
            "• Legacy: Starts with '1' or '3' (26-35 chars)\n"
            "• SegWit: Starts with 'bc1' (42-62 chars, lower-case)\n"
            "• Taproot: Starts with 'bc1p' (62 chars, lower-case)"
        )
    if detected_network == "lightning":
        return (
            "❌ Invalid Lightning Address\n\n"
            "Use a Lightning address such as `name@wallet.com` or an LNURL starting with `lnurl`"
        )
    return (
        "❌ Unrecognized Address Format\n\n"
        "Supported destinations:\n"
        "• Bitcoin: 1..., 3..., bc1...\n"
        "• Lightning: name@domain or lnurl...\n\n"
        "💡 Copy address directly from your wallet"
    )
