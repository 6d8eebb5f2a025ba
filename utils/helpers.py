"""Id generation and display helpers shared by the wallet services"""

import logging
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits

ENTITY_PREFIXES = {
    "onchain": "btc",
    "lightning": "ln",
    "conversion": "conv",
    "settlement": "stl",
}


def generate_entity_id(entity_type: str) -> str:
    """
    Build a globally unique id: <prefix>_<millisecond timestamp>_<random suffix>

    Args:
        entity_type: one of onchain, lightning, conversion, settlement

    Returns:
        e.g. btc_1718000000000_k3j9x2mq7p
    """
    prefix = ENTITY_PREFIXES.get(entity_type)
    if prefix is None:
        raise ValueError(f"Unknown entity type for id generation: {entity_type}")

    timestamp_ms = time.time_ns() // 1_000_000
    random_part = "".join(secrets.choice(_ID_ALPHABET) for _ in range(10))
    return f"{prefix}_{timestamp_ms}_{random_part}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_duration(seconds: Optional[int]) -> str:
    """Human readable confirmation estimate"""
    if seconds is None:
        return "unknown"
    if seconds < 60:
        return f"~{seconds} seconds"
    if seconds < 3600:
        return f"~{seconds // 60} minutes"
    hours = seconds // 3600
    return f"~{hours} hour" + ("s" if hours > 1 else "")
