"""
Persistent Key-Value Store
JSON documents under stable keys; the only persistence seam the wallet services use
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from database import async_managed_session
from models import KeyValueEntry
from utils.error_handler import PersistenceError

logger = logging.getLogger(__name__)

# Stable keys
WALLET_DATA_KEY = "wallet_data"
WALLET_BALANCE_KEY = "wallet_balance_data"
TRANSFER_HISTORY_KEY = "bitcoin_transfer_history"
CONVERSION_HISTORY_KEY = "conversion_history"
FEE_COLLECTION_HISTORY_KEY = "fee_collection_history"
AUTO_CONVERT_SETTINGS_KEY = "auto_convert_settings"
SELECTED_COUNTRY_KEY = "selected_country"


def conversion_rates_key(country_id: str) -> str:
    return f"conversion_rates_{country_id}"


def _encode(key: str, value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Value for '{key}' is not JSON-compatible: {e}") from e


class KeyValueStore(ABC):
    """Async interface over JSON-compatible values"""

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        ...

    @abstractmethod
    async def remove(self, key: str) -> bool:
        """Delete a key; returns whether it existed"""
        ...


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local store; values are held encoded so callers never share mutable state"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = _encode(key, value)

    async def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        return default if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = _encode(key, value)

    async def remove(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def keys(self) -> List[str]:
        return sorted(self._data)


class SqlKeyValueStore(KeyValueStore):
    """SQLAlchemy-backed store over the key_value_store table"""

    def __init__(
        self, session_factory: Optional[async_sessionmaker] = None, engine: Optional[AsyncEngine] = None
    ):
        self.session_factory = session_factory
        self.engine = engine

    async def dispose(self) -> None:
        """Close pooled connections of an engine this store owns"""
        if self.engine is not None:
            await self.engine.dispose()

    async def get(self, key: str, default: Any = None) -> Any:
        try:
            async with async_managed_session(self.session_factory) as session:
                entry = await session.get(KeyValueEntry, key)
                raw = entry.value if entry is not None else None
        except SQLAlchemyError as e:
            logger.error(f"❌ KV_READ_FAILED: {key}: {e}")
            raise PersistenceError(f"Failed to read '{key}': {e}") from e

        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.error(f"❌ KV_DECODE_FAILED: {key}: {e}")
            raise PersistenceError(f"Corrupt value stored under '{key}'") from e

    async def set(self, key: str, value: Any) -> None:
        encoded = _encode(key, value)
        try:
            async with async_managed_session(self.session_factory) as session:
                entry = await session.get(KeyValueEntry, key)
                if entry is None:
                    session.add(KeyValueEntry(key=key, value=encoded))
                else:
                    entry.value = encoded
        except SQLAlchemyError as e:
            logger.error(f"❌ KV_WRITE_FAILED: {key}: {e}")
            raise PersistenceError(f"Failed to write '{key}': {e}") from e

    async def remove(self, key: str) -> bool:
        try:
            async with async_managed_session(self.session_factory) as session:
                entry = await session.get(KeyValueEntry, key)
                if entry is None:
                    return False
                await session.delete(entry)
                return True
        except SQLAlchemyError as e:
            logger.error(f"❌ KV_DELETE_FAILED: {key}: {e}")
            raise PersistenceError(f"Failed to delete '{key}': {e}") from e
