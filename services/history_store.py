"""
History Store
Capped, newest-first transaction trails persisted through the key-value store.
"""

import asyncio
import logging
from typing import Any, Dict, List

from config import Config
from services.key_value_store import (
    CONVERSION_HISTORY_KEY,
    FEE_COLLECTION_HISTORY_KEY,
    TRANSFER_HISTORY_KEY,
    KeyValueStore,
)
from utils.capped_log import CappedLog

logger = logging.getLogger(__name__)


class HistoryStore:
    """Appends serialized records to bounded logs, one per history key"""

    DEFAULT_CAPS = {
        TRANSFER_HISTORY_KEY: Config.TRANSFER_HISTORY_CAP,
        CONVERSION_HISTORY_KEY: Config.CONVERSION_HISTORY_CAP,
        FEE_COLLECTION_HISTORY_KEY: Config.FEE_COLLECTION_HISTORY_CAP,
    }

    def __init__(self, store: KeyValueStore, caps: Dict[str, int] = None):
        self.store = store
        self.caps = {**self.DEFAULT_CAPS, **(caps or {})}
        self._logs: Dict[str, CappedLog] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _log_for(self, key: str) -> CappedLog:
        log = self._logs.get(key)
        if log is None:
            persisted = await self.store.get(key, [])
            log = CappedLog(self.caps.get(key, 100), persisted)
            self._logs[key] = log
        return log

    async def append(self, key: str, record: Dict[str, Any]) -> None:
        """Prepend `record`, evicting the oldest entry past the cap, and persist"""
        async with self._lock_for(key):
            log = await self._log_for(key)
            await self.store.set(key, [record] + log.to_list()[: log.capacity - 1])
            log.append(record)
        logger.debug(f"🗂️ HISTORY_APPENDED: {key} ({len(log)}/{log.capacity})")

    async def list(self, key: str) -> List[Dict[str, Any]]:
        """Records newest first"""
        async with self._lock_for(key):
            return (await self._log_for(key)).to_list()

    async def clear(self, key: str) -> None:
        async with self._lock_for(key):
            await self.store.remove(key)
            self._logs.pop(key, None)
        logger.info(f"🧹 HISTORY_CLEARED: {key}")
