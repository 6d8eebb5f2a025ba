"""
Rate Cache
Serves one RateSnapshot per country for up to the configured TTL, then refreshes
from the provider. A refresh fully replaces the previous snapshot.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from config import Config
from models import Country, RateSnapshot
from services.key_value_store import KeyValueStore, conversion_rates_key
from services.rate_provider import RateProvider
from utils.error_handler import ErrorCodes, NetworkError
from utils.helpers import utc_now

logger = logging.getLogger(__name__)


class RateCache:
    """TTL cache of exchange-rate snapshots, persisted under conversion_rates_<country>"""

    def __init__(
        self,
        provider: RateProvider,
        store: KeyValueStore,
        ttl_seconds: int = Config.RATE_CACHE_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.provider = provider
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._snapshots: Dict[str, RateSnapshot] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self.stats = {"hits": 0, "misses": 0, "refreshes": 0, "provider_errors": 0}

    def _lock_for(self, country_id: str) -> asyncio.Lock:
        lock = self._locks.get(country_id)
        if lock is None:
            lock = self._locks[country_id] = asyncio.Lock()
        return lock

    def _is_fresh(self, snapshot: Optional[RateSnapshot]) -> bool:
        return snapshot is not None and self.clock() - snapshot.fetched_at < self.ttl

    async def _load_persisted(self, country_id: str) -> Optional[RateSnapshot]:
        try:
            data = await self.store.get(conversion_rates_key(country_id))
            return RateSnapshot.from_dict(data) if data else None
        except Exception as e:
            logger.warning(f"⚠️ RATE_CACHE_READ_FAILED: {country_id}: {e}")
            return None

    def peek(self, country_id: str) -> Optional[RateSnapshot]:
        """Current in-memory snapshot, fresh or not"""
        return self._snapshots.get(country_id)

    async def get(self, country: Country) -> RateSnapshot:
        """
        Return a snapshot younger than the TTL, refreshing from the provider if needed.

        Raises:
            NetworkError: the provider failed or returned a non-positive rate; nothing is cached
        """
        async with self._lock_for(country.id):
            snapshot = self._snapshots.get(country.id)
            if snapshot is None:
                snapshot = await self._load_persisted(country.id)
                if snapshot is not None:
                    self._snapshots[country.id] = snapshot

            if self._is_fresh(snapshot):
                self.stats["hits"] += 1
                return snapshot

            self.stats["misses"] += 1
            return await self._refresh(country)

    async def _refresh(self, country: Country) -> RateSnapshot:
        try:
            quote = await self.provider.fetch(country)
        except Exception as e:
            self.stats["provider_errors"] += 1
            logger.error(f"❌ RATE_FETCH_FAILED: {country.id}: {e}")
            raise NetworkError(
                f"Rate provider failed for {country.id}: {e}",
                code=ErrorCodes.EXTERNAL_SERVICE_UNAVAILABLE,
                user_message="Exchange rates are temporarily unavailable. Please try again.",
            ) from e

        if quote.btc_to_usd <= 0 or quote.usd_to_local <= 0:
            self.stats["provider_errors"] += 1
            logger.error(
                f"❌ RATE_INVALID: {country.id} btc_to_usd={quote.btc_to_usd} usd_to_local={quote.usd_to_local}"
            )
            raise NetworkError(
                f"Rate provider returned a non-positive rate for {country.id}",
                code=ErrorCodes.INVALID_API_RESPONSE,
                user_message="Exchange rates are temporarily unavailable. Please try again.",
            )

        snapshot = RateSnapshot.from_quote(quote, country.id, self.clock())
        self._snapshots[country.id] = snapshot
        self.stats["refreshes"] += 1

        try:
            await self.store.set(conversion_rates_key(country.id), snapshot.to_dict())
        except Exception as e:
            logger.warning(f"⚠️ RATE_CACHE_WRITE_FAILED: {country.id}: {e}")

        logger.info(
            f"📈 RATE_REFRESHED: {country.id} BTC/{country.currency}={snapshot.btc_to_local} "
            f"(BTC/USD={snapshot.btc_to_usd}, USD/{country.currency}={snapshot.usd_to_local})"
        )
        return snapshot
