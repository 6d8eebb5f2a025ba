"""
Exchange rate providers for BTC → local currency conversions.

Market-data sourcing is external; the engine depends only on `RateProvider`.
`StaticRateProvider` quotes the reference BTC/USD rate and each country's USD
reference rate so the engine runs end to end without a market feed.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional

from config import Config
from models import Country, RateQuote

logger = logging.getLogger(__name__)


class RateProvider(ABC):
    @abstractmethod
    async def fetch(self, country: Country) -> RateQuote:
        """Return the current BTC/USD and USD/local rates for `country`"""
        ...


class StaticRateProvider(RateProvider):
    """Reference-rate provider with optional simulated latency and per-country overrides"""

    def __init__(
        self,
        btc_to_usd: Decimal = Config.REFERENCE_BTC_USD_RATE,
        usd_to_local_overrides: Optional[Dict[str, Decimal]] = None,
        delay_seconds: float = 0.0,
    ):
        self.btc_to_usd = Decimal(str(btc_to_usd))
        self.usd_to_local_overrides = usd_to_local_overrides or {}
        self.delay_seconds = delay_seconds
        self.fetch_count = 0

    async def fetch(self, country: Country) -> RateQuote:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        self.fetch_count += 1

        usd_to_local = Decimal(str(self.usd_to_local_overrides.get(country.id, country.exchange_rate)))
        logger.debug(
            f"📈 RATE_FETCHED: {country.id} BTC/USD={self.btc_to_usd} USD/{country.currency}={usd_to_local}"
        )
        return RateQuote(btc_to_usd=self.btc_to_usd, usd_to_local=usd_to_local)
