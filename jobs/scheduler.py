"""Background job scheduler for the wallet engine: auto-convert checks and rate prefetching"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import Config
from jobs.auto_convert_monitor import AutoConvertMonitor
from services.conversion_orchestrator import ConversionOrchestrator
from services.rate_cache import RateCache
from utils.error_handler import WalletServiceError

logger = logging.getLogger(__name__)


class WalletJobScheduler:
    """Periodic wallet jobs on an asyncio scheduler"""

    def __init__(
        self,
        monitor: AutoConvertMonitor,
        conversions: ConversionOrchestrator,
        rate_cache: RateCache,
        auto_convert_interval: int = Config.AUTO_CONVERT_CHECK_INTERVAL_SECONDS,
        rate_prefetch_interval: int = Config.RATE_PREFETCH_INTERVAL_SECONDS,
    ):
        self.monitor = monitor
        self.conversions = conversions
        self.rate_cache = rate_cache
        self.auto_convert_interval = auto_convert_interval
        self.rate_prefetch_interval = rate_prefetch_interval

        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': AsyncIOExecutor()
        }
        job_defaults = {
            'coalesce': True,  # Global coalescing to prevent job pileup
            'max_instances': 1,
            'misfire_grace_time': 30
        }

        self.scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )
        self.last_results: Dict[str, Any] = {}

    def setup_jobs(self):
        """Register jobs; safe to call again (existing jobs are replaced)"""
        self.scheduler.add_job(
            self.run_auto_convert_check,
            trigger=IntervalTrigger(seconds=self.auto_convert_interval),
            id="auto_convert_check",
            name="Auto Convert Check",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        # Keep the selected country's rate warm so conversions rarely wait on the provider
        self.scheduler.add_job(
            self.prefetch_rates,
            trigger=IntervalTrigger(
                seconds=self.rate_prefetch_interval,
                start_date=datetime.now(timezone.utc).replace(second=5, microsecond=0),
            ),
            id="prefetch_rates",
            name="Prefetch Conversion Rates",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    def start(self):
        """Start the scheduler; requires a running event loop"""
        self.setup_jobs()
        self.scheduler.start()
        jobs = self.scheduler.get_jobs()
        logger.info(f"✅ Wallet scheduler started: {[job.id for job in jobs]}")

    async def stop(self):
        """Stop the scheduler; the asyncio scheduler finishes its shutdown on the next loop turn"""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            await asyncio.sleep(0)
        logger.info("Background job scheduler stopped")

    async def run_auto_convert_check(self) -> Dict[str, Any]:
        result = await self.monitor.check_and_convert()
        self.last_results["auto_convert_check"] = result
        return result

    async def prefetch_rates(self) -> bool:
        """Background job to refresh the selected country's rate"""
        try:
            country = await self.conversions.get_selected_country()
            snapshot = await self.rate_cache.get(country)
            logger.debug(f"🔄 BACKGROUND: rate for {country.id} is {snapshot.btc_to_local}")
            return True
        except WalletServiceError as e:
            logger.warning(f"⚠️ RATE_PREFETCH_FAILED: {e}")
            return False
