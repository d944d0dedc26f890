"""
Maintenance scheduler
APScheduler jobs for the cache expiry sweep and remote config refresh
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from scorehub.services.cache import CacheStore
from scorehub.services.errors import ConfigurationError
from scorehub.services.key_pool import KeyPool
from scorehub.services.remote_config import (
    apply_remote_config,
    load_remote_config_file,
)
from scorehub.settings import Settings, global_settings
from scorehub.utils import safe_func_wrapper


class MaintenanceScheduler:
    """Periodic cache sweeps and key pool config refreshes"""

    def __init__(
        self,
        cache: CacheStore,
        key_pool: KeyPool,
        settings: Settings | None = None,
    ):
        self.scheduler = AsyncIOScheduler()
        self.cache = cache
        self.key_pool = key_pool
        self.settings = settings or global_settings
        self._is_running = False

    @safe_func_wrapper
    async def sweep_cache_job(self) -> None:
        """Expired cache sweep job"""
        removed = await self.cache.clear_expired_cache()
        stats = self.cache.get_cache_stats()
        logger.info(
            f"Scheduled cache sweep completed: {removed} removed, "
            f"{stats.valid_entries} valid entries cached locally"
        )

    @safe_func_wrapper
    async def refresh_remote_config_job(self) -> None:
        """Remote config refresh job"""
        path = self.settings.remote_config_path
        if not path:
            return
        try:
            values = load_remote_config_file(path)
        except ConfigurationError as e:
            logger.warning(f"Remote config refresh skipped: {e}")
            return

        if apply_remote_config(self.key_pool, values):
            logger.info(
                f"Key pool reloaded from {path}: "
                f"{self.key_pool.get_total_keys_count()} keys"
            )

    def start(self) -> None:
        """Start the scheduler (requires a running event loop)"""
        if self._is_running:
            logger.warning("Maintenance scheduler is already running")
            return

        sweep_minutes = self.settings.cache_sweep_interval_minutes
        self.scheduler.add_job(
            self.sweep_cache_job,
            trigger="interval",
            minutes=sweep_minutes,
            id="cache_sweep_job",
            name="Expired Cache Sweeper",
            replace_existing=True,
        )

        if self.settings.remote_config_path:
            refresh_minutes = self.settings.remote_config_refresh_minutes
            self.scheduler.add_job(
                self.refresh_remote_config_job,
                trigger="interval",
                minutes=refresh_minutes,
                id="remote_config_refresh_job",
                name="Remote Config Refresher",
                replace_existing=True,
            )
            logger.info(f"Remote config refresh: every {refresh_minutes} minutes")

        self.scheduler.start()
        self._is_running = True

        logger.info(f"Maintenance scheduler started: sweeping every {sweep_minutes} minutes")

    def stop(self) -> None:
        """Stop the scheduler"""
        if not self._is_running:
            logger.warning("Maintenance scheduler is not running")
            return

        self.scheduler.shutdown(wait=False)
        self._is_running = False
        logger.info("Maintenance scheduler stopped")

    def is_running(self) -> bool:
        """Check whether the scheduler is running"""
        return self._is_running

    async def sweep_now(self) -> int:
        """Run one cache sweep immediately (manual trigger)"""
        logger.info("Manual cache sweep triggered")
        removed = await self.cache.clear_expired_cache()
        logger.info(f"Manual cache sweep completed: {removed} entries removed")
        return removed
