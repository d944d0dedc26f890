"""
scorehub entry point
Key pool, cache store and maintenance jobs for the live scores backend
"""

import asyncio

from loguru import logger

from scorehub.datastore.engine import close_db, init_db
from scorehub.scheduler import MaintenanceScheduler
from scorehub.services.cache import CacheStore
from scorehub.services.errors import ConfigurationError, ServiceError
from scorehub.services.key_pool import KeyPool
from scorehub.services.orchestrator import FetchOrchestrator
from scorehub.services.remote_config import (
    apply_remote_config,
    load_remote_config_file,
    settings_values,
)
from scorehub.settings import global_settings


def build_key_pool() -> KeyPool:
    """Create the key pool from settings, then overlay the remote config file"""
    pool = KeyPool()
    if not apply_remote_config(pool, settings_values(global_settings)):
        logger.warning("No usable API keys in settings")

    if global_settings.remote_config_path:
        try:
            values = load_remote_config_file(global_settings.remote_config_path)
            apply_remote_config(pool, values)
        except ConfigurationError as e:
            logger.warning(f"Remote config not applied: {e}")

    return pool


async def main() -> None:
    """Main function"""
    logger.info("Starting scorehub...")

    key_pool = build_key_pool()
    scheduler: MaintenanceScheduler | None = None
    orchestrator: FetchOrchestrator | None = None

    try:
        logger.info("Initializing database...")
        session_factory = await init_db()
        logger.info("Database initialized successfully")

        cache = CacheStore(session_factory)
        orchestrator = FetchOrchestrator(key_pool, cache)

        scheduler = MaintenanceScheduler(cache, key_pool)
        scheduler.start()
        await scheduler.sweep_now()

        logger.info(key_pool.get_debug_info())

        if key_pool.get_total_keys_count():
            try:
                result = await orchestrator.get_cached_or_fetch(
                    "football", endpoint="live", path="fixtures", params={"live": "all"}
                )
                logger.info(
                    f"Live fixtures fetched (from_cache={result.from_cache})"
                )
            except ServiceError as e:
                logger.error(f"Initial live fetch failed: {e}")

        logger.info("scorehub is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(60)
            logger.debug(orchestrator.get_health_status())

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
    finally:
        if scheduler and scheduler.is_running():
            scheduler.stop()
        if orchestrator:
            await orchestrator.close()

        key_pool.cleanup()
        await close_db()

        logger.info("scorehub stopped")


if __name__ == "__main__":
    asyncio.run(main())
