import json

import pytest

from scorehub.scheduler import MaintenanceScheduler
from scorehub.settings import Settings


def make_settings(**values) -> Settings:
    return Settings.model_validate(values)


async def test_sweep_now_removes_expired_entries(cache, clock, make_pool):
    await cache.cache_data("old", 1, 1000)
    await cache.cache_data("fresh", 2, 60_000)
    clock.advance(1000)
    scheduler = MaintenanceScheduler(cache, make_pool(["k1"]), make_settings())

    assert await scheduler.sweep_now() == 1
    assert await cache.get_cached_data("fresh") == 2


async def test_sweep_job_runs_clean(cache, clock, make_pool):
    await cache.cache_data("old", 1, 1000)
    clock.advance(1000)
    scheduler = MaintenanceScheduler(cache, make_pool(["k1"]), make_settings())

    await scheduler.sweep_cache_job()

    assert cache.get_cache_stats().total_entries == 0


async def test_refresh_job_reloads_pool_from_file(cache, make_pool, tmp_path):
    path = tmp_path / "remote.json"
    path.write_text(
        json.dumps(
            {
                "api_keys_json": '["r1", "r2", "r3"]',
                "api_key_selection_mode": "round_robin",
                "api_key_reset_interval_hours": 2,
            }
        ),
        encoding="utf-8",
    )
    pool = make_pool(["k1"])
    scheduler = MaintenanceScheduler(
        cache, pool, make_settings(REMOTE_CONFIG_PATH=str(path))
    )

    await scheduler.refresh_remote_config_job()

    assert pool.get_total_keys_count() == 3
    assert pool.reset_interval_hours == 2.0


@pytest.mark.parametrize("content", [None, "{broken", '{"api_keys_json": "[]"}'])
async def test_refresh_job_keeps_pool_on_bad_config(cache, make_pool, tmp_path, content):
    path = tmp_path / "remote.json"
    if content is not None:
        path.write_text(content, encoding="utf-8")
    pool = make_pool(["k1", "k2"])
    scheduler = MaintenanceScheduler(
        cache, pool, make_settings(REMOTE_CONFIG_PATH=str(path))
    )

    await scheduler.refresh_remote_config_job()

    assert pool.get_total_keys_count() == 2


async def test_start_registers_jobs_and_stop_shuts_down(cache, make_pool, tmp_path):
    settings = make_settings(
        REMOTE_CONFIG_PATH=str(tmp_path / "remote.json"),
        CACHE_SWEEP_INTERVAL=5,
    )
    scheduler = MaintenanceScheduler(cache, make_pool(["k1"]), settings)

    scheduler.start()
    try:
        assert scheduler.is_running()
        assert scheduler.scheduler.get_job("cache_sweep_job") is not None
        assert scheduler.scheduler.get_job("remote_config_refresh_job") is not None
    finally:
        scheduler.stop()

    assert not scheduler.is_running()


async def test_refresh_job_not_scheduled_without_path(cache, make_pool):
    scheduler = MaintenanceScheduler(cache, make_pool(["k1"]), make_settings())

    scheduler.start()
    try:
        assert scheduler.scheduler.get_job("remote_config_refresh_job") is None
    finally:
        scheduler.stop()
