import random
import threading
from collections import Counter

import pytest

from scorehub.services.errors import ConfigurationError
from scorehub.services.key_pool import KeyPool, KeyState, SelectionMode

LONG_KEYS = ["dfa5bc422e979517069be14236ec78e5", "0123456789abcdef0123456789abcdef"]


class TestRoundRobin:
    def test_cycles_through_keys_in_order(self, make_pool):
        pool = make_pool(["k1", "k2"])

        assert [pool.get_next_api_key() for _ in range(3)] == ["k1", "k2", "k1"]

    def test_skips_failed_keys(self, make_pool):
        pool = make_pool(["k1", "k2", "k3"])
        pool.mark_key_as_failed("k2")

        assert [pool.get_next_api_key() for _ in range(4)] == ["k1", "k3", "k1", "k3"]

    def test_fails_open_when_every_key_failed(self, make_pool):
        pool = make_pool(["k1", "k2"])
        pool.mark_key_as_failed("k1")
        pool.mark_key_as_failed("k2")

        picks = [pool.get_next_api_key() for _ in range(3)]

        assert picks == ["k1", "k2", "k1"]

    def test_concurrent_selection_loses_no_cursor_updates(self, make_pool):
        keys = ["k1", "k2", "k3"]
        pool = make_pool(keys)
        picks: list[str] = []
        picks_lock = threading.Lock()

        def worker():
            local = [pool.get_next_api_key() for _ in range(100)]
            with picks_lock:
                picks.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(9)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert Counter(picks) == {"k1": 300, "k2": 300, "k3": 300}


class TestRandom:
    def test_picks_only_working_keys(self, make_pool):
        pool = make_pool(
            ["k1", "k2", "k3"], SelectionMode.RANDOM, rng=random.Random(7)
        )
        pool.mark_key_as_failed("k1")
        pool.mark_key_as_failed("k3")

        assert {pool.get_next_api_key() for _ in range(50)} == {"k2"}

    def test_falls_back_to_all_keys_when_every_key_failed(self, make_pool):
        pool = make_pool(["k1", "k2"], SelectionMode.RANDOM, rng=random.Random(7))
        pool.mark_key_as_failed("k1")
        pool.mark_key_as_failed("k2")

        picks = {pool.get_next_api_key() for _ in range(50)}

        assert picks == {"k1", "k2"}


class TestHealth:
    def test_mark_failed_is_idempotent_in_state(self, make_pool):
        pool = make_pool(["k1", "k2"])

        pool.mark_key_as_failed("k1")
        pool.mark_key_as_failed("k1")

        assert pool._health["k1"].state == KeyState.FAILED
        assert pool.get_available_keys_count() == 1
        assert pool._health["k1"].failure_count == 2
        assert pool._health["k1"].last_failure is not None

    def test_mark_working_clears_failure(self, make_pool):
        pool = make_pool(["k1", "k2"])
        pool.mark_key_as_failed("k1")

        pool.mark_key_as_working("k1")

        assert pool._health["k1"].state == KeyState.WORKING
        assert pool._health["k1"].failure_count == 0
        assert pool.get_available_keys_count() == 2

    def test_marking_unknown_key_is_ignored(self, make_pool):
        pool = make_pool(["k1"])

        pool.mark_key_as_failed("gone")
        pool.mark_key_as_working("gone")

        assert pool.get_total_keys_count() == 1
        assert pool.get_available_keys_count() == 1

    def test_reset_failed_keys_clears_everything(self, make_pool):
        pool = make_pool(["k1", "k2", "k3"])
        pool.mark_key_as_failed("k1")
        pool.mark_key_as_failed("k3")

        assert pool.reset_failed_keys() == 2
        assert pool.get_available_keys_count() == 3

    def test_scheduled_reset_clears_failures(self, make_pool):
        pool = make_pool(["k1", "k2"])
        pool.mark_key_as_failed("k2")

        pool._scheduled_reset()

        assert pool.get_available_keys_count() == 2

    def test_current_key_does_not_advance_cursor(self, make_pool):
        pool = make_pool(["k1", "k2"])
        pool.mark_key_as_failed("k1")

        assert pool.get_current_api_key() == "k2"
        assert pool.get_next_api_key() == "k2"

    def test_usage_stats_are_masked(self, make_pool):
        pool = make_pool(LONG_KEYS)
        for _ in range(3):
            pool.get_next_api_key()

        stats = pool.get_usage_stats()

        assert stats == [
            {"index": 0, "key": "dfa5bc42...78e5", "usage_count": 2},
            {"index": 1, "key": "01234567...cdef", "usage_count": 1},
        ]

    def test_short_keys_get_separate_records(self, make_pool):
        pool = make_pool(["k1", "k2"])
        pool.get_next_api_key()
        pool.mark_key_as_failed("k2")

        assert [s["usage_count"] for s in pool.get_usage_stats()] == [1, 0]
        records = pool.get_status()["keys"]
        assert [(r["index"], r["key"], r["state"]) for r in records] == [
            (0, "****", "WORKING"),
            (1, "****", "FAILED"),
        ]


class TestLifecycle:
    def test_reinitialize_keeps_a_single_reset_job(self, make_pool):
        pool = make_pool(["k1"])
        first_next_reset = pool.get_next_reset_time()

        pool.initialize(["k1", "k2"], SelectionMode.ROUND_ROBIN, 1.0)

        assert first_next_reset is not None
        assert len(pool._scheduler.get_jobs()) == 1
        assert pool.reset_interval_hours == 1.0

    def test_reload_keeps_health_of_retained_keys(self, make_pool):
        pool = make_pool(["k1", "k2"])
        pool.get_next_api_key()
        pool.mark_key_as_failed("k1")

        assert pool.reload_from_remote_config(["k1", "k2", "k3"], 0.25) is True

        assert pool.get_available_keys_count() == 2
        assert pool._health["k1"].state == KeyState.FAILED
        assert pool._health["k1"].failure_count == 1
        assert pool._health["k1"].usage_count == 1
        assert pool._health["k3"].state == KeyState.WORKING

    def test_reload_with_same_keys_keeps_cursor(self, make_pool):
        pool = make_pool(["k1", "k2", "k3"])
        pool.get_next_api_key()

        pool.reload_from_remote_config(["k1", "k2", "k3"])

        assert pool.get_next_api_key() == "k2"

    def test_reinitialize_replaces_keys_and_health(self, make_pool):
        pool = make_pool(["k1", "k2"])
        pool.mark_key_as_failed("k1")

        pool.initialize(["k3"], SelectionMode.ROUND_ROBIN, 0.25)

        assert pool.get_total_keys_count() == 1
        assert pool.get_next_api_key() == "k3"

    @pytest.mark.parametrize(
        "keys, interval",
        [([], 0.25), (None, 0.25), (["  "], 0.25), (["k9"], 0), (["k9"], -1.0)],
    )
    def test_invalid_configuration_keeps_previous_state(self, make_pool, keys, interval):
        pool = make_pool(["k1", "k2"])

        applied = pool.initialize(keys, SelectionMode.RANDOM, interval)

        assert applied is False
        assert pool.get_total_keys_count() == 2
        assert pool.selection_mode == SelectionMode.ROUND_ROBIN

    def test_first_initialization_falls_back_to_default_keys(self, make_pool):
        pool = make_pool([], default_keys=["fallback"])

        assert pool.get_next_api_key() == "fallback"

    def test_uninitialized_pool_without_defaults_raises(self):
        pool = KeyPool()

        with pytest.raises(ConfigurationError):
            pool.get_next_api_key()

    def test_unknown_selection_mode_uses_random(self, make_pool):
        pool = make_pool(["k1"], "weighted")

        assert pool.selection_mode == SelectionMode.RANDOM

    def test_reload_keeps_unspecified_values(self, make_pool):
        pool = make_pool(["k1", "k2"], SelectionMode.ROUND_ROBIN, 0.5)

        assert pool.reload_from_remote_config(keys=["k3", "k4"]) is True

        assert pool.selection_mode == SelectionMode.ROUND_ROBIN
        assert pool.reset_interval_hours == 0.5
        assert [pool.get_next_api_key() for _ in range(2)] == ["k3", "k4"]

    def test_cleanup_is_idempotent(self, make_pool):
        pool = make_pool(["k1"])

        pool.cleanup()
        pool.cleanup()

        assert pool.get_next_reset_time() is None
        assert pool.get_next_api_key() == "k1"


class TestDebugInfo:
    def test_debug_info_masks_keys_and_reports_counts(self, make_pool):
        pool = make_pool(LONG_KEYS)
        pool.mark_key_as_failed(LONG_KEYS[0])

        info = pool.get_debug_info()

        assert "Total keys: 2" in info
        assert "Available keys: 1" in info
        assert "dfa5bc42...78e5: FAILED" in info
        assert LONG_KEYS[0] not in info
        assert "Next reset:" in info

    def test_debug_info_has_no_side_effects(self, make_pool):
        pool = make_pool(LONG_KEYS)
        pool.get_debug_info()

        assert pool.get_next_api_key() == LONG_KEYS[0]
        assert [s["usage_count"] for s in pool.get_usage_stats()] == [1, 0]
