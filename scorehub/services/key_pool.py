"""
KeyPool - Rotates a set of interchangeable API keys across concurrent requests.

Key states:
- WORKING: Key is eligible for selection
- FAILED: Key was rejected (quota or authorization), deprioritized until reset

Selection modes:
- RANDOM: Uniform among WORKING keys, uniform over all keys if none are WORKING
- ROUND_ROBIN: Cursor over all keys, skipping FAILED ones unless every key FAILED

The pool fails open: when every key is FAILED it still hands one out and leaves
the decision to keep retrying to the caller.
"""

import math
import random
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from loguru import logger

from scorehub.services.errors import ConfigurationError
from scorehub.utils import mask_key


class KeyState(str, Enum):
    """Health state of a single API key."""

    WORKING = "WORKING"
    FAILED = "FAILED"


class SelectionMode(str, Enum):
    """How the pool picks the next key."""

    RANDOM = "random"
    ROUND_ROBIN = "round_robin"

    @classmethod
    def parse(cls, value: "str | SelectionMode") -> "SelectionMode":
        """Parse a mode name, falling back to RANDOM for unknown values."""
        if isinstance(value, SelectionMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning(f"Unknown key selection mode '{value}', using random")
            return cls.RANDOM


@dataclass
class KeyHealth:
    """Health record for one API key."""

    key: str
    state: KeyState = KeyState.WORKING
    failure_count: int = 0
    last_failure: datetime | None = None
    usage_count: int = 0

    @property
    def is_working(self) -> bool:
        return self.state == KeyState.WORKING

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary with the key masked."""
        return {
            "key": mask_key(self.key),
            "state": self.state.value,
            "failure_count": self.failure_count,
            "usage_count": self.usage_count,
            "last_failure": (
                self.last_failure.isoformat() if self.last_failure else None
            ),
        }


class KeyPool:
    """
    Thread-safe pool of API keys with quarantine and periodic recovery.

    Usage:
        pool = KeyPool()
        pool.initialize(["key-a", "key-b"], SelectionMode.ROUND_ROBIN, 0.25)

        key = pool.get_next_api_key()
        ...
        pool.mark_key_as_failed(key)  # on 429 / 401 / 403
        pool.mark_key_as_working(key)  # on 2xx

        pool.cleanup()
    """

    RESET_JOB_ID = "key_pool_reset"

    def __init__(
        self,
        default_keys: list[str] | None = None,
        scheduler: BaseScheduler | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._default_keys = list(default_keys or [])
        self._keys: list[str] = []
        self._health: dict[str, KeyHealth] = {}
        self._selection_mode = SelectionMode.RANDOM
        self._reset_interval_hours = 0.25
        self._cursor = 0
        self._rng = rng or random.Random()
        self._clock = clock
        self._lock = threading.Lock()

        # Single slot for the recurring reset job
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._reset_job: Any = None

    # Lifecycle

    def initialize(
        self,
        keys: list[str] | None,
        selection_mode: "str | SelectionMode" = SelectionMode.RANDOM,
        reset_interval_hours: float = 0.25,
    ) -> bool:
        """
        (Re)populate the pool and re-arm the periodic reset.

        Invalid configuration leaves the previous pool state untouched.

        Returns:
            True if the new configuration was applied
        """
        try:
            interval = self._validate_interval(reset_interval_hours)
        except ConfigurationError as e:
            logger.warning(f"Rejected key pool configuration, keeping previous: {e}")
            return False

        try:
            cleaned = self._validate_keys(keys)
        except ConfigurationError as e:
            if self._keys or not self._default_keys:
                logger.warning(
                    f"Rejected key pool configuration, keeping previous: {e}"
                )
                return False
            # First initialization: fall back to the built-in keys
            logger.warning(f"{e}, using default keys")
            cleaned = list(self._default_keys)

        mode = SelectionMode.parse(selection_mode)

        with self._lock:
            # Keys that stay in the pool keep their health and usage records
            previous = self._health
            if cleaned != self._keys:
                self._cursor = 0
            self._keys = cleaned
            self._health = {
                key: previous.get(key) or KeyHealth(key=key) for key in cleaned
            }
            self._selection_mode = mode
            self._reset_interval_hours = interval
            self._arm_reset_job()

        logger.info(
            f"Key pool initialized: {len(cleaned)} keys, mode={mode.value}, "
            f"reset every {interval * 60:.1f} minutes"
        )
        return True

    def reload_from_remote_config(
        self,
        keys: list[str] | None = None,
        reset_interval_hours: float | None = None,
        selection_mode: "str | SelectionMode | None" = None,
    ) -> bool:
        """Re-initialize with new keys and/or interval, keeping unspecified values."""
        with self._lock:
            current_keys = list(self._keys)
            current_interval = self._reset_interval_hours
            current_mode = self._selection_mode

        return self.initialize(
            keys if keys is not None else current_keys,
            selection_mode if selection_mode is not None else current_mode,
            (
                reset_interval_hours
                if reset_interval_hours is not None
                else current_interval
            ),
        )

    def cleanup(self) -> None:
        """Cancel the reset job and stop the scheduler if the pool owns it."""
        with self._lock:
            self._cancel_reset_job()
            scheduler = self._scheduler
            if self._owns_scheduler:
                self._scheduler = None

        if self._owns_scheduler and scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
            logger.debug("Key pool scheduler stopped")

    # Selection

    def get_next_api_key(self) -> str:
        """Return a key for immediate use. Never blocks and never fails on exhaustion."""
        with self._lock:
            if not self._keys:
                if not self._default_keys:
                    raise ConfigurationError("Key pool has no keys configured")
                logger.warning("Key pool not initialized, using default keys")
                self._keys = list(self._default_keys)
                self._health = {key: KeyHealth(key=key) for key in self._keys}

            if self._selection_mode == SelectionMode.ROUND_ROBIN:
                key = self._select_round_robin()
            else:
                key = self._select_random()

            self._health[key].usage_count += 1
            return key

    def _select_round_robin(self) -> str:
        total = len(self._keys)
        start = self._cursor % total
        for offset in range(total):
            index = (start + offset) % total
            key = self._keys[index]
            if self._health[key].is_working:
                self._cursor = index + 1
                return key

        logger.warning("All API keys failed, handing out next key anyway")
        self._cursor = start + 1
        return self._keys[start]

    def _select_random(self) -> str:
        working = [k for k in self._keys if self._health[k].is_working]
        if not working:
            logger.warning("All API keys failed, picking from the full pool")
            return self._rng.choice(self._keys)
        return self._rng.choice(working)

    def get_current_api_key(self) -> str | None:
        """First working key without advancing the cursor."""
        with self._lock:
            for key in self._keys:
                if self._health[key].is_working:
                    return key
            if self._keys:
                return self._keys[0]
            return self._default_keys[0] if self._default_keys else None

    # Health reporting

    def mark_key_as_failed(self, key: str) -> None:
        """Quarantine a key after a quota or authorization failure."""
        with self._lock:
            health = self._health.get(key)
            if health is None:
                logger.debug(f"Ignoring failure for unknown key {mask_key(key)}")
                return
            health.state = KeyState.FAILED
            health.failure_count += 1
            health.last_failure = self._clock()
            failures = health.failure_count

        logger.warning(f"Marked API key as failed: {mask_key(key)} ({failures}x)")

    def mark_key_as_working(self, key: str) -> None:
        """Clear the failed state after a successful response."""
        with self._lock:
            health = self._health.get(key)
            if health is None:
                return
            recovered = not health.is_working
            health.state = KeyState.WORKING
            health.failure_count = 0

        if recovered:
            logger.info(f"API key recovered: {mask_key(key)}")

    def reset_failed_keys(self) -> int:
        """Clear every FAILED marking. Returns the number of keys reset."""
        with self._lock:
            count = 0
            for health in self._health.values():
                if not health.is_working:
                    health.state = KeyState.WORKING
                    health.failure_count = 0
                    count += 1

        if count:
            logger.info(f"Reset {count} failed API keys")
        return count

    # Status

    def get_available_keys_count(self) -> int:
        with self._lock:
            return sum(1 for h in self._health.values() if h.is_working)

    def get_total_keys_count(self) -> int:
        with self._lock:
            return len(self._keys)

    def get_usage_stats(self) -> list[dict[str, Any]]:
        """Usage count per key, in pool order, with masked key labels."""
        with self._lock:
            return [
                {
                    "index": i,
                    "key": mask_key(k),
                    "usage_count": self._health[k].usage_count,
                }
                for i, k in enumerate(self._keys)
            ]

    @property
    def selection_mode(self) -> SelectionMode:
        return self._selection_mode

    @property
    def reset_interval_hours(self) -> float:
        return self._reset_interval_hours

    def get_next_reset_time(self) -> datetime | None:
        """When the periodic reset fires next, if armed."""
        job = self._reset_job
        if job is None:
            return None
        return getattr(job, "next_run_time", None)

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        next_reset = self.get_next_reset_time()
        with self._lock:
            return {
                "total_keys": len(self._keys),
                "available_keys": sum(
                    1 for h in self._health.values() if h.is_working
                ),
                "selection_mode": self._selection_mode.value,
                "reset_interval_hours": self._reset_interval_hours,
                "next_reset": next_reset.isoformat() if next_reset else None,
                "keys": [
                    {"index": i, **self._health[k].to_dict()}
                    for i, k in enumerate(self._keys)
                ],
            }

    def get_debug_info(self) -> str:
        """Human-readable snapshot of the pool."""
        status = self.get_status()
        now = self._clock()
        lines = [
            "API Key Pool Debug Info:",
            f"- Total keys: {status['total_keys']}",
            f"- Available keys: {status['available_keys']}",
            f"- Failed keys: {status['total_keys'] - status['available_keys']}",
            f"- Selection mode: {status['selection_mode']}",
            f"- Reset interval: {status['reset_interval_hours'] * 60:.1f} minutes",
            f"- Next reset: {status['next_reset'] or 'not scheduled'}",
        ]
        with self._lock:
            records = list(self._health.values())
        for health in records:
            line = (
                f"  {mask_key(health.key)}: {health.state.value}, "
                f"used {health.usage_count}x"
            )
            if health.last_failure:
                minutes_ago = (now - health.last_failure).total_seconds() / 60
                line += (
                    f", {health.failure_count} failures, "
                    f"last {minutes_ago:.0f} minutes ago"
                )
            lines.append(line)
        return "\n".join(lines)

    # Periodic reset

    def _arm_reset_job(self) -> None:
        """Replace the reset job. Caller holds the lock."""
        self._cancel_reset_job()

        if self._scheduler is None:
            self._scheduler = BackgroundScheduler()
            self._owns_scheduler = True
        if not self._scheduler.running:
            self._scheduler.start()

        self._reset_job = self._scheduler.add_job(
            self._scheduled_reset,
            trigger="interval",
            seconds=self._reset_interval_hours * 3600,
            id=self.RESET_JOB_ID,
            name="API Key Failure Reset",
            replace_existing=True,
        )

    def _cancel_reset_job(self) -> None:
        """Cancel the armed reset job, if any. Caller holds the lock."""
        if self._reset_job is None:
            return
        try:
            self._reset_job.remove()
        except JobLookupError:
            pass
        self._reset_job = None

    def _scheduled_reset(self) -> None:
        count = self.reset_failed_keys()
        logger.debug(f"Scheduled key reset ran ({count} keys cleared)")

    # Validation

    @staticmethod
    def _validate_keys(keys: list[str] | None) -> list[str]:
        if keys is None:
            raise ConfigurationError("No API keys supplied")
        cleaned: list[str] = []
        for key in keys:
            if not isinstance(key, str):
                raise ConfigurationError(f"API key must be a string, got {type(key)}")
            key = key.strip()
            if key and key not in cleaned:
                cleaned.append(key)
        if not cleaned:
            raise ConfigurationError("API key list is empty")
        return cleaned

    @staticmethod
    def _validate_interval(hours: float) -> float:
        try:
            value = float(hours)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid reset interval: {hours!r}") from e
        if not math.isfinite(value) or value <= 0:
            raise ConfigurationError(f"Reset interval must be positive: {hours!r}")
        return value
