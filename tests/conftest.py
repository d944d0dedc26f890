import pytest

from scorehub.datastore.engine import close_db, init_db
from scorehub.services.cache import CacheStore
from scorehub.services.key_pool import KeyPool, SelectionMode


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
async def session_factory(tmp_path):
    factory = await init_db(f"sqlite+aiosqlite:///{tmp_path / 'cache.db'}", echo=False)
    yield factory
    await close_db()


@pytest.fixture
def cache(session_factory, clock) -> CacheStore:
    return CacheStore(session_factory, clock=clock, batch_size=500)


@pytest.fixture
def make_pool():
    """Build initialized pools and clean up their schedulers afterwards."""
    pools: list[KeyPool] = []

    def _make(
        keys: list[str],
        mode: SelectionMode = SelectionMode.ROUND_ROBIN,
        reset_interval_hours: float = 0.25,
        **kwargs,
    ) -> KeyPool:
        pool = KeyPool(**kwargs)
        pool.initialize(keys, mode, reset_interval_hours)
        pools.append(pool)
        return pool

    yield _make

    for pool in pools:
        pool.cleanup()
