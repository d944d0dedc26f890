"""
Repository layer - data access for the persistent API cache
"""

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from scorehub.datastore.models import CacheEntryDB


class CacheEntryRepository:
    """API cache entry repository"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> CacheEntryDB | None:
        """Fetch one entry regardless of expiry"""
        result = await self.session.execute(
            select(CacheEntryDB).where(CacheEntryDB.key == key)
        )
        return result.scalar_one_or_none()

    async def put(
        self,
        key: str,
        data: str,
        timestamp: int,
        expires_at: int,
        version: int = 1,
    ) -> None:
        """Insert or replace an entry (last write wins)"""
        await self.session.merge(
            CacheEntryDB(
                key=key,
                data=data,
                timestamp=timestamp,
                expires_at=expires_at,
                version=version,
            )
        )

    async def delete(self, key: str) -> bool:
        """Delete one entry, returns True if it existed"""
        result = await self.session.execute(
            delete(CacheEntryDB).where(CacheEntryDB.key == key)
        )
        return (result.rowcount or 0) > 0

    async def delete_keys(self, keys: list[str], expired_at: int | None = None) -> int:
        """
        Delete a batch of entries, returns the number removed.

        With `expired_at` set, only entries still expired at that instant are
        removed, so an entry replaced after the key scan survives.
        """
        if not keys:
            return 0
        stmt = delete(CacheEntryDB).where(CacheEntryDB.key.in_(keys))
        if expired_at is not None:
            stmt = stmt.where(CacheEntryDB.expires_at <= expired_at)
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def expired_keys(self, now: int) -> list[str]:
        """Keys whose expiry is at or before `now` (epoch ms)"""
        result = await self.session.execute(
            select(CacheEntryDB.key).where(CacheEntryDB.expires_at <= now)
        )
        return list(result.scalars().all())

    async def all_keys(self) -> list[str]:
        result = await self.session.execute(select(CacheEntryDB.key))
        return list(result.scalars().all())

    async def keys_matching(self, pattern: str) -> list[str]:
        """Keys containing `pattern`, case-insensitive"""
        result = await self.session.execute(
            select(CacheEntryDB.key).where(
                func.lower(CacheEntryDB.key).contains(pattern.lower(), autoescape=True)
            )
        )
        return list(result.scalars().all())
