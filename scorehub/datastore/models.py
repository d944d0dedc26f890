"""
Database models
SQLAlchemy 2.0+ declarative mapping
"""

from sqlalchemy import BigInteger, Index, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models"""

    pass


class CacheEntryDB(Base):
    """Cached upstream API response"""

    __tablename__ = "api_cache"

    key: Mapped[str] = mapped_column(String(500), primary_key=True)
    data: Mapped[str] = mapped_column(Text, nullable=False)
    # Epoch milliseconds
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (Index("idx_api_cache_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        return f"<CacheEntry(key={self.key[:50]}, expires_at={self.expires_at})>"
