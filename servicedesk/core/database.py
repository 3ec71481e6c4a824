from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
from starlette.requests import HTTPConnection


class Base(DeclarativeBase):
  pass


def _is_memory_sqlite(dsn: str) -> bool:
  return dsn.startswith("sqlite") and (dsn.endswith("://") or ":memory:" in dsn)


class Database:
  """Async engine and session factory owned by one application instance."""

  def __init__(self, dsn: str, *, echo: bool = False) -> None:
    engine_kwargs: dict[str, Any] = {}
    # In-memory SQLite lives inside a single connection; share it across sessions.
    if _is_memory_sqlite(dsn):
      engine_kwargs["poolclass"] = StaticPool
      engine_kwargs["connect_args"] = {"check_same_thread": False}
    self.dsn = dsn
    self.engine: AsyncEngine = create_async_engine(dsn, echo=echo, **engine_kwargs)
    self.session_factory = async_sessionmaker(bind=self.engine, expire_on_commit=False, class_=AsyncSession)

  async def create_all(self) -> None:
    """Create missing tables; there is no migration history to apply."""
    async with self.engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)

  async def dispose(self) -> None:
    await self.engine.dispose()


async def get_db(connection: HTTPConnection) -> AsyncGenerator[AsyncSession]:
  """Dependency to get a database session."""
  database: Database | None = getattr(connection.app.state, "database", None)
  if database is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Database is not configured")

  async with database.session_factory() as session:
    try:
      yield session
    finally:
      await session.close()
