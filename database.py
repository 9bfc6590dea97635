import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Optional

from fastapi import Depends, Request
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config.settings import settings, IS_PRODUCTION

logger = logging.getLogger(__name__)

# Validate production database configuration
if IS_PRODUCTION:
    if not settings.database_url:
        raise RuntimeError("DATABASE_URL must be set in production. SQLite is not allowed in production.")
    if "sqlite" in settings.database_url.lower():
        raise RuntimeError("SQLite is forbidden in production. Use a PostgreSQL DATABASE_URL.")

# Create declarative base for models
Base = declarative_base()


def normalize_database_url(url: str) -> str:
    """Map plain postgres URLs onto the asyncpg driver."""
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


class Database:
    """
    Lazily-initialized connection resource shared by every request in a worker.

    The engine is created on first use. Pooled connections are pinged before
    checkout, and the whole pool is recycled when a connection is reported as
    invalidated, so a dropped database connection is replaced on the next call.
    """

    def __init__(self, url: str, **engine_kwargs):
        self.url = normalize_database_url(url)
        self.engine_kwargs = engine_kwargs
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            options = {"echo": False, "pool_pre_ping": True}
            options.update(self.engine_kwargs)
            self._engine = create_async_engine(self.url, **options)
            self._session_factory = async_sessionmaker(
                self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
            logger.info("Database engine initialized")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self.engine
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Plain session; the caller owns commit/rollback."""
        async with self.session_factory() as session:
            try:
                yield session
            except DBAPIError as e:
                await self._handle_disconnect(e)
                raise

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session inside a single transaction: committed on exit, rolled back on error."""
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except DBAPIError as e:
                await self._handle_disconnect(e)
                raise

    async def _handle_disconnect(self, error: DBAPIError) -> None:
        if error.connection_invalidated:
            logger.warning("Database connection invalidated, recycling pool")
            await self.reset()

    async def reset(self) -> None:
        """Drop every pooled connection; the next checkout reconnects."""
        if self._engine is not None:
            await self._engine.dispose()

    async def create_all(self) -> None:
        """Create all tables. Called on application startup."""
        async with self.engine.begin() as conn:
            # Import models here to ensure they're registered with Base
            import database_models  # noqa: F401
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


def get_database(request: Request) -> Database:
    """Dependency returning the application's database resource."""
    return request.app.state.database


async def get_db(database: Database = Depends(get_database)) -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function that yields a database session.
    Use this in FastAPI route dependencies to get a database session.

    Example:
        @app.get("/users")
        async def get_users(db: AsyncSession = Depends(get_db)):
            # Use db here
            pass
    """
    async with database.session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
