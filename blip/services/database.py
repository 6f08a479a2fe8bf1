"""
Database Service - Manages the relational store holding saved contracts
"""

import asyncio
import ssl
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy import text
import structlog

from blip.config.settings import Settings, get_settings
from blip.models.database_models import Base

logger = structlog.get_logger(__name__)


class DatabaseService:
    """Owns the async engine and session factory"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.engine = None
        self.session_factory = None

    def _engine_kwargs(self) -> dict:
        url = self.settings.database_url
        kwargs = {"echo": self.settings.debug}
        if url.startswith("postgresql"):
            connect_args = {"server_settings": {"application_name": "blip-api"}}
            if self.settings.is_production:
                connect_args["ssl"] = ssl.create_default_context()
            kwargs.update(
                pool_size=self.settings.db_pool_size,
                max_overflow=self.settings.db_max_overflow,
                pool_pre_ping=True,
                pool_recycle=3600,
                connect_args=connect_args,
            )
        return kwargs

    async def initialize(self, max_retries: int = 5, retry_delay: float = 3.0):
        """Create the engine and verify the connection."""
        url = self.settings.database_url
        logger.info("database_initializing", database=url.split('@')[-1])

        self.engine = create_async_engine(url, **self._engine_kwargs())
        self.session_factory = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        for attempt in range(max_retries):
            try:
                async with self.engine.begin() as conn:
                    await conn.execute(text("SELECT 1"))
                break
            except Exception as e:
                if attempt < max_retries - 1:
                    logger.warning(
                        "database_connection_retry",
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay_seconds=retry_delay,
                        error=str(e)
                    )
                    await asyncio.sleep(retry_delay)
                    continue
                logger.error("database_connection_failed", attempts=max_retries, error=str(e))
                raise

        logger.info("database_initialized")

    async def create_all(self):
        """Create tables directly (development and tests; production uses Alembic)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session scope that commits on success and rolls back on error"""
        if self.session_factory is None:
            raise RuntimeError("Database service not initialized")
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def health_check(self) -> bool:
        if not self.engine:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("database_health_check_failed", error=str(e))
            return False

    async def close(self):
        """Close database connections"""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
