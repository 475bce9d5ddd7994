from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ..app.config import Config
from ..utils.logger import get_logger

logger = get_logger()

# Create a base class for our models
Base = declarative_base()


class Database:
    """Owns the async engine and the session factory for one database URL."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or Config.DATABASE_URL
        connect_args = {"check_same_thread": False} if self.url.startswith("sqlite") else {}
        self.engine = create_async_engine(self.url, connect_args=connect_args)
        # expire_on_commit=False keeps ORM rows readable after the session commits
        self.SessionLocal = async_sessionmaker(self.engine, expire_on_commit=False, autoflush=False)

    def session(self) -> AsyncSession:
        return self.SessionLocal()

    async def get_db(self):
        """Dependency to get a database session."""
        async with self.SessionLocal() as db:
            yield db

    async def create_tables(self):
        """Create all tables in the database."""
        # Import all models here before calling create_all
        # This ensures they are registered with the Base metadata
        from . import models  # noqa: F401
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("[DB] Database tables created successfully.")

    async def drop_tables(self):
        from . import models  # noqa: F401
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def ping(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"[DB] Database health check failed: {e}")
            return False

    async def dispose(self):
        await self.engine.dispose()


_database: Optional[Database] = None


def get_database() -> Database:
    global _database
    if _database is None:
        _database = Database()
    return _database
