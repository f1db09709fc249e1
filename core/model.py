import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()
logger = logging.getLogger("QueueMonitor.Model")


class Model:
    """Database access shared by all monitor records."""

    # This will be set by the application bootstrap
    _engine = None
    _read_engine = None
    _session_factory = None
    _read_session_factory = None
    _is_enabled = False

    @classmethod
    def configure(cls, connection_string: str, read_connection_string: Optional[str] = None, **engine_options):
        """
        Configure the database connection.

        Args:
            connection_string: URL of the primary database, used for every write
                and for lookups that decide whether a job may run
            read_connection_string: Optional replica URL for dashboard queries
            engine_options: Extra keyword arguments for create_async_engine
        """
        cls._engine = create_async_engine(connection_string, **engine_options)
        cls._session_factory = sessionmaker(
            cls._engine, expire_on_commit=False, class_=AsyncSession
        )

        if read_connection_string:
            cls._read_engine = create_async_engine(read_connection_string, **engine_options)
            cls._read_session_factory = sessionmaker(
                cls._read_engine, expire_on_commit=False, class_=AsyncSession
            )
        else:
            cls._read_engine = None
            cls._read_session_factory = None

        cls._is_enabled = True
        logger.info("Database connection configured")

    @classmethod
    async def cleanup(cls):
        """Cleanup database connections and close the engines."""
        if cls._read_engine is not None:
            await cls._read_engine.dispose()
            cls._read_engine = None
            cls._read_session_factory = None

        if cls._engine is not None:
            await cls._engine.dispose()
            cls._engine = None
            cls._session_factory = None
            cls._is_enabled = False
            logger.info("Database connections closed")

    @classmethod
    async def reconnect(cls):
        """
        Drop pooled connections so the next session opens a fresh one.

        Long-lived worker processes can hold a connection the server has
        already closed; the engine stays configured.
        """
        if cls._engine is None:
            return

        await cls._engine.dispose()
        if cls._read_engine is not None:
            await cls._read_engine.dispose()
        logger.debug("Database connection pool recycled")

    @classmethod
    async def get_session(cls, primary: bool = True) -> Optional[AsyncSession]:
        """
        Get a new session for database operations.

        Args:
            primary: Use the primary database. Pass False for reads that can
                tolerate replica lag.
        """
        if not cls._is_enabled:
            logger.warning("Database operations attempted while the database is disabled")
            return None

        if cls._session_factory is None:
            raise RuntimeError("Database not configured. Call Model.configure() first.")

        if not primary and cls._read_session_factory is not None:
            return cls._read_session_factory()
        return cls._session_factory()

    @classmethod
    @asynccontextmanager
    async def transaction(cls) -> AsyncIterator[AsyncSession]:
        """
        Open a session on the primary database inside a single transaction.

        Commits when the block exits normally and rolls back when it raises.
        """
        if not cls._is_enabled:
            raise RuntimeError("Database is disabled. Configure it to record queue events.")

        async with await cls.get_session() as session:
            async with session.begin():
                yield session

    @classmethod
    async def create_tables(cls):
        """Create all tables defined in models."""
        if not cls._is_enabled:
            logger.info("Skipping table creation as the database is disabled")
            return

        async with cls._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created")

    @classmethod
    async def find(cls, model_class, id_value, primary: bool = True):
        """Find a record by ID."""
        if not cls._is_enabled:
            logger.warning(f"Find operation on {model_class.__name__} skipped - database disabled")
            return None

        async with await cls.get_session(primary) as session:
            result = await session.execute(
                select(model_class).where(model_class.id == id_value)
            )
            return result.scalars().first()
