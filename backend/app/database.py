"""
Database connection and session management.

SQLite Notes:
-------------
1. WAL Mode (Write-Ahead Logging):
   - Webhook requests keep reading while the queue worker writes
   - Requires periodic checkpointing (handled by retention_service hourly)

2. NullPool:
   - Creates new connection for each operation (required for async SQLite)

3. Busy Timeout (5 seconds):
   - Writers queue up behind each other instead of failing with
     "database is locked"

Limitations:
- Single-writer: Only one write transaction at a time. The retry queue claims
  tasks one row per statement for this reason (see NotificationQueue.claim_due)
- For multi-node deployments, migrate to PostgreSQL
"""
import sqlite3
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from loguru import logger

from app.config import settings
from app.constants import SQLITE_BUSY_TIMEOUT_MS

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    poolclass=NullPool,
    future=True
)

# Create session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False
)

# Base class for models
Base = declarative_base()


@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """
    Enable SQLite-specific settings when using SQLite.
    - PRAGMA foreign_keys=ON: Enable foreign key constraints (disabled by default in SQLite)
    - PRAGMA journal_mode=WAL: Use Write-Ahead Logging for better concurrency
    - PRAGMA busy_timeout: Wait for locks to release instead of failing
    - PRAGMA synchronous=NORMAL: Balance between safety and performance for WAL mode
    """
    # aiosqlite connections arrive wrapped in an adapter from the sqlite dialect
    if isinstance(dbapi_conn, sqlite3.Connection) or "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()


async def get_db() -> AsyncSession:
    """
    Dependency for getting database session.

    Usage:
        @router.get("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    """Initialize database tables."""
    # Register all models on Base.metadata
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await run_migrations()


# Columns added after the first release: (table, column, DDL type and default)
ADDED_COLUMNS = [
    ("user_settings", "notify_reward_redemption", "BOOLEAN NOT NULL DEFAULT 0"),
    ("discord_integrations", "calendar_sync_enabled", "BOOLEAN NOT NULL DEFAULT 0"),
    ("notification_queue", "notification_log_id", "INTEGER"),
]


async def run_migrations():
    """
    Add any missing columns to existing tables.

    Note: SQLite ALTER TABLE only supports adding columns, not modifying/removing.
    """
    try:
        async with engine.begin() as conn:
            columns_added = 0
            for table, column_name, column_type in ADDED_COLUMNS:
                result = await conn.execute(text(f"PRAGMA table_info({table})"))
                existing_columns = {row[1] for row in result.fetchall()}
                if existing_columns and column_name not in existing_columns:
                    logger.info(f"Adding column '{column_name}' to {table} table")
                    await conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column_name} {column_type}"))
                    columns_added += 1

            if columns_added > 0:
                logger.info(f"Migration complete: added {columns_added} new column(s)")
            else:
                logger.debug("No migrations needed - all columns exist")

    except Exception as e:
        logger.error(f"Migration failed: {e}")
        raise  # Re-raise to prevent app startup with inconsistent schema


async def checkpoint_wal():
    """
    Run a WAL checkpoint to consolidate the write-ahead log.
    Call this periodically (e.g., during retention cleanup) to prevent WAL file growth.
    """
    try:
        async with engine.begin() as conn:
            await conn.execute(text("PRAGMA wal_checkpoint(TRUNCATE)"))
            logger.debug("WAL checkpoint completed")
    except Exception as e:
        logger.warning(f"WAL checkpoint failed: {e}")


async def close_db():
    """Close database connections."""
    await checkpoint_wal()
    await engine.dispose()
