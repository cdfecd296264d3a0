"""PostgreSQL access for the listener.

Owns the shared asyncpg pool used by the NFT store and by the email
channel's profile lookups. Creating the pool also brings the nfts and
profiles tables up to the latest schema version.
"""

import logging
from typing import Optional

import asyncpg
import backoff

from .exceptions import DatabaseError, DatabaseSchemaError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None
_db_url: Optional[str] = None


@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError, OSError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None) -> None:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Database URL. If not provided, the last URL passed is reused.

    Raises:
        ValueError: If database URL is not provided
        Exception: If initialization fails after retries
    """
    global _pool, _schema_manager, _db_url

    url = db_url or _db_url
    if not url:
        raise ValueError("Database URL not provided")
    _db_url = url

    try:
        pool = await asyncpg.create_pool(
            url,
            min_size=1,
            max_size=5,  # Frames are reconciled one at a time
            max_inactive_connection_lifetime=300.0,  # 5 minutes
            command_timeout=30.0,
        )

        schema_manager = SchemaManager(pool)
        try:
            await schema_manager.initialize()
        except DatabaseSchemaError:
            await pool.close()
            raise

        _pool = pool
        _schema_manager = schema_manager
        logger.info(f"Database ready at schema version {schema_manager.current_version}")

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        RuntimeError: If pool hasn't been initialized
    """
    if not _pool and _db_url:
        await init_db()
    if not _pool:
        raise RuntimeError("Database pool is not initialized, call init_db() first")
    return _pool


async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager

    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None


# Export public interface
__all__ = ['init_db', 'get_pool', 'close', 'DatabaseError', 'DatabaseSchemaError', 'SchemaManager']
