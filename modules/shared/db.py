from contextlib import asynccontextmanager

import asyncpg
import logging

from .errors import InfrastructureError

logger = logging.getLogger(__name__)

# Database connection pool (asyncpg pool)
db_pool = None


async def init_db(database_url: str):
    """
    Initialize asynchronous database connection pool.
    This function should be called once at application startup.
    """
    global db_pool
    if not database_url:
        logger.error("DATABASE_URL is not set.")
        raise RuntimeError("DATABASE_URL is not set.")
    try:
        logger.info("Initializing database connection pool...")
        db_pool = await asyncpg.create_pool(
            dsn=database_url,
            min_size=1,
            max_size=20,
            command_timeout=60,
        )
        logger.info("Database connection pool initialized successfully.")
    except Exception as e:
        logger.exception(f"Error initializing database: {str(e)}")
        raise


async def close_db():
    """
    Close the database connection pool.
    This function should be called once at application shutdown.
    """
    global db_pool
    if db_pool:
        logger.info("Closing database connection pool...")
        await db_pool.close()
        db_pool = None
        logger.info("Database connection pool closed.")


@asynccontextmanager
async def get_db_connection():
    """
    Asynchronous context manager for acquiring and releasing database connections from the pool.
    Use with 'async with get_db_connection() as conn:'
    """
    if db_pool is None:
        logger.error("Database connection pool is not initialized. Call init_db() first.")
        raise InfrastructureError("Database connection pool is not initialized")

    conn = await db_pool.acquire()
    try:
        yield conn
    finally:
        await db_pool.release(conn)


async def execute_query(sql, params=None, fetch_one=False):
    """
    Execute an asynchronous SQL query and return results.
    Note: Use $1, $2, ... as placeholders in your SQL queries for parameters (not %s or %(name)s).
    Driver failures are re-raised as InfrastructureError.
    """
    logger.debug(f"Executing SQL query: {sql.strip().splitlines()[0][:100]}... | Params: {params}")
    try:
        async with get_db_connection() as conn:
            if fetch_one:
                return await conn.fetchrow(sql, *(params or []))
            return await conn.fetch(sql, *(params or []))
    except (asyncpg.PostgresError, OSError) as e:
        logger.exception(f"Database query error: {str(e)}")
        raise InfrastructureError("Database query failed") from e


async def execute_script(sql):
    """Run a multi-statement script inside one transaction."""
    try:
        async with get_db_connection() as conn:
            async with conn.transaction():
                await conn.execute(sql)
    except (asyncpg.PostgresError, OSError) as e:
        logger.exception(f"Database script error: {str(e)}")
        raise InfrastructureError("Database script failed") from e
