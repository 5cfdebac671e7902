"""Database module for managing connections to PostgreSQL / CockroachDB.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle
"""

import logging
import ssl
from typing import Optional, Dict, Any
import backoff
import asyncpg
from urllib.parse import urlparse, parse_qs

from .lib.schema_manager import SchemaManager
from .exceptions import DatabaseError, DatabaseSchemaError, translate_postgres_error

logger = logging.getLogger(__name__)

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None

CONNECTION_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    ConnectionError,
    OSError,
)

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for hosted cluster connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context

def _get_connection_kwargs(db_url: str, use_ssl: bool = False) -> Dict[str, Any]:
    """Get connection kwargs from database URL.
    
    Args:
        db_url: Database connection URL
        use_ssl: Whether to attach a verifying TLS context
        
    Returns:
        Dict of connection parameters
    """
    parsed = urlparse(db_url)
    params = parse_qs(parsed.query)
    
    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '60000',  # 1 minute
        }
    }
    if use_ssl:
        kwargs['ssl'] = _get_ssl_context()
    
    # Add any additional params from URL
    for key, values in params.items():
        if key not in ('sslmode', 'ssl'):  # SSL is driven by settings
            kwargs[key] = values[0]
            
    return kwargs

def _database_name(db_url: str) -> str:
    parsed = urlparse(db_url)
    db_name = parsed.path.strip('/')
    if not db_name:
        params = parse_qs(parsed.query)
        db_name = params.get('database', ['defaultdb'])[0]
    return db_name

@backoff.on_exception(backoff.expo, CONNECTION_ERRORS, max_tries=5)
async def create_database_if_not_exists(db_url: str, use_ssl: bool = False) -> None:
    """Create the database if it doesn't exist.
    
    Args:
        db_url: Database connection URL
        use_ssl: Whether to connect over TLS
        
    Raises:
        Exception: If database creation fails after retries
    """
    db_name = _database_name(db_url)
    if db_name in ('defaultdb', 'postgres'):
        return
        
    try:
        parsed = urlparse(db_url)
        base_url = parsed._replace(path='/defaultdb').geturl()
        logger.info(f"Connecting to defaultdb to create {db_name} if needed")
        
        conn = await asyncpg.connect(base_url, **_get_connection_kwargs(base_url, use_ssl))
        try:
            exists = await conn.fetchval(
                'SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = $1)',
                db_name
            )
            if not exists:
                await conn.execute(f'CREATE DATABASE "{db_name}"')
                logger.info(f"Created database {db_name}")
        finally:
            await conn.close()
            
    except Exception as e:
        logger.error(f"Error creating database: {e}")
        raise

@backoff.on_exception(backoff.expo, CONNECTION_ERRORS, max_tries=5)
async def init_db(db_url: Optional[str] = None, force_recreate: bool = False) -> None:
    """Initialize the database connection pool and schema.
    
    Args:
        db_url: Optional database URL. If not provided, will use settings.
        force_recreate: If True, drop and recreate all tables
        
    Raises:
        ValueError: If database URL is not provided
        Exception: If initialization fails after retries
    """
    global _pool, _schema_manager
    
    try:
        # Import here to avoid circular imports
        from config import settings_conf
        
        url = db_url or settings_conf.get('db_url')
        if not url:
            raise ValueError("Database URL not provided")
        use_ssl = settings_conf['db_ssl']
        
        await create_database_if_not_exists(url, use_ssl)
        
        _pool = await asyncpg.create_pool(
            url,
            min_size=settings_conf['db_min_pool_size'],
            max_size=settings_conf['db_max_pool_size'],
            max_queries=10000,   # Reset connection after this many queries
            max_inactive_connection_lifetime=300.0,  # 5 minutes
            command_timeout=60.0,
            **_get_connection_kwargs(url, use_ssl)
        )
        
        _schema_manager = SchemaManager(_pool)
        await _schema_manager.initialize(force_recreate=force_recreate)
        
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
    if not _pool:
        await init_db()
    if not _pool:
        raise RuntimeError("Failed to initialize database pool")
    return _pool

async def ping() -> bool:
    """Check that the database answers a trivial query."""
    if not _pool:
        return False
    try:
        async with _pool.acquire() as conn:
            return await conn.fetchval('SELECT 1') == 1
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False

async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager
    
    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None

# Conflicts between concurrent transactions that are safe to retry from scratch
TRANSIENT_ERRORS = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
)

retry_transient = backoff.on_exception(backoff.expo, TRANSIENT_ERRORS, max_tries=3)

# Export public interface
__all__ = [
    'init_db',
    'get_pool',
    'ping',
    'close',
    'retry_transient',
    'TRANSIENT_ERRORS',
    'DatabaseError',
    'DatabaseSchemaError',
    'translate_postgres_error',
]
