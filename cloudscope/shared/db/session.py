import ssl
from typing import Any, Dict

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool, StaticPool

from cloudscope.shared.core.config import Settings
from cloudscope.shared.core.exceptions import ConfigurationError

logger = structlog.get_logger()


def _postgres_connect_args(settings: Settings) -> Dict[str, Any]:
    """
    SSL Context: Configurable SSL modes for different environments.
    Options: disable, require, verify-ca, verify-full
    """
    ssl_mode = settings.DB_SSL_MODE.lower()
    connect_args: Dict[str, Any] = {"statement_cache_size": 0}  # Required for Supavisor

    if ssl_mode == "disable":
        logger.warning("database_ssl_disabled",
                       msg="SSL disabled - INSECURE, do not use in production!")
        connect_args["ssl"] = False

    elif ssl_mode == "require":
        ssl_context = ssl.create_default_context()
        if settings.DB_SSL_CA_CERT_PATH:
            ssl_context.load_verify_locations(cafile=settings.DB_SSL_CA_CERT_PATH)
            ssl_context.verify_mode = ssl.CERT_REQUIRED
            logger.info("database_ssl_require_verified", ca_cert=settings.DB_SSL_CA_CERT_PATH)
        else:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
            logger.warning("database_ssl_require_insecure",
                           msg="SSL enabled but CA verification skipped.")
        connect_args["ssl"] = ssl_context

    elif ssl_mode in ("verify-ca", "verify-full"):
        if not settings.DB_SSL_CA_CERT_PATH:
            raise ConfigurationError(f"DB_SSL_CA_CERT_PATH required for ssl_mode={ssl_mode}")
        ssl_context = ssl.create_default_context(cafile=settings.DB_SSL_CA_CERT_PATH)
        ssl_context.verify_mode = ssl.CERT_REQUIRED
        ssl_context.check_hostname = (ssl_mode == "verify-full")
        connect_args["ssl"] = ssl_context
        logger.info("database_ssl_verified", mode=ssl_mode, ca_cert=settings.DB_SSL_CA_CERT_PATH)

    else:
        raise ConfigurationError(f"Invalid DB_SSL_MODE: {ssl_mode}. Use: disable, require, verify-ca, verify-full")

    return connect_args


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """
    Builds the async engine (connection pool manager) for the scan history store.

    SQLite is supported for local development and tests; in-memory databases
    use StaticPool so every session sees the same data.
    """
    url = settings.DATABASE_URL
    if not url:
        raise ConfigurationError("DATABASE_URL is not set. Check your .env file.")

    engine_args: Dict[str, Any] = {"echo": settings.DEBUG}

    if url.startswith("sqlite"):
        engine_args["connect_args"] = {"check_same_thread": False}
        engine_args["poolclass"] = StaticPool if ":memory:" in url else NullPool
    else:
        engine_args["connect_args"] = _postgres_connect_args(settings)
        engine_args["pool_pre_ping"] = True
        engine_args["pool_recycle"] = 300  # Recycle every 5 min for Supavisor
        if settings.TESTING:
            engine_args["poolclass"] = NullPool
        else:
            engine_args["pool_size"] = settings.DB_POOL_SIZE
            engine_args["max_overflow"] = settings.DB_MAX_OVERFLOW

    return create_async_engine(url, **engine_args)


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: objects remain accessible after commit without re-querying
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
