# authguard/db/session.py
import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from authguard.core.config import settings

logger = logging.getLogger(__name__)

# --- Asynchronous Engine and Session Setup (for FastAPI) ---
fastapi_async_engine: AsyncEngine | None = None
FastAPISessionLocal: async_sessionmaker[AsyncSession] | None = None


def _initialize_fastapi_db_resources_sync() -> None:
    """
    Initialize the async database engine and session maker.
    Called by the lifespan manager.
    """
    global fastapi_async_engine, FastAPISessionLocal

    if fastapi_async_engine is not None:
        logger.info("FastAPI: Asynchronous database resources already initialized.")
        return

    logger.info("FastAPI: Initializing asynchronous database engine and session maker.")
    try:
        db_url = settings.ASYNC_SQLALCHEMY_DATABASE_URL
        if not db_url:
            raise ValueError("ASYNC_SQLALCHEMY_DATABASE_URL is empty after computation.")

        current_engine = create_async_engine(
            db_url,
            pool_pre_ping=True,
            echo=settings.DB_ECHO,
        )
        current_session_local = async_sessionmaker(
            bind=current_engine,
            autoflush=False,
            expire_on_commit=False,
            class_=AsyncSession,
        )
        fastapi_async_engine = current_engine
        FastAPISessionLocal = current_session_local
        logger.info(
            f"FastAPI: Asynchronous database engine ({db_url.split('@')[0].split(':')[0]}) "
            "and session maker configured successfully."
        )
    except Exception as e:
        logger.critical(
            f"CRITICAL: FastAPI: Failed to initialize asynchronous database engine: {e}",
            exc_info=True,
        )
        fastapi_async_engine = None
        FastAPISessionLocal = None
        raise RuntimeError(
            f"FastAPI: Failed to initialize asynchronous database engine during startup: {e}"
        ) from e


async def _dispose_fastapi_db_resources_async() -> None:
    global fastapi_async_engine, FastAPISessionLocal
    if fastapi_async_engine:
        logger.info("FastAPI: Disposing FastAPI asynchronous database engine.")
        await fastapi_async_engine.dispose()
        fastapi_async_engine = None
        FastAPISessionLocal = None
    else:
        logger.info("FastAPI: No FastAPI asynchronous database engine to dispose.")


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Session factory for work that must own its transactions.

    The brute-force guard opens short-lived sessions from here so no
    connection is held across the progressive delay and ledger writes survive
    a cancelled request.
    """
    if FastAPISessionLocal is None:
        logger.critical("FastAPI: FastAPISessionLocal is not initialized.")
        raise RuntimeError(
            "FastAPI: FastAPISessionLocal is not initialized. "
            "Ensure DB resources are initialized via lifespan."
        )
    return FastAPISessionLocal


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            logger.error(
                "FastAPI: Async DB session rolled back due to an exception.", exc_info=True
            )
            raise


# --- FastAPI Lifespan Event Handler Integration ---
async def lifespan_db_manager(_app_instance, event_type: str) -> None:
    lifespan_logger = logging.getLogger("authguard.db.lifespan")

    if event_type == "startup":
        lifespan_logger.info("FastAPI Lifespan: Startup event - Initializing DB resources.")
        _initialize_fastapi_db_resources_sync()

        if fastapi_async_engine is None:
            raise RuntimeError(
                "FastAPI engine failed to initialize during startup and did not raise."
            )
        lifespan_logger.info("FastAPI Lifespan: Testing DB connection.")
        try:
            async with fastapi_async_engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
            lifespan_logger.info("FastAPI Lifespan: Database connection successful on startup.")
        except Exception as e:
            lifespan_logger.error(
                f"FastAPI Lifespan: Database connection test failed: {e}", exc_info=True
            )
            await _dispose_fastapi_db_resources_async()
            raise RuntimeError(f"FastAPI: Database connection test failed on startup: {e}") from e

    elif event_type == "shutdown":
        lifespan_logger.info("FastAPI Lifespan: Shutdown event - Disposing DB resources.")
        await _dispose_fastapi_db_resources_async()
