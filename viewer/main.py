"""FastAPI server hosting the protocol viewer's live session."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
import redis.asyncio as redis

from config import config
from logging_config import setup_logging
from routers.health import router as health_router, set_health_dependencies
from routers.session import router as session_router, set_interactive_demo, set_session
from services.demo_session import DemoSession
from services.interactive_demo import InteractiveDemo
from services.recovery import RecoveryFetcher
from stores.ledger_client import LedgerClient
from stores.pubsub import LedgerPubSub
from stores.stream_transport import ReconnectBackoff, SseStreamTransport

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


# =============================================================================
# Services (initialized in lifespan)
# =============================================================================

_redis_client = None
_ledger_client = None
_session = None
_interactive_demo = None
_interactive_session = None


def _build_transport(ledger_client: LedgerClient):
    """Create the live feed transport selected by config.TRANSPORT."""
    global _redis_client
    backoff = ReconnectBackoff.from_settings(config.reconnect)

    if config.TRANSPORT == "redis":
        _redis_client = redis.from_url(config.REDIS_URL, decode_responses=False)
        logger.info(
            f"Following game {config.FOLLOW_GAME_ID} hand {config.FOLLOW_HAND_ID} via Redis"
        )
        return LedgerPubSub(
            _redis_client,
            game_id=config.FOLLOW_GAME_ID,
            hand_id=config.FOLLOW_HAND_ID,
            backoff=backoff,
        )

    if config.TRANSPORT != "sse":
        logger.warning(f"Unknown TRANSPORT {config.TRANSPORT!r}, using sse")
    return SseStreamTransport(ledger_client.demo_stream_url(), backoff=backoff)


async def _init_services():
    global _ledger_client, _session, _interactive_demo, _interactive_session

    _ledger_client = LedgerClient(config.LEDGER_URL, timeout=config.REQUEST_TIMEOUT_SECONDS)
    recovery = RecoveryFetcher(_ledger_client)

    _session = DemoSession(_build_transport(_ledger_client), recovery)
    set_session(_session)

    _interactive_demo = InteractiveDemo(_ledger_client)
    _interactive_session = DemoSession(None, recovery)
    set_interactive_demo(_interactive_demo, _interactive_session)

    set_health_dependencies(redis_client=_redis_client, session=_session)

    if config.AUTO_CONNECT:
        _session.start()


async def _shutdown_services():
    """Gracefully shut down all services."""
    if _interactive_demo:
        await _interactive_demo.aclose()

    for session in (_interactive_session, _session):
        if session:
            await session.aclose()

    if _ledger_client:
        await _ledger_client.aclose()

    if _redis_client:
        await _redis_client.aclose()
        logger.info("Redis connection closed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for async service initialization."""
    await _init_services()
    logger.info(
        f"Protocol viewer started (environment={config.ENVIRONMENT}, "
        f"ledger={config.LEDGER_URL}, transport={config.TRANSPORT})"
    )

    yield

    logger.info("Shutdown initiated...")
    try:
        await _shutdown_services()
    except asyncio.CancelledError:
        pass
    logger.info("Shutdown complete")


app = FastAPI(
    title="Protocol Viewer",
    debug=config.DEBUG,
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(session_router)


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting protocol viewer on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
