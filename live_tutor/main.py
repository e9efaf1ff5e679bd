"""Live tutor FastAPI application entry point."""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from live_tutor.routers import csrf, live_config, usage
from live_tutor.services.transcript_store import close_pool

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    try:
        from live_tutor.observability.tracing import setup_tracing
        setup_tracing(service_name="live-tutor")
        logger.info("OTEL tracing configured")
    except Exception as e:
        logger.warning(f"OTEL tracing not configured: {e}")

    # Load plan limits before the first request needs them
    await usage.get_ledger().catalog.refresh()

    yield

    from live_tutor.observability.tracing import shutdown_tracing
    shutdown_tracing()
    await close_pool()
    logger.info("Live tutor backend shutting down")


app = FastAPI(
    title="Live Tutor Backend",
    description=(
        "Usage metering and configuration for realtime tutoring sessions "
        "against the Gemini Live endpoint."
    ),
    version="0.1.0",
    lifespan=lifespan,
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

allowed_origins = [
    "http://localhost:3000",
    os.environ.get("FRONTEND_URL", "http://localhost:3000"),
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(csrf.router)
app.include_router(usage.router)
app.include_router(live_config.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/")
async def root() -> dict:
    return {
        "service": "live-tutor",
        "docs": "/docs",
        "health": "/health",
    }
