"""
Parted Euro Backend
FastAPI application entry point

- Shipping quotes across AusPost and Interparcel
- Stripe hosted checkout and webhook settlement into Xero
- Admin cash orders and fulfilment updates
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from partedeuro import __version__
from partedeuro.api.routes import api_router
from partedeuro.core.circuit_breaker import get_all_circuit_breakers
from partedeuro.core.config import settings
from partedeuro.core.database import AsyncSessionLocal
from partedeuro.core.error_handler import register_error_handlers
from partedeuro.core.http_client import close_http_client
from partedeuro.core.rate_limit import limiter, rate_limit_exceeded_handler
from partedeuro.core.redis_client import close_redis
from partedeuro.services import email_hooks, xero_client

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"{settings.APP_NAME} starting ({settings.ENVIRONMENT})")

    yield

    # Close HTTP clients to prevent connection leaks
    await close_http_client()
    if xero_client._client is not None:
        await xero_client._client.close()
    provider = getattr(email_hooks._service, "provider", None)
    if provider is not None and hasattr(provider, "close"):
        await provider.close()
    await close_redis()
    logger.info("HTTP clients and Redis closed")


app = FastAPI(
    lifespan=lifespan,
    title="Parted Euro API",
    description="Shipping quotes, checkout and order settlement for Parted Euro.",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check with a DB ping. Returns 503 if the database is unreachable."""
    health_status = {
        "status": "healthy",
        "database": "unknown",
        "carriers": {name: cb.get_metrics()["state"] for name, cb in get_all_circuit_breakers().items()},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}: {str(e)[:100]}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)

    return health_status
