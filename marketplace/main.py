"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.database import get_db
from marketplace.errors import MarketplaceError
from marketplace.middleware import (
    BodySizeLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from marketplace.redis import close_pool
from marketplace.routers import (
    admin,
    auth,
    jobs,
    proposals,
    reviews,
    services,
    support,
    uploads,
    users,
)
from marketplace.services import notifications, storage

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    logger.info("Starting marketplace API (env=%s)", settings.env)

    yield

    # Let in-flight notifications and blob cleanups finish before the loop goes away
    await notifications.drain()
    await storage.drain()
    await close_pool()


app = FastAPI(
    title="Service Marketplace",
    description="Customers post jobs, providers bid, and both sides review each other",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.kind},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"detail": errors, "error": "validation_error"},
    )


# CORS - restrict to configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware (order matters: the last one added is outermost)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    BodySizeLimitMiddleware,
    max_bytes=settings.max_body_bytes,
    upload_max_bytes=settings.max_upload_bytes,
)
app.add_middleware(RequestLoggingMiddleware)

# Routers
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(jobs.router)
app.include_router(proposals.router)
app.include_router(reviews.router)
app.include_router(services.router)
app.include_router(support.router)
app.include_router(uploads.router)
app.include_router(admin.router)


@app.get("/health")
async def health(db: AsyncSession = Depends(get_db)) -> JSONResponse:
    """Liveness plus a database round trip; 503 when the database is unreachable."""
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.exception("Health check: database unavailable")
        return JSONResponse(
            status_code=503, content={"status": "degraded", "database": "unavailable"}
        )
    return JSONResponse(content={"status": "ok", "database": "ok"})
