"""FastAPI application factory"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from formbank.api.middleware import AccessLogMiddleware, RequestContextMiddleware
from formbank.api.v1 import admin, checks, credit
from formbank.config import settings
from formbank.infrastructure.clients.wallet import HttpTransferGateway
from formbank.infrastructure.database.repositories import LedgerStore
from formbank.infrastructure.database.session import SessionLocal, init_db
from formbank.infrastructure.observability.logging import setup_logging
from formbank.workflows.checks import CheckService

# Setup structured logging
setup_logging(settings.log_level)


async def resume_scheduled_legs() -> None:
    """Pick up targeted-check principal legs interrupted by the last shutdown"""
    db = SessionLocal()
    try:
        resumed = await CheckService(LedgerStore(db), HttpTransferGateway()).resume_scheduled_legs()
        logging.info("Scheduled check legs resumed", extra={"resumed": resumed})
    except Exception as e:
        logging.error(f"Resuming scheduled check legs failed: {e}")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    # Not cancelled on shutdown: a leg interrupted mid-transfer is flagged on the next start
    if settings.resume_legs_on_startup:
        app.state.resume_task = asyncio.create_task(resume_scheduled_legs())
    yield


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="FormBank",
        description="Digipog micro-credit and check service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestContextMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(credit.router, prefix="/v1", tags=["credit"])
    app.include_router(checks.router, prefix="/v1", tags=["checks"])
    app.include_router(admin.router, prefix="/v1", tags=["admin"])

    return app


app = create_app()
