"""
Orders Microservice
Order intake, stock-safe checkout, order lifecycle and public tracking.
"""

import os
import subprocess
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.core import RequestLoggingMiddleware, ServiceHealth, get_logger, setup_logging
from storefront_orders.api.routes import router as orders_router
from storefront_orders.application.errors import (
    IdentifierExhausted,
    IllegalTransition,
    InsufficientStock,
    NotFound,
    OrderCoreError,
    StoreUnavailable,
    ValidationFailed,
)
from storefront_orders.application.events import EventDispatcher, default_dispatcher
from storefront_orders.core_settings import Settings, get_settings
from storefront_orders.infrastructure.db import Database

SERVICE_NAME = "orders-service"
SERVICE_DESCRIPTION = "Order intake and inventory transaction service"
SERVICE_DIR = os.path.join(os.path.dirname(__file__), "..")

logger = get_logger(__name__)


def run_migrations() -> None:
    logger.info("Running database migrations")
    result = subprocess.run(
        ["alembic", "upgrade", "head"],
        cwd=SERVICE_DIR,
        capture_output=True,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        logger.warning(f"Migration output: {result.stderr}")
    else:
        logger.info("Database migrations completed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    logger.info(f"Starting {SERVICE_NAME} version {settings.SERVICE_VERSION}")
    if settings.RUN_MIGRATIONS:
        run_migrations()
    else:
        app.state.database.init_models()
        logger.info("Database models initialized")
    yield
    logger.info(f"Shutting down {SERVICE_NAME}")
    app.state.database.dispose()


def _error(status_code: int, exc: OrderCoreError, **body) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": exc.message, **body})


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationFailed)
    async def validation_failed(request: Request, exc: ValidationFailed):
        return _error(422, exc, errors=exc.errors)

    @app.exception_handler(InsufficientStock)
    async def insufficient_stock(request: Request, exc: InsufficientStock):
        return _error(409, exc, shortfalls=[s.as_dict() for s in exc.shortfalls])

    @app.exception_handler(IllegalTransition)
    async def illegal_transition(request: Request, exc: IllegalTransition):
        return _error(409, exc, current=exc.current, attempted=exc.attempted)

    @app.exception_handler(NotFound)
    async def not_found(request: Request, exc: NotFound):
        return _error(404, exc)

    @app.exception_handler(IdentifierExhausted)
    async def identifier_exhausted(request: Request, exc: IdentifierExhausted):
        logger.error(exc.message)
        return _error(503, exc, retryable=True)

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable(request: Request, exc: StoreUnavailable):
        logger.error(exc.message)
        return _error(503, exc, retryable=True)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(
        service_name=SERVICE_NAME,
        level=settings.LOG_LEVEL,
        version=settings.SERVICE_VERSION,
        environment=os.getenv("ENVIRONMENT", "development"),
    )

    app = FastAPI(
        title=SERVICE_NAME,
        description=SERVICE_DESCRIPTION,
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.state.settings = settings
    app.state.database = database or Database.from_settings(settings)
    app.state.dispatcher = dispatcher or default_dispatcher()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(app)

    health = ServiceHealth(SERVICE_NAME, lambda: app.state.database.engine, settings.SERVICE_VERSION)
    app.include_router(health.create_health_router())
    app.include_router(orders_router)

    @app.get("/")
    async def root():
        return {
            "service": SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "status": "running",
            "docs": "/api/docs",
        }

    return app


app = create_app()
