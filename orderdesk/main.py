import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from orderdesk.config import settings
from orderdesk.db import PostgresStore, close_pool, get_pool, init_schema
from orderdesk.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    field_errors,
)
from orderdesk.memory_store import InMemoryStore
from orderdesk.metrics import get_metrics_bytes, get_metrics_content_type
from orderdesk.redis_client import close_redis
from orderdesk.routes import dashboard, orders, reference
from orderdesk.store import OrderStore

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    owns_pool = app.state.store is None
    if owns_pool:
        if settings.store_backend == "memory":
            logger.warning("STORE_BACKEND=memory: orders are kept in process memory only")
            app.state.store = InMemoryStore(lock_timeout=settings.order_lock_timeout_ms / 1000)
            owns_pool = False
        else:
            pool = await get_pool()
            await init_schema(pool)
            app.state.store = PostgresStore(pool, lock_timeout_ms=settings.order_lock_timeout_ms)
    yield
    await close_redis()
    if owns_pool:
        await close_pool()


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc)})


async def invalid_transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": str(exc),
            "currentStatus": exc.current_status,
            "attemptedStatus": exc.attempted_status,
            "validTransitions": exc.valid_transitions,
        },
    )


async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": exc.message, "details": exc.details})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request data", "details": field_errors(exc.errors())},
    )


async def conflict_handler(request: Request, exc: ConcurrencyConflictError) -> JSONResponse:
    return JSONResponse(
        status_code=409,
        content={"error": "Order is being updated by another request, re-read and retry"},
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


def create_app(store: OrderStore | None = None) -> FastAPI:
    """Build the API. Without a store one is created at startup from settings.store_backend."""
    app = FastAPI(title="Order Desk", lifespan=lifespan)
    app.state.store = store
    app.include_router(orders.router)
    app.include_router(dashboard.router)
    app.include_router(reference.router)

    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(InvalidTransitionError, invalid_transition_handler)
    app.add_exception_handler(ValidationError, validation_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(ConcurrencyConflictError, conflict_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus scrape endpoint: order lifecycle counters."""
        return Response(
            content=get_metrics_bytes(),
            media_type=get_metrics_content_type(),
        )

    return app


app = create_app()
