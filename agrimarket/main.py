"""
FastAPI application for the marketplace lifecycle API.

``create_app`` assembles the order, booking and ticket routers with the
cross-cutting pieces they share: request correlation, CORS, rate limiting
and the structured error handlers. The module-level ``app`` is what uvicorn
serves.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from agrimarket.api.errors import register_exception_handlers
from agrimarket.api.health import router as health_router
from agrimarket.api.rate_limit import limiter
from agrimarket.api.v1 import bookings_router, orders_router, tickets_router
from agrimarket.core.config import Settings, get_settings
from agrimarket.core.logging import clear_context, configure_logging, get_logger, set_request_id
from agrimarket.database.connection import close_database_connections

configure_logging()
logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logger.info(
        "Lifecycle API starting",
        environment=settings.environment,
        booking_timezone=settings.booking_timezone,
        version=settings.app_version,
    )

    yield

    logger.info("Lifecycle API shutting down")
    await close_database_connections()


async def correlate_request(request: Request, call_next):
    """
    Tag the request with a correlation id and log its outcome.

    A caller-supplied X-Request-ID is reused so traces can span services;
    otherwise a fresh id is generated. The id is echoed on the response.
    """
    request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception as e:
        logger.error(
            "Request failed",
            method=request.method,
            path=request.url.path,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    else:
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response
    finally:
        clear_context()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to build from; defaults to the cached settings

    Returns:
        Configured application with all routers mounted
    """
    settings = settings or get_settings()

    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Order, service booking and support ticket lifecycles "
        "for an agricultural marketplace",
        lifespan=lifespan,
        debug=settings.debug,
    )

    application.state.limiter = limiter
    register_exception_handlers(application)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    application.middleware("http")(correlate_request)

    application.include_router(health_router)
    for router in (orders_router, bookings_router, tickets_router):
        application.include_router(router, prefix=settings.api_v1_prefix)

    return application


app = create_app()
