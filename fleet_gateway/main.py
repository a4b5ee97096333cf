"""
FastAPI application entry point for the fleet gateway.

This is the main application file that initializes the FastAPI app,
configures logging, registers error handlers and routes. The actual
business logic is implemented in separate modules (services, fetchers,
aggregators, repository).
"""
import logging
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config_loader import config
from .errors import ApiError
from .routes import database, router, upstream_client

# Configure logging for the application
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    """
    FastAPI lifespan handler.

    Creates the alert tables on startup (a database outage is logged, not
    fatal, so report endpoints keep working) and closes the upstream session
    and database pool on shutdown.
    """
    _ = app
    logger.info("Starting fleet gateway")
    logger.info("Upstream URL: %s", config.upstream_base_url)
    logger.info("Upstream concurrency: %s", config.upstream_concurrency)
    logger.info("Server: %s:%s", config.server_host, config.server_port)
    try:
        await database.create_schema()
        logger.info("Database schema ready (%s)", database.dialect)
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Database unavailable at startup: %s", exc)
    try:
        yield
    finally:
        await upstream_client.close()
        await database.dispose()
        logger.info("Shutting down fleet gateway")


# Initialize FastAPI application
app = FastAPI(
    title="Fleet Gateway",
    version="1.0.0",
    description="Fleet telemetry proxy with coalesced caching, reports and alert workflow state",
    lifespan=app_lifespan,
)

# Register routes
app.include_router(router)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Render gateway errors as ``{ok: false, error, ...}``."""
    _ = request
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_body()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies are client errors with the same envelope as every other failure."""
    _ = request
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": "invalid_request", "detail": jsonable_encoder(exc.errors())},
    )


@app.middleware("http")
async def add_noindex_header(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """
    Middleware that adds X-Robots-Tag header to every response.

    Keeps the dashboard API out of public search listings while still
    serving legitimate clients normally.
    """
    response = await call_next(request)
    response.headers["X-Robots-Tag"] = "noindex, nofollow"
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=config.server_host,
        port=config.server_port,
        log_level="info",
    )
