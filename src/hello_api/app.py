"""
FastAPI application factory for the Hello World API.
"""
import platform
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

from hello_api import __version__
from hello_api.config import Settings
from hello_api.errors import http_exception_handler
from hello_api.middleware import (
    ErrorHandlerMiddleware,
    RequestLoggerMiddleware,
    RequestTimeoutMiddleware,
)
from hello_api.routes import router

logger = structlog.get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application for the given settings.

    Args:
        settings: Configuration to use (default: Settings())

    Returns:
        FastAPI app with the route table and request pipeline installed
    """
    if settings is None:
        settings = Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "application started",
            app_name=settings.app_name,
            env=settings.env,
            python=platform.python_version(),
            version=__version__,
        )
        yield
        logger.info("application stopped", app_name=settings.app_name)

    # No docs routes and no slash redirects: every path but /hello is a 404.
    app = FastAPI(
        title="Hello World API",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        redirect_slashes=False,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.include_router(router)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    # Outermost first; add_middleware wraps, so register in reverse.
    stages = [
        (ErrorHandlerMiddleware, {}),
        (RequestTimeoutMiddleware, {"timeout": settings.request_timeout}),
        (RequestLoggerMiddleware, {"max_body_size": settings.max_body_size}),
    ]
    for middleware_class, options in reversed(stages):
        app.add_middleware(middleware_class, **options)

    return app
