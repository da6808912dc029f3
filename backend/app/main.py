"""FastAPI application entrypoint and configuration.

This module provides the main FastAPI application factory that configures
JSON logging, sets up CORS middleware, includes the layer and repository
routers, maps errors to ``{"error": ...}`` bodies and exposes a health
check endpoint for monitoring.

The layer service and its shared upstream HTTP client live for the whole
process; they are created in the application lifespan and the client is
closed on shutdown.

Example:
    The application can be run with uvicorn:
        $ uvicorn app.main:app --reload

    Or imported and used programmatically:
        >>> from app.main import app
        >>> # Use app in ASGI server
"""

import contextlib
from collections.abc import AsyncIterator

import fastapi
from fastapi import responses
from fastapi.middleware import cors

from app.api import layers, repos
from app.core import config, logging_setup
from app.core import layers as layer_catalogue
from app.services import adapters, layer_service


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncIterator[None]:
    """Create the process-wide layer service and close its HTTP client."""
    settings = config.get_settings()
    client = adapters.create_http_client(settings)
    app.state.http_client = client
    app.state.layer_service = layer_service.create_layer_service(
        settings, client
    )
    try:
        yield
    finally:
        await client.aclose()


def create_app() -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    Configures logging, includes the layer and repository routers, sets up
    CORS middleware from settings, registers error handlers and adds a
    health check endpoint.

    Returns:
        Configured FastAPI application instance ready for ASGI server.

    Example:
        The app can be used with uvicorn or other ASGI servers:
            >>> app = create_app()
            >>> # Or use the module-level app instance:
            >>> from app.main import app
    """
    settings = config.get_settings()
    logging_setup.configure_logging(settings.log_level)
    app = fastapi.FastAPI(
        title="CamperMap Layers", version="0.1.0", lifespan=lifespan
    )

    app.include_router(layers.router)
    app.include_router(repos.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(layer_catalogue.UnknownLayerError)
    async def unknown_layer(  # type: ignore[misc]
        request: fastapi.Request, exc: layer_catalogue.UnknownLayerError
    ) -> responses.JSONResponse:
        return responses.JSONResponse(
            status_code=404, content={"error": "Layer not found"}
        )

    @app.exception_handler(fastapi.HTTPException)
    async def http_error(  # type: ignore[misc]
        request: fastapi.Request, exc: fastapi.HTTPException
    ) -> responses.JSONResponse:
        return responses.JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    return app


app = create_app()
