import logging
from contextlib import ExitStack
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from corecatalog import __version__
from corecatalog.api.catalogs import router as catalogs_router
from corecatalog.core.config import ServiceConfig, load_config
from corecatalog.core.dependencies import STORE_HANDLE, HandleRegistry, build_platform, open_store
from corecatalog.domain.errors import (
    IntegrityError,
    NetworkError,
    PreconditionFailed,
    SignatureError,
    ValidationError,
)
from corecatalog.services.catalogs import CatalogService
from corecatalog.services.platform import Platform

logger = logging.getLogger(__name__)


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app(config: Optional[ServiceConfig] = None, platform: Optional[Platform] = None) -> FastAPI:
    """
    Build the download center application.

    ``platform`` replaces the httpx-backed capabilities (tests pass fakes).
    """
    config = config or load_config()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    app = FastAPI(
        title="Core catalog download center",
        version=__version__,
        description="Discovers, version-checks and installs cores and systems from remote catalogs.",
    )

    @app.on_event("startup")
    async def startup_event() -> None:
        """
        Open the catalog store and the shared HTTP client.
        """
        app.state.registry = HandleRegistry(lambda name: open_store(config.data_dir))
        app.state.scopes = ExitStack()
        app.state.store = app.state.scopes.enter_context(app.state.registry.acquire(STORE_HANDLE))

        app.state.http_client = None
        active_platform = platform
        if active_platform is None:
            app.state.http_client = httpx.AsyncClient(
                timeout=config.http_timeout_seconds,
                follow_redirects=True,
            )
            active_platform = build_platform(config, app.state.http_client)

        app.state.catalog_service = CatalogService(app.state.store, active_platform, config)
        logger.info(f"Download center ready (data dir: {config.data_dir})")

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        app.state.scopes.close()
        app.state.registry.close_all()
        if app.state.http_client is not None:
            await app.state.http_client.aclose()

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(422, exc)

    @app.exception_handler(NetworkError)
    @app.exception_handler(IntegrityError)
    @app.exception_handler(SignatureError)
    async def upstream_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Upstream error on {request.url.path}: {exc}")
        return _error_response(502, exc)

    @app.exception_handler(PreconditionFailed)
    async def precondition_error_handler(request: Request, exc: PreconditionFailed) -> JSONResponse:
        return _error_response(409, exc)

    @app.get("/health")
    async def health() -> dict:
        """
        Lightweight health check endpoint.
        """
        return {"status": "ok"}

    app.include_router(catalogs_router, prefix="/catalogs", tags=["catalogs"])
    return app


if __name__ == "__main__":
    """
    Allow running `python -m corecatalog.main` to start the Uvicorn
    development server.
    """
    import uvicorn

    uvicorn.run(
        "corecatalog.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
