"""
FastAPI application.

The app owns one RAGRuntime for its whole life: components are initialized
in the lifespan handler and shared by every request. If a store fails to
come up the server still starts; requests that need it get 503 until it is
available.

Errors raised by the core are mapped to responses here:

    InvalidRequestError / bad body  -> 400
    missing or wrong API key        -> 401
    DocumentNotFoundError           -> 404
    ServiceUnavailableError         -> 503
    UpstreamProviderError           -> 500 (with the provider's message)
    any other RAGProxyError         -> 500
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ragproxy import __version__
from ragproxy.api.routes import gemini_router, management_router, query_router
from ragproxy.api.schemas import ErrorResponse
from ragproxy.config.logging import get_logger
from ragproxy.config.settings import Settings, get_settings
from ragproxy.jobs.sync_docs import GitHubDocsSync
from ragproxy.query import LLM_FAILURE_MESSAGE, describe_validation_error
from ragproxy.rag.components import RAGRuntime
from ragproxy.rag.errors import (
    DocumentNotFoundError,
    InvalidRequestError,
    RAGProxyError,
    ServiceUnavailableError,
    StoreNotReadyError,
    UpstreamProviderError,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime: RAGRuntime = app.state.runtime
    settings: Settings = app.state.settings

    await runtime.initialize()

    sync_task = None
    if settings.sync.enabled:
        sync = GitHubDocsSync(settings.sync, runtime.documents)
        sync_task = asyncio.create_task(sync.run_periodically())
        logger.info(f"Scheduled document sync every {settings.sync.interval_seconds}s")

    try:
        yield
    finally:
        try:
            if sync_task is not None:
                await _stop_sync(sync_task)
        finally:
            await runtime.shutdown()


async def _stop_sync(sync_task: asyncio.Task) -> None:
    """Cancel the periodic sync; a task that already died is logged, not raised."""
    sync_task.cancel()
    try:
        await sync_task
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.error(f"Document sync task ended with an error: {e}", exc_info=True)


def create_app(settings: Settings | None = None, runtime: RAGRuntime | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Application settings (default: global settings)
        runtime: Component runtime (default: built from settings, non-strict)
    """
    settings = settings or get_settings()
    runtime = runtime or RAGRuntime(settings, strict=False)

    app = FastAPI(title="RAG Proxy", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.runtime = runtime

    prefix = f"/api/{settings.api.version}/rag"
    app.include_router(management_router, prefix=prefix)
    app.include_router(query_router, prefix=prefix)
    app.include_router(gemini_router, prefix=f"/api/{settings.api.version}")

    @app.get("/health", tags=["health"])
    async def health():
        runtime: RAGRuntime = app.state.runtime
        return {"status": "ok" if runtime.is_ready else "degraded", "components": runtime.status()}

    register_exception_handlers(app)
    return app


def _error(status_code: int, error: str, details: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=error, details=details or None)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def handle_http(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, f"Bad Request: {describe_validation_error(exc)}")

    @app.exception_handler(InvalidRequestError)
    async def handle_invalid_request(request: Request, exc: InvalidRequestError):
        return _error(status.HTTP_400_BAD_REQUEST, f"Bad Request: {exc}")

    @app.exception_handler(DocumentNotFoundError)
    async def handle_not_found(request: Request, exc: DocumentNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, "Not Found: Document not found.")

    @app.exception_handler(ServiceUnavailableError)
    async def handle_unavailable(request: Request, exc: ServiceUnavailableError):
        logger.error(f"{request.method} {request.url.path} unavailable: {exc}")
        if isinstance(exc, StoreNotReadyError):
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Service Unavailable: RAG service is not ready.")
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "Service Unavailable", str(exc))

    @app.exception_handler(UpstreamProviderError)
    async def handle_upstream(request: Request, exc: UpstreamProviderError):
        details = str(exc.cause) if exc.cause else str(exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, LLM_FAILURE_MESSAGE, details)

    @app.exception_handler(RAGProxyError)
    async def handle_internal(request: Request, exc: RAGProxyError):
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error", str(exc))
