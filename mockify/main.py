import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mockify.api import render
from mockify.config import Settings, get_settings
from mockify.constants.error_codes import is_retryable
from mockify.exceptions import MockifyError
from mockify.render.driver import RenderLoopDriver
from mockify.render.encoder import EncoderHost
from mockify.services.job_store import JobStore
from mockify.services.render_service import RenderService

logger = logging.getLogger(__name__)


def _http_error_code(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_ERROR",
    }
    return mapping.get(status_code, "HTTP_ERROR")


def _error_body(code: str, message: str) -> dict:
    return {
        "code": code,
        "message": message,
        "retryable": is_retryable(code),
    }


async def mockify_exception_handler(request: Request, exc: MockifyError) -> JSONResponse:
    info = exc.to_error_info()
    return JSONResponse(
        status_code=exc.status_code,
        content=info.model_dump(exclude_none=True),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle FastAPI request validation errors (422)."""
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"
    return JSONResponse(status_code=422, content=_error_body("VALIDATION_ERROR", message))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(_http_error_code(exc.status_code), str(exc.detail)),
    )


# Global exception handler to ensure errors return proper JSON
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(status_code=500, content=_error_body("INTERNAL_ERROR", "Internal server error"))


def create_app(settings: Settings | None = None, encoder_host: EncoderHost | None = None) -> FastAPI:
    """Build the API with its own job store and render service."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        Path(settings.upload_dir).mkdir(parents=True, exist_ok=True)
        Path(settings.render_output_dir).mkdir(parents=True, exist_ok=True)
        yield
        # Shutdown
        await app.state.render_service.wait_all()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    store = JobStore(ttl_seconds=settings.job_retention_seconds)
    driver = RenderLoopDriver(store, encoder_host=encoder_host, settings=settings)
    app.state.settings = settings
    app.state.job_store = store
    app.state.render_service = RenderService(store, driver=driver, settings=settings)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(MockifyError, mockify_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # Routers
    app.include_router(render.router, prefix="/api", tags=["render"])
    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("mockify.main:app", host="0.0.0.0", port=8000)
