"""
Render Service - FastAPI application for HTML to PDF conversion.

Provides endpoints for converting inline HTML, stored HTML files and the
bundled test document to PDF using a shared Playwright/Chromium engine.
"""

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from io import BytesIO
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from . import __version__
from .config import RenderSettings, get_settings, validate_config_on_startup
from .converter import HtmlToPdfConverter
from .engine import RenderEngineManager
from .errors import (
    ConversionError,
    EmptySourceError,
    EngineLaunchError,
    InvalidSourceError,
    SourceNotFoundError,
)
from .helpers import pdf_filename, resolve_document_path
from .logger import setup_logging
from .models import (
    ContentConversionRequest,
    ErrorResponse,
    FileConversionRequest,
    HealthResponse,
)
from .session import ConversionResult

logger = logging.getLogger(__name__)

SERVICE_NAME = "HTML to PDF Converter"
DISCONNECT_POLL_SECONDS = 0.5
RETRY_AFTER_SECONDS = 5

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid options or source"},
    404: {"model": ErrorResponse, "description": "HTML file not found"},
    500: {"model": ErrorResponse, "description": "Conversion failed"},
    503: {"model": ErrorResponse, "description": "Browser unavailable or service overloaded"},
    504: {"model": ErrorResponse, "description": "Document load or conversion timed out"},
}


# ============================================================================
# Helpers
# ============================================================================

def _pdf_response(result: ConversionResult, filename: str) -> StreamingResponse:
    return StreamingResponse(
        BytesIO(result.data),
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(result.byte_length),
        },
    )


async def _convert_until_disconnected(request: Request, conversion) -> ConversionResult:
    """
    Run a conversion, cancelling it if the client goes away.

    Cancelling the conversion task closes its rendering session, so an
    abandoned request does not hold a browser context or a render slot.
    """
    task = asyncio.ensure_future(conversion)
    try:
        while not task.done():
            await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if not task.done() and await request.is_disconnected():
                logger.warning("Client disconnected, cancelling conversion")
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
                raise HTTPException(status_code=499, detail="Client closed request")
        return task.result()
    finally:
        if not task.done():
            task.cancel()
            await asyncio.wait({task})


def _converter(request: Request) -> HtmlToPdfConverter:
    return request.app.state.converter


# ============================================================================
# Health Check Endpoint
# ============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """
    Health check endpoint for container orchestration.

    Returns engine state and capacity information. Returns HTTP 503 when
    the last browser launch failed or the running browser stopped
    answering.
    """
    engine: RenderEngineManager = request.app.state.engine
    health = await engine.health(probe=True)

    payload = HealthResponse(
        status="healthy" if health.healthy else "unhealthy",
        service=SERVICE_NAME,
        version=__version__,
        timestamp=datetime.now(timezone.utc),
        engine_launched=health.launched,
        engine_connected=health.connected,
        engine_responsive=health.responsive,
        browser_version=health.browser_version,
        launch_count=health.launch_count,
        relaunch_count=health.relaunch_count,
        active_sessions=health.active_sessions,
        active_renders=health.active_renders,
        waiting_requests=health.waiting_requests,
        max_concurrent=health.max_concurrent,
        last_error=health.last_error,
    )

    if not health.healthy:
        raise HTTPException(
            status_code=503,
            detail={
                **payload.model_dump(mode="json"),
                "message": "PDF service is unhealthy - Chromium not available",
            },
        )

    return payload


# ============================================================================
# Conversion Endpoints
# ============================================================================

@router.post("/convert/content", response_class=StreamingResponse, responses=ERROR_RESPONSES)
async def convert_content(body: ContentConversionRequest, request: Request):
    """
    Convert inline HTML markup to PDF.

    Returns:
        StreamingResponse with PDF binary data

    Raises:
        ConversionError: Mapped to a JSON {error, details} body
    """
    if not body.htmlContent or not body.htmlContent.strip():
        raise EmptySourceError("No HTML content provided")

    request_id = uuid.uuid4().hex
    logger.info(f"📝 Processing inline HTML content [req:{request_id[:8]}]")

    result = await _convert_until_disconnected(
        request,
        _converter(request).convert_content(
            body.htmlContent, body.options.to_overrides(), request_id=request_id
        ),
    )
    return _pdf_response(result, "converted.pdf")


@router.post("/convert/file", response_class=StreamingResponse, responses=ERROR_RESPONSES)
async def convert_file(body: FileConversionRequest, request: Request):
    """
    Convert an HTML file stored under the documents directory.

    The upload step that places files there is handled upstream; this
    endpoint only accepts paths inside that directory.
    """
    settings: RenderSettings = request.app.state.settings
    try:
        path = resolve_document_path(settings.documents_dir, body.path)
    except ValueError as e:
        raise InvalidSourceError("Invalid document path", str(e)) from e

    request_id = uuid.uuid4().hex
    logger.info(f"📄 Processing file: {body.path} [req:{request_id[:8]}]")

    result = await _convert_until_disconnected(
        request,
        _converter(request).convert_file(path, body.options.to_overrides(), request_id=request_id),
    )
    return _pdf_response(result, pdf_filename(path.name))


@router.post("/convert/test", response_class=StreamingResponse, responses=ERROR_RESPONSES)
async def convert_test(request: Request):
    """Convert the bundled test document with default options."""
    settings: RenderSettings = request.app.state.settings
    test_file = settings.test_document_path
    if not test_file.is_file():
        raise SourceNotFoundError(str(test_file))

    request_id = uuid.uuid4().hex
    logger.info(f"🧪 Converting test document [req:{request_id[:8]}]")

    result = await _convert_until_disconnected(
        request,
        _converter(request).convert_file(test_file, request_id=request_id),
    )
    return _pdf_response(result, pdf_filename(test_file.name))


# ============================================================================
# Error handling
# ============================================================================

async def conversion_error_handler(request: Request, exc: ConversionError) -> JSONResponse:
    """Turn typed conversion errors into {error, details} responses."""
    logger.error(f"❌ {request.method} {request.url.path} failed: {exc}")
    headers = {"Retry-After": str(RETRY_AFTER_SECONDS)} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies with the same {error, details} shape as conversion errors."""
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    logger.warning(f"{request.method} {request.url.path} rejected: {'; '.join(problems)}")
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": "; ".join(problems)},
    )


# ============================================================================
# Application
# ============================================================================

def create_app(
    settings: Optional[RenderSettings] = None,
    engine: Optional[RenderEngineManager] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    The engine manager is created on startup (unless one is passed in) and
    shut down on application shutdown, which uvicorn triggers on SIGINT
    and SIGTERM.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = validate_config_on_startup(settings)
        app.state.settings = cfg
        app.state.engine = engine or RenderEngineManager(cfg)
        app.state.converter = HtmlToPdfConverter(app.state.engine)

        if cfg.prelaunch_engine:
            try:
                await app.state.engine.acquire_engine()
            except EngineLaunchError as e:
                # Health check reports the failure; requests retry the launch
                logger.error(f"Chromium prelaunch failed: {e}")

        try:
            yield
        finally:
            await app.state.engine.shutdown()

    app = FastAPI(
        title="PDF Render Service",
        version=__version__,
        description="HTML to PDF conversion using a shared Playwright/Chromium engine",
        lifespan=lifespan,
    )
    app.include_router(router)
    app.add_exception_handler(ConversionError, conversion_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    return app


app = create_app()


def main() -> None:
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    logger.info(f"🚀 Starting {SERVICE_NAME} on http://{settings.host}:{settings.port}")
    logger.info("   POST /convert/file    - Convert a stored HTML file")
    logger.info("   POST /convert/content - Convert inline HTML")
    logger.info("   POST /convert/test    - Convert the test document")
    logger.info("   GET  /health          - Service status")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
