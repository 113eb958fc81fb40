"""FastAPI application exposing a local Clif control surface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import RLock
from typing import Annotated, Final

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .clipboard import ClipboardSink
from .config import Config, ConfigurationError, load_config
from .errors import ClifError, NotFoundError, describe_error
from .library import LibraryStore
from .main import configure_logging, create_clipboard, create_controller, create_library
from .pipeline import PipelineController
from .web_types import (
    ApiError,
    ClifSummary,
    CopyResponse,
    PipelineStatusResponse,
    RecordingRequest,
    StopResponse,
)

_LOGGER = logging.getLogger(__name__)
_ALLOWED_ORIGINS = ["http://localhost:5173"]
_STATUS_BY_CATEGORY: Final[dict[str, int]] = {
    "busy": 409,
    "not_found": 404,
    "permission": 403,
}


@dataclass(frozen=True, slots=True)
class ApiContext:
    """Container bundling application config with the shared pipeline objects."""

    config: Config
    controller: PipelineController
    library: LibraryStore
    clipboard: ClipboardSink


_CONTEXT_LOCK = RLock()
_CACHED_CONTEXT: ApiContext | None = None
_LOGGING_INITIALISED = False

app = FastAPI(title="Clif Web API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.get("/api/health")
def health() -> dict[str, str]:
    """Return a trivial health payload used by readiness checks."""
    return {"status": "ok"}


def _build_context() -> ApiContext:
    """Instantiate the shared config, controller and library."""
    global _LOGGING_INITIALISED  # noqa: PLW0603
    config = load_config()
    if not _LOGGING_INITIALISED:
        configure_logging(config.logging)
        _LOGGING_INITIALISED = True
    return ApiContext(
        config=config,
        controller=create_controller(config),
        library=create_library(config),
        clipboard=create_clipboard(),
    )


def _http_error(status_code: int, message: str, *, code: str | None = None) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"message": message, "code": code})


def _clif_http_error(exc: ClifError) -> HTTPException:
    status_code = _STATUS_BY_CATEGORY.get(exc.category, 500)
    return _http_error(status_code, describe_error(exc), code=exc.category)


def get_api_context() -> ApiContext:
    """Return a cached ApiContext instance, initialising it on first use."""
    global _CACHED_CONTEXT  # noqa: PLW0603
    with _CONTEXT_LOCK:
        if _CACHED_CONTEXT is None:
            try:
                _CACHED_CONTEXT = _build_context()
            except ConfigurationError as exc:
                raise _http_error(503, str(exc), code="configuration") from exc
        return _CACHED_CONTEXT


@app.exception_handler(HTTPException)
async def handle_http_exception(_: Request, exc: HTTPException) -> JSONResponse:
    """Normalise HTTPException responses so they always match ApiError."""
    detail = exc.detail
    if isinstance(detail, dict):
        message = str(detail.get("message", "")) or "Unknown error"
        code = detail.get("code")
    else:
        message = str(detail) or "Unknown error"
        code = None
    payload = ApiError(message=message, code=code).model_dump()
    return JSONResponse(status_code=exc.status_code, content=payload)


@app.exception_handler(RequestValidationError)
async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed request bodies as 400 responses in the ApiError shape."""
    errors = exc.errors()
    message = str(errors[0].get("msg", "Invalid request")) if errors else "Invalid request"
    payload = ApiError(message=message, code="invalid_request").model_dump()
    return JSONResponse(status_code=400, content=payload)


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, _exc: Exception) -> JSONResponse:
    """Catch-all exception handler that redacts details from clients."""
    _LOGGER.exception("web_api.unhandled_exception", extra={"path": request.url.path})
    payload = ApiError(message="Internal server error").model_dump()
    return JSONResponse(status_code=500, content=payload)


@app.get("/api/clifs", response_model=list[ClifSummary])
def list_clifs(context: Annotated[ApiContext, Depends(get_api_context)]) -> list[ClifSummary]:
    """Return every library item, newest first."""
    return [ClifSummary.from_entry(entry) for entry in context.library.load_all()]


@app.post("/api/clifs/{clif_id}/copy", response_model=CopyResponse)
def copy_clif(
    clif_id: str,
    context: Annotated[ApiContext, Depends(get_api_context)],
) -> CopyResponse:
    """Copy a library item to the clipboard."""
    entry = context.library.get(clif_id)
    if entry is None:
        raise _clif_http_error(NotFoundError(f"No clif with id {clif_id}"))
    copied = context.clipboard.copy(entry.gif_path)
    return CopyResponse(copied=copied, path=str(entry.gif_path))


@app.get("/api/pipeline", response_model=PipelineStatusResponse)
def pipeline_status(
    context: Annotated[ApiContext, Depends(get_api_context)],
) -> PipelineStatusResponse:
    """Return the current pipeline state."""
    return PipelineStatusResponse.from_status(context.controller.status())


@app.post("/api/recordings", response_model=PipelineStatusResponse, status_code=202)
def start_recording(
    request: RecordingRequest,
    context: Annotated[ApiContext, Depends(get_api_context)],
) -> PipelineStatusResponse:
    """Start recording a region; the run continues in the background."""
    try:
        context.controller.start(request.region.to_region())
    except ClifError as exc:
        raise _clif_http_error(exc) from exc
    return PipelineStatusResponse.from_status(context.controller.status())


@app.post("/api/recordings/stop", response_model=StopResponse)
def stop_recording(context: Annotated[ApiContext, Depends(get_api_context)]) -> StopResponse:
    """Ask an active capture to finalize."""
    return StopResponse(stopped=context.controller.stop())


@app.post("/api/clipboard/recopy", response_model=CopyResponse)
def recopy_last(context: Annotated[ApiContext, Depends(get_api_context)]) -> CopyResponse:
    """Copy the most recently saved clif to the clipboard again."""
    try:
        copied = context.controller.recopy_last()
    except ClifError as exc:
        raise _clif_http_error(exc) from exc
    last = context.controller.last_artifact()
    path = str(context.library.gif_path_for(last)) if last else ""
    return CopyResponse(copied=copied, path=path)


__all__ = ["ApiContext", "app", "get_api_context"]
