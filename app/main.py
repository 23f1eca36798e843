# =============================================================================
# FastAPI Application — Entry Point
# =============================================================================
#
#   uvicorn app.main:app
#
# Wires the routers, a request-id middleware and the error envelope:
#
#   PipelineError           → its status_code, {ok:false, rid, stage, code, ...}
#   RequestValidationError  → 400, code BAD_REQUEST, stage validate
#   anything else           → 500, code UNCAUGHT, stage unhandled
#
# Every response carries X-Request-ID so clients can quote it back.
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api import ask, ingest
from app.api.deps import REQUEST_ID_HEADER, resolve_request_id
from app.config import settings
from app.errors import PipelineError
from app.logging_config import configure_logging
from app.models.responses import ErrorResponse, HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info(
        "Starting %s v%s (vectorstore=%s, llm=%s/%s)",
        settings.app_name, settings.app_version,
        settings.vectorstore_type, settings.llm_provider, settings.llm_model,
    )
    yield
    logger.info("Shutting down %s", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Document ingestion and grounded question answering over a vector index.",
    lifespan=lifespan,
)

app.include_router(ask.router)
app.include_router(ingest.router)


# ---------------------------------------------------------------------------
# Request Correlation
# ---------------------------------------------------------------------------


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    rid = resolve_request_id(request)
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = rid
    return response


# ---------------------------------------------------------------------------
# Error Envelope
# ---------------------------------------------------------------------------


def _envelope(
    request: Request,
    status_code: int,
    *,
    stage: str,
    code: str,
    message: str,
    details=None,
) -> JSONResponse:
    rid = resolve_request_id(request)
    body = ErrorResponse(rid=rid, stage=stage, code=code, message=message, details=details)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json"),
        headers={REQUEST_ID_HEADER: rid},
    )


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    logger.warning(
        "[%s] %s %s failed at %s: %s",
        resolve_request_id(request), request.method, request.url.path,
        exc.stage, exc.code,
    )
    return _envelope(
        request, exc.status_code,
        stage=exc.stage, code=exc.code, message=exc.message, details=exc.details,
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    return _envelope(
        request, 400,
        stage="validate",
        code="BAD_REQUEST",
        message="Invalid request body",
        details=jsonable_encoder(exc.errors()),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("[%s] Unhandled error", resolve_request_id(request))
    return _envelope(
        request, 500,
        stage="unhandled",
        code="UNCAUGHT",
        message=str(exc) or exc.__class__.__name__,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(
        status="healthy", version=settings.app_version, service=settings.app_name,
    )
