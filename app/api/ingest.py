# =============================================================================
# Ingestion API — Register, Index, Poll
# =============================================================================
#
#   POST /register-file   objectKey → documents row (idempotent by content
#                         hash), then dispatch the Celery index_document task
#   POST /index-now       documentId → run ingestion inline and wait
#   GET  /index/{task_id} Celery task state for a dispatched ingestion
#
# /index-now runs the synchronous pipeline in a worker thread so the event
# loop keeps serving; the PDF job poll alone can take up to 120s, so
# clients should set generous timeouts on this call.
# =============================================================================

from __future__ import annotations

import asyncio
import logging

from celery.result import AsyncResult
from fastapi import APIRouter, Depends

from app.api.deps import get_request_id
from app.logging_config import PipelineLogger
from app.models.requests import IndexRequest, RegisterRequest
from app.models.responses import IndexResponse, IndexStatusResponse, RegisterResponse
from app.services.ingestion import index_document
from app.services.registration import register_file
from app.services.storage import SupabaseObjectStorage
from app.workers.tasks import index_document as index_document_task

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Ingestion"])


# ---------------------------------------------------------------------------
# POST /index-now — Index one document synchronously
# ---------------------------------------------------------------------------


@router.post(
    "/index-now",
    response_model=IndexResponse,
    summary="Parse, chunk, embed and store one document",
)
async def index_now(
    request: IndexRequest,
    rid: str = Depends(get_request_id),
) -> IndexResponse:
    """
    Run ingestion for a registered document and return its chunk count.

    Failures come back as the stage-tagged error envelope, and the
    document is left in status `failed`.
    """
    result = await asyncio.to_thread(index_document, request.document_id, rid=rid)
    return IndexResponse(ok=True, rid=result.rid, chunks=result.chunks)


# ---------------------------------------------------------------------------
# POST /register-file — Register a storage object and queue indexing
# ---------------------------------------------------------------------------


@router.post(
    "/register-file",
    response_model=RegisterResponse,
    summary="Register a stored file and queue it for indexing",
)
async def register_file_endpoint(
    request: RegisterRequest,
    rid: str = Depends(get_request_id),
) -> RegisterResponse:
    plog = PipelineLogger(logger, "register-file", rid)

    document_id, changed = await asyncio.to_thread(
        register_file, request.object_key, SupabaseObjectStorage(), plog=plog,
    )

    task = index_document_task.delay(document_id, rid)
    plog.stage("index.dispatch", "Queued index_document", {
        "documentId": document_id, "taskId": task.id, "changed": changed,
    })

    return RegisterResponse(
        ok=True,
        rid=rid,
        document_id=document_id,
        task_id=task.id,
        changed=changed,
    )


# ---------------------------------------------------------------------------
# GET /index/{task_id} — Poll a dispatched ingestion
# ---------------------------------------------------------------------------


@router.get(
    "/index/{task_id}",
    response_model=IndexStatusResponse,
    summary="Check a queued ingestion task",
)
async def get_index_status(task_id: str) -> IndexStatusResponse:
    """
    Celery task states: PENDING (queued or unknown id), STARTED, RETRY,
    SUCCESS (result holds the chunk count), FAILURE (error holds the reason).
    """
    result = AsyncResult(task_id, app=index_document_task.app)
    state = result.state

    payload: dict | None = None
    error: str | None = None
    if state == "SUCCESS":
        payload = result.result if isinstance(result.result, dict) else None
    elif state in ("FAILURE", "RETRY"):
        error = str(result.result) if result.result else "Unknown error"

    return IndexStatusResponse(task_id=task_id, state=state, result=payload, error=error)
