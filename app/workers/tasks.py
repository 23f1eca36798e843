# =============================================================================
# Celery Task Definitions — Document Ingestion
# =============================================================================
#
# `index_document` wraps the ingestion pipeline (app.services.ingestion) for
# background execution. The pipeline itself owns the status state machine:
# on any failure the document is already marked `failed` with a
# stage-tagged error message before the exception reaches this task.
#
# Celery workers are SYNCHRONOUS: the pipeline uses the sync SQLAlchemy
# engine and blocking HTTP, which is exactly what runs here.
#
# RETRY STRATEGY:
# Only transient upstream failures (storage, parser service, embeddings,
# PDF job timeout) are retried, up to 3 times with 60s/120s/240s backoff.
# Input problems (missing document, unsupported type, empty result) fail
# immediately and stay `failed`.
# =============================================================================

import logging

from app.errors import ParseTimeoutError, UpstreamServiceError
from app.services.ingestion import index_document as run_ingestion
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

_RETRYABLE = (UpstreamServiceError, ParseTimeoutError)


@celery_app.task(
    bind=True,
    name="index_document",
    max_retries=3,
    default_retry_delay=60,
)
def index_document(self, document_id: int, rid: str | None = None) -> dict:
    """
    Index one document in a worker.

    Returns:
        {"document_id", "chunks", "rid", "status"} on success.
    """
    task_id = self.request.id
    logger.info(
        "[%s] Starting ingestion: document_id=%d rid=%s attempt=%d",
        task_id, document_id, rid, self.request.retries + 1,
    )

    try:
        result = run_ingestion(document_id, rid=rid)
    except _RETRYABLE as exc:
        logger.warning(
            "[%s] Transient failure for document_id=%d (%s: %s), retrying",
            task_id, document_id, exc.code, exc.message,
        )
        raise self.retry(exc=exc, countdown=60 * 2 ** self.request.retries)

    summary = {
        "document_id": result.document_id,
        "chunks": result.chunks,
        "rid": result.rid,
        "status": "ready",
    }
    logger.info("[%s] Ingestion complete: %s", task_id, summary)
    return summary
