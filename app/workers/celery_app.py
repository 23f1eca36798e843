# =============================================================================
# Celery Application — Background Ingestion
# =============================================================================
#
#   POST /register-file ──delay──▶ Redis db0 ──▶ worker: index_document
#                                                    │
#   GET /index/{task_id} ◀── Redis db1 (results) ◀───┘
#
# Start a worker with:
#   celery -A app.workers.celery_app worker -Q ingestion --concurrency 2
# =============================================================================

from celery import Celery

from app.config import settings

INGESTION_QUEUE = "ingestion"

celery_app = Celery(
    "rag_ingestion",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_default_queue=INGESTION_QUEUE,
    # One document at a time per worker process; a PDF job can block for
    # the full parse timeout before chunking even starts
    worker_prefetch_multiplier=1,
    task_soft_time_limit=int(settings.parse_timeout_secs) + 180,
    task_time_limit=int(settings.parse_timeout_secs) + 480,
    # Re-indexing replaces the whole chunk set, so a redelivered task is safe
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=24 * 3600,
)
