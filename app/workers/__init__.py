# =============================================================================
# Workers Package — Celery Background Tasks
# =============================================================================
#   - celery_app.py: Celery application configuration
#   - tasks.py:      index_document (ingestion pipeline in a worker)
#
# /register-file queues ingestion here so the request returns immediately;
# the PDF parse job alone can take up to two minutes.
# =============================================================================
