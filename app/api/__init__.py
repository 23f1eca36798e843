# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - ask.py:    POST /ask (query graph)
#   - ingest.py: POST /index-now, POST /register-file, GET /index/{task_id}
#   - deps.py:   request-id dependency
# =============================================================================
