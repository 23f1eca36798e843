# =============================================================================
# Grounded Document Q&A
# =============================================================================
# Retrieval-augmented question answering over an organisation's own files.
#
#   Ingestion: storage object → parse (PDF job / DOCX / XLSX / CSV) → chunk
#              → embed → replace the document's chunk set
#   Query:     classify intent → embed → retrieve → budgeted context
#              → grounded answer (with fallback) → deduplicated citations
#
# Package structure:
#   app/
#   ├── api/          → FastAPI route handlers (ask, index-now, register-file)
#   ├── agents/       → LangGraph query graph and its steps
#   ├── db/           → Engines, sessions, ORM models, document repository
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Parsing, chunking, embedding, chunk store, storage,
#   │                    completion providers, registration, ingestion
#   └── workers/      → Celery app and the index_document task
# =============================================================================
