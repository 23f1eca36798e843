# =============================================================================
# Database Package
# =============================================================================
# Provides SQLAlchemy engines, session management, ORM models and the
# document repository.
#
# Key exports:
#   - async_session_factory / get_sync_session: session lifecycles
#   - Document, Chunk, DocumentStatus: ORM models
#   - DocumentRepository: registration and status transitions (sync)
#   - fetch_document_meta: batched id → (filename, object_key) lookup (async)
# =============================================================================
