# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# The public HTTP contract. Kept apart from the ORM models in
# app/db/models.py so internal columns (embeddings, object keys) never leak
# into responses.
# =============================================================================
