# =============================================================================
# Services Package — Business Logic
# =============================================================================
#   - parser.py:       LlamaParse PDF jobs, DOCX and XLSX/CSV → Markdown units
#   - chunker.py:      heading-aware chunking with overlap and a hard ceiling
#   - embedder.py:     batched OpenAI-compatible embeddings
#   - vectorstore.py:  chunk store protocol (pgvector, Chroma)
#   - storage.py:      Supabase Storage downloads and signed URLs
#   - llm.py:          completion providers (OpenAI-compatible, Anthropic)
#   - registration.py: storage object → documents row
#   - ingestion.py:    the per-document ingestion state machine
#   - tokens.py:       ceil(chars / 4) token estimate
# =============================================================================
