# =============================================================================
# Document Registration — Storage Object → documents Row
# =============================================================================
#
# Turns an object key in the RAG bucket into a documents row, idempotently:
#
#   sign URL (120s) → fetch bytes → sha256 → find by (filename, object_key)
#     ├── no row          → insert, status=pending
#     ├── hash changed    → store new hash, status=pending
#     └── hash unchanged  → no-op
#
# Registration never parses or embeds. The caller decides when to run
# ingestion (the /register-file route always dispatches it afterwards).
# =============================================================================

from __future__ import annotations

import hashlib
import logging

import httpx

from app.config import settings
from app.db.repositories import DocumentRepository
from app.errors import DownloadFailed, EmptyBytes, ValidationError
from app.logging_config import PipelineLogger
from app.services.storage import ObjectStorage

logger = logging.getLogger(__name__)


def describe_object_key(object_key: str) -> tuple[str, str, str]:
    """
    Derive (filename, file_type, title) from an object key.

        "decks/2024/Pitch.Deck.PDF" → ("Pitch.Deck.PDF", "pdf", "Pitch.Deck")
    """
    filename = object_key.rsplit("/", 1)[-1] or object_key
    file_type = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    title = filename.rsplit(".", 1)[0] if "." in filename else filename
    return filename, file_type, title


def _fetch(url: str, http_client: httpx.Client | None) -> bytes:
    client = http_client or httpx.Client(timeout=settings.http_timeout_secs)
    try:
        response = client.get(url)
    except httpx.HTTPError as exc:
        raise DownloadFailed(
            f"Fetch failed: {exc}", code="FETCH_FAILED", stage="fetch.bytes",
        ) from exc
    finally:
        if http_client is None:
            client.close()

    if response.is_error:
        raise DownloadFailed(
            f"status {response.status_code}", code="FETCH_FAILED", stage="fetch.bytes",
        )
    if not response.content:
        raise EmptyBytes("0 bytes", stage="fetch.bytes")
    return response.content


def register_file(
    object_key: str,
    storage: ObjectStorage,
    repo: DocumentRepository | None = None,
    http_client: httpx.Client | None = None,
    plog: PipelineLogger | None = None,
) -> tuple[int, bool]:
    """
    Register (or refresh) the document stored under `object_key`.

    Returns:
        (document_id, changed). `changed` is True for a new row or a new
        content hash, False when the stored bytes are unchanged.
    """
    if not object_key or not object_key.strip():
        raise ValidationError("objectKey required", code="MISSING_OBJECT_KEY")

    repo = repo or DocumentRepository()
    plog = plog or PipelineLogger(logger, "register-file")

    plog.stage("sign", "Create signed URL (hashing)", {"objectKey": object_key})
    url = storage.create_signed_url(object_key, settings.register_signed_url_ttl_secs)

    data = _fetch(url, http_client)
    content_hash = hashlib.sha256(data).hexdigest()
    plog.stage(
        "hash", "content hash",
        {"content_hash": content_hash[:16] + "…", "bytes": len(data)},
    )

    filename, file_type, title = describe_object_key(object_key)
    source_url = storage.get_public_url(object_key)

    existing = repo.find_by_filename_key(filename, object_key)
    if existing is None:
        document_id = repo.insert(
            title=title,
            filename=filename,
            file_type=file_type,
            source_url=source_url,
            object_key=object_key,
            content_hash=content_hash,
        )
        plog.stage(
            "db.insert", "Inserted new document row",
            {"id": document_id, "filename": filename},
        )
        return document_id, True

    if existing.content_hash != content_hash:
        repo.reset_content_hash(existing.id, content_hash)
        plog.stage("db.update", "Content changed → set pending", {"id": existing.id})
        return existing.id, True

    plog.stage("db.update", "Content unchanged", {"id": existing.id})
    return existing.id, False
