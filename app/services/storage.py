# =============================================================================
# Object Storage — Supabase Storage Bucket
# =============================================================================
#
# The one place that talks to the binary object store. Ingestion downloads
# bytes and signs short-lived URLs for DOCX/XLSX conversion; the citation
# resolver signs links for answer sources; registration resolves the
# public URL stored on the document row.
#
# Every failure is raised as a stage-tagged UpstreamServiceError subclass
# (DownloadFailed / EmptyBytes / SignedUrlFailed). Callers decide whether
# a failure is fatal (ingestion) or degrades to a null link (citations).
# =============================================================================

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Protocol, runtime_checkable

from supabase import Client, create_client

from app.config import settings
from app.errors import DownloadFailed, EmptyBytes, SignedUrlFailed

logger = logging.getLogger(__name__)


@runtime_checkable
class ObjectStorage(Protocol):
    """Contract for binary object storage."""

    def download(self, key: str) -> bytes: ...

    def create_signed_url(self, key: str, ttl_seconds: int) -> str: ...

    def get_public_url(self, key: str) -> str: ...


@lru_cache(maxsize=1)
def get_supabase() -> Client:
    """Cached service-role Supabase client."""
    if not settings.supabase_url or not settings.supabase_service_role_key:
        raise RuntimeError(
            "Supabase is not configured. Set SUPABASE_URL and "
            "SUPABASE_SERVICE_ROLE_KEY in .env"
        )
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


class SupabaseObjectStorage:
    """ObjectStorage over a single Supabase Storage bucket."""

    def __init__(self, bucket: str | None = None, client: Client | None = None) -> None:
        self._bucket = bucket or settings.supabase_rag_bucket
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def _objects(self):
        return self.client.storage.from_(self._bucket)

    def download(self, key: str) -> bytes:
        try:
            data = self._objects().download(key)
        except Exception as exc:
            raise DownloadFailed(
                f"Download failed for {key}: {exc}",
                details={"bucket": self._bucket, "key": key},
            ) from exc

        if not data:
            raise EmptyBytes(
                f"Downloaded object {key} is empty",
                details={"bucket": self._bucket, "key": key},
            )
        logger.debug("Downloaded %s/%s (%d bytes)", self._bucket, key, len(data))
        return data

    def create_signed_url(self, key: str, ttl_seconds: int) -> str:
        try:
            signed = self._objects().create_signed_url(key, ttl_seconds)
        except Exception as exc:
            raise SignedUrlFailed(
                f"Could not sign {key}: {exc}",
                details={"bucket": self._bucket, "key": key},
            ) from exc

        url = None
        if isinstance(signed, dict):
            url = signed.get("signedURL") or signed.get("signedUrl")
        if not url:
            raise SignedUrlFailed(
                f"Signing {key} returned no URL",
                details={"bucket": self._bucket, "key": key},
            )
        return url

    def get_public_url(self, key: str) -> str:
        return self._objects().get_public_url(key)
