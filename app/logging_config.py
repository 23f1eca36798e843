# =============================================================================
# Logging — Request-Correlated Pipeline Logger
# =============================================================================
#
# Every ingestion or query invocation carries a request id (rid). Log lines
# are prefixed with `[prefix][rid][stage]` so a single request can be traced
# across parse → chunk → embed → store or classify → retrieve → generate.
#
# Payloads attached to a log line pass through `scrub()` first:
#   - strings mentioning authorization / "Bearer " → "[redacted]"
#   - signed URLs carrying `token=`               → "[signed-url-redacted]"
#   - serialised payloads over 1200 chars are clipped
# =============================================================================

from __future__ import annotations

import json
import logging
import sys
import uuid
from typing import Any

from app.config import settings

_MAX_PAYLOAD_CHARS = 1200
_configured = False


def configure_logging() -> None:
    """Install a root stream handler once. DEBUG when settings.debug is on."""
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if settings.debug else logging.INFO)
    _configured = True


def new_request_id() -> str:
    return str(uuid.uuid4())


def _scrub_value(value: Any) -> Any:
    if isinstance(value, str):
        lowered = value.lower()
        if "authorization" in lowered or "Bearer " in value:
            return "[redacted]"
        if value.startswith("http") and "token=" in value:
            return "[signed-url-redacted]"
        return value
    if isinstance(value, dict):
        return {k: _scrub_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub_value(v) for v in value]
    return value


def scrub(extra: Any) -> str:
    """Serialise a log payload with secrets redacted and size clipped."""
    text = json.dumps(_scrub_value(extra), default=str, ensure_ascii=False)
    if len(text) > _MAX_PAYLOAD_CHARS:
        return text[:_MAX_PAYLOAD_CHARS] + "…[trimmed]"
    return text


class PipelineLogger(logging.LoggerAdapter):
    """
    LoggerAdapter that tags every line with a pipeline prefix and request id.

    Usage:
        plog = PipelineLogger(logger, "index-now", rid)
        plog.stage("storage.download", "Downloaded bytes", {"size": 1024})
    """

    def __init__(self, logger: logging.Logger, prefix: str, rid: str | None = None):
        self.prefix = prefix
        self.rid = rid or new_request_id()
        super().__init__(logger, {"rid": self.rid, "pipeline": prefix})

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs.setdefault("extra", {}).update(self.extra)
        return f"[{self.prefix}][{self.rid}] {msg}", kwargs

    def stage(
        self,
        stage: str,
        msg: str,
        extra: Any = None,
        level: int = logging.INFO,
    ) -> None:
        """Log one pipeline step, with an optional scrubbed payload."""
        if not self.isEnabledFor(level):
            return
        if extra is None:
            self.log(level, "[%s] %s", stage, msg)
        else:
            self.log(level, "[%s] %s :: %s", stage, msg, scrub(extra))
