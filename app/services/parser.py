# =============================================================================
# Document Parser — PDF (LlamaParse), DOCX, XLSX/CSV → Markdown Units
# =============================================================================
#
# Converts raw document bytes into an ordered list of TextUnit. Each unit is
# one logical page/sheet/section of Markdown and starts with a top-level
# heading, so the chunker can split on structural boundaries.
#
#   PDF   → bytes uploaded to the LlamaParse job API, polled until terminal,
#           Markdown result unwrapped from whatever envelope it arrives in.
#           One unit per page, prefixed "# Page N" when it lacks a heading.
#   DOCX  → fetched from a signed URL, converted with python-docx to one
#           Markdown unit (headings → #, tables → pipe rows).
#   XLSX  → fetched from a signed URL, one Markdown table per sheet
#   CSV     (header row + separator + data rows, width = widest row).
#   PPT/X → rejected with an instruction to export to PDF.
#
# The PDF job poll is the only blocking wait in the system. Poll interval,
# timeout, sleep and clock are all injectable for deterministic tests.
# =============================================================================

from __future__ import annotations

import csv
import io
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from app.config import settings
from app.errors import (
    ParseConversionError,
    ParseEmptyResult,
    ParseFetchError,
    ParseJobFailed,
    ParseTimeout,
    UnsupportedFormat,
    UpstreamServiceError,
)

logger = logging.getLogger(__name__)

_LOG_BODY_CHARS = 800

_TERMINAL_SUCCESS = {"SUCCESS"}
_TERMINAL_FAILURE = {"FAILED", "ERROR", "CANCELED", "CANCELLED"}

SPREADSHEET_TYPES = {"xlsx", "csv"}
SLIDE_TYPES = {"ppt", "pptx"}


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class TextUnit:
    """
    One independently chunkable slice of a parsed document.

    `text` is Markdown beginning with a top-level heading. `locator` names
    the page or sheet it came from ("Page 3", "Sheet: Budget") and ends up
    on every chunk cut from this unit.
    """

    text: str
    locator: str | None = None


# ---------------------------------------------------------------------------
# LlamaParse Result Envelope
# ---------------------------------------------------------------------------


def _page_markdowns(pages: Any) -> list[str]:
    if not isinstance(pages, list):
        return []
    return [
        p["markdown"]
        for p in pages
        if isinstance(p, dict) and isinstance(p.get("markdown"), str)
    ]


def unwrap_markdown(payload: str) -> list[str]:
    """
    Extract Markdown page texts from a LlamaParse result payload.

    Shapes tried in order:
      1. {"markdown": "..."}
      2. {"pages": [{"markdown": "..."}, ...]}
      3. [{"markdown": "..."}, {"pages": [...]}, ...]
    Anything else, including payloads that are not JSON, is raw Markdown.
    """
    text = (payload or "").strip()
    if not text.startswith(("{", "[")):
        return [text]

    try:
        obj = json.loads(text)
    except ValueError:
        return [text]

    if isinstance(obj, dict):
        if isinstance(obj.get("markdown"), str):
            return [obj["markdown"]]
        pages = _page_markdowns(obj.get("pages"))
        if pages:
            return pages

    if isinstance(obj, list):
        items: list[str] = []
        for item in obj:
            if not isinstance(item, dict):
                continue
            if isinstance(item.get("markdown"), str):
                items.append(item["markdown"])
            else:
                items.extend(_page_markdowns(item.get("pages")))
        if items:
            return items

    return [text]


def pages_to_units(pages: list[str]) -> list[TextUnit]:
    """Label each page and give it a "# Page N" heading if it has none."""
    if not any(p.strip() for p in pages):
        raise ParseEmptyResult("LlamaParse returned empty markdown")

    units: list[TextUnit] = []
    for i, page in enumerate(pages, 1):
        if not page.strip():
            continue
        text = page if page.startswith("# ") else f"# Page {i}\n\n{page}"
        units.append(TextUnit(text=text, locator=f"Page {i}"))
    return units


# ---------------------------------------------------------------------------
# LlamaParse Job Client
# ---------------------------------------------------------------------------


class LlamaParseClient:
    """
    Submit → poll → fetch client for the LlamaParse parsing job API.

    `sleep` and `clock` default to time.sleep / time.monotonic; tests swap in
    a fake clock so polling and timeouts run instantly.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        poll_interval: float | None = None,
        timeout: float | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api_key = api_key if api_key is not None else settings.llama_cloud_api_key
        self._base_url = (base_url or settings.llama_cloud_base_url).rstrip("/")
        self._poll_interval = (
            poll_interval if poll_interval is not None
            else settings.parse_poll_interval_secs
        )
        self._timeout = timeout if timeout is not None else settings.parse_timeout_secs
        self._http = http_client or httpx.Client(timeout=settings.http_timeout_secs)
        self._sleep = sleep
        self._clock = clock

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def _get(self, path: str, stage: str) -> httpx.Response:
        try:
            return self._http.get(f"{self._base_url}{path}", headers=self._headers())
        except httpx.HTTPError as exc:
            raise ParseJobFailed(
                f"LlamaParse request failed: {exc}",
                code="PARSE_HTTP_ERROR",
                stage=stage,
            ) from exc

    def submit(self, data: bytes, filename: str, log: Any = logger) -> str:
        """Upload PDF bytes and return the job id."""
        if not self._api_key:
            raise UpstreamServiceError(
                "LLAMA_CLOUD_API_KEY missing",
                code="PARSER_NOT_CONFIGURED",
                stage="parse.upload",
            )

        log.info("pdf.upload.start filename=%s size=%d", filename, len(data))
        try:
            response = self._http.post(
                f"{self._base_url}/parsing/upload",
                headers=self._headers(),
                files={"file": (filename, data, "application/pdf")},
            )
        except httpx.HTTPError as exc:
            raise ParseJobFailed(
                f"LlamaParse upload failed: {exc}",
                code="PARSE_UPLOAD_FAILED",
                stage="parse.upload",
            ) from exc

        if response.is_error:
            log.warning(
                "pdf.upload.error status=%d body=%s",
                response.status_code, response.text[:_LOG_BODY_CHARS],
            )
            raise ParseJobFailed(
                f"LlamaParse upload failed: {response.status_code}",
                code="PARSE_UPLOAD_FAILED",
                stage="parse.upload",
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ParseJobFailed(
                "LlamaParse upload returned invalid JSON",
                code="PARSE_UPLOAD_FAILED",
                stage="parse.upload",
                details=response.text[:_LOG_BODY_CHARS],
            ) from exc

        job_id = (body.get("job_id") or body.get("id")) if isinstance(body, dict) else None
        if not job_id:
            raise ParseJobFailed(
                "LlamaParse: job_id missing from upload response",
                code="PARSE_UPLOAD_FAILED",
                stage="parse.upload",
            )
        return str(job_id)

    def wait(self, job_id: str, log: Any = logger) -> None:
        """Poll until the job succeeds; raise on failure or timeout."""
        started = self._clock()
        log.info("pdf.poll.start job_id=%s", job_id)

        while self._clock() - started < self._timeout:
            response = self._get(f"/parsing/job/{job_id}", stage="parse.poll")
            if response.is_error:
                raise ParseJobFailed(
                    f"LlamaParse get job failed: {response.status_code}",
                    code="PARSE_POLL_FAILED",
                )
            try:
                job = response.json()
            except ValueError as exc:
                raise ParseJobFailed(
                    "LlamaParse get job returned invalid JSON",
                    code="PARSE_POLL_FAILED",
                ) from exc
            if not isinstance(job, dict):
                raise ParseJobFailed(
                    "LlamaParse get job returned a non-object body",
                    code="PARSE_POLL_FAILED",
                )

            status = str(job.get("status") or "").upper()
            log.debug("pdf.poll.tick job_id=%s status=%s", job_id, status)
            if status in _TERMINAL_SUCCESS:
                return
            if status in _TERMINAL_FAILURE:
                raise ParseJobFailed(
                    f"LlamaParse job failed: {job.get('error') or 'unknown'}",
                    details={"job_id": job_id, "status": status},
                )
            self._sleep(self._poll_interval)

        raise ParseTimeout(
            f"LlamaParse job {job_id} did not finish within {self._timeout:.0f}s",
            details={"job_id": job_id},
        )

    def fetch_markdown(self, job_id: str, log: Any = logger) -> str:
        """Fetch the Markdown result, falling back to the raw variant on 404."""
        response = self._get(f"/parsing/job/{job_id}/result/markdown", stage="parse.result")
        if response.status_code == 404:
            log.info("pdf.result.retry job_id=%s trying raw markdown", job_id)
            response = self._get(
                f"/parsing/job/{job_id}/result/raw/markdown", stage="parse.result",
            )
        if response.is_error:
            raise ParseJobFailed(
                f"LlamaParse result fetch failed: {response.status_code}",
                code="PARSE_RESULT_FAILED",
                stage="parse.result",
            )
        return response.text

    def parse(self, data: bytes, filename: str, log: Any = logger) -> list[TextUnit]:
        job_id = self.submit(data, filename, log=log)
        self.wait(job_id, log=log)
        pages = unwrap_markdown(self.fetch_markdown(job_id, log=log))
        units = pages_to_units(pages)
        log.info("pdf.result.done job_id=%s units=%d", job_id, len(units))
        return units


# ---------------------------------------------------------------------------
# Signed-URL Fetch
# ---------------------------------------------------------------------------


def fetch_bytes(url: str, http_client: httpx.Client | None = None) -> bytes:
    """GET a signed URL; network errors and non-2xx become ParseFetchError."""
    client = http_client or httpx.Client(timeout=settings.http_timeout_secs)
    try:
        response = client.get(url)
    except httpx.HTTPError as exc:
        raise ParseFetchError(f"Fetch failed: {exc}") from exc
    finally:
        if http_client is None:
            client.close()

    if response.is_error:
        raise ParseFetchError(
            f"Fetch failed with status {response.status_code}",
            details={"status": response.status_code},
        )
    return response.content


# ---------------------------------------------------------------------------
# DOCX → Markdown
# ---------------------------------------------------------------------------


def _docx_heading_level(style_name: str) -> int:
    if style_name == "Title":
        return 1
    if style_name.startswith("Heading"):
        suffix = style_name.removeprefix("Heading").strip()
        if suffix.isdigit():
            return min(int(suffix), 6)
    return 0


def _docx_to_markdown(data: bytes) -> str:
    from docx import Document as DocxDocument

    doc = DocxDocument(io.BytesIO(data))
    parts: list[str] = []

    for paragraph in doc.paragraphs:
        text = paragraph.text.strip()
        if not text:
            continue
        style_name = paragraph.style.name if paragraph.style is not None else ""
        level = _docx_heading_level(style_name)
        parts.append(f"{'#' * level} {text}" if level else text)

    for table in doc.tables:
        rows = [[cell.text.strip() for cell in row.cells] for row in table.rows]
        if rows:
            parts.append(render_markdown_table(rows))

    return "\n\n".join(parts)


def parse_docx(
    url: str,
    http_client: httpx.Client | None = None,
    log: Any = logger,
) -> list[TextUnit]:
    """DOCX (via signed URL) → a single Markdown unit."""
    log.info("docx.fetch")
    data = fetch_bytes(url, http_client)
    log.info("docx.size bytes=%d", len(data))

    try:
        markdown = _docx_to_markdown(data)
    except Exception as exc:
        raise ParseConversionError(f"DOCX conversion failed: {exc}") from exc

    log.info("docx.done chars=%d", len(markdown))
    return [TextUnit(text=f"# Document\n{markdown}", locator="Document")]


# ---------------------------------------------------------------------------
# XLSX / CSV → Markdown Tables
# ---------------------------------------------------------------------------


def _cell(value: Any) -> str:
    text = str(value).replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
    return text.replace("|", "\\|")


def render_markdown_table(rows: list[list[Any]]) -> str:
    """
    Render rows as a Markdown table. The first row is the header; every row
    is padded to the widest row with empty cells. Pipes in cells are escaped
    and line breaks folded to spaces so each row stays on one line.
    """
    width = max((len(r) for r in rows), default=0)
    norm = [
        ["" if i >= len(r) or r[i] is None else _cell(r[i]) for i in range(width)]
        for r in rows
    ]
    header = norm[0]
    lines = [
        f"| {' | '.join(header)} |",
        f"| {' | '.join('---' for _ in header)} |",
    ]
    lines.extend(f"| {' | '.join(row)} |" for row in norm[1:])
    return "\n".join(lines) + "\n"


def _sheet_unit(name: str, rows: list[list[Any]]) -> TextUnit:
    text = f"# Sheet: {name}\n\n"
    if rows:
        text += render_markdown_table(rows)
    return TextUnit(text=text, locator=f"Sheet: {name}")


def _xlsx_sheets(data: bytes) -> list[tuple[str, list[list[Any]]]]:
    from openpyxl import load_workbook

    workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        sheets = []
        for sheet in workbook.worksheets:
            rows = [
                list(row) for row in sheet.iter_rows(values_only=True)
                if any(cell is not None for cell in row)
            ]
            sheets.append((sheet.title, rows))
        return sheets
    finally:
        workbook.close()


def _csv_sheets(data: bytes, filename: str) -> list[tuple[str, list[list[Any]]]]:
    text = data.decode("utf-8-sig", errors="replace")
    rows = [row for row in csv.reader(io.StringIO(text)) if row]
    name = filename.rsplit(".", 1)[0] or "Sheet1"
    return [(name, rows)]


def parse_spreadsheet(
    url: str,
    file_type: str,
    filename: str = "",
    http_client: httpx.Client | None = None,
    log: Any = logger,
) -> list[TextUnit]:
    """XLSX/CSV (via signed URL) → one Markdown table unit per sheet."""
    log.info("xlsx.fetch type=%s", file_type)
    data = fetch_bytes(url, http_client)
    log.info("xlsx.size bytes=%d", len(data))

    try:
        sheets = _csv_sheets(data, filename) if file_type == "csv" else _xlsx_sheets(data)
    except Exception as exc:
        raise ParseConversionError(f"Spreadsheet conversion failed: {exc}") from exc

    units = []
    for name, rows in sheets:
        log.info("xlsx.sheet name=%s rows=%d", name, len(rows))
        units.append(_sheet_unit(name, rows))

    log.info("xlsx.done sheets=%d", len(units))
    return units


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_document(
    data: bytes,
    file_type: str,
    filename: str,
    sign_url: Callable[[], str],
    pdf_client: LlamaParseClient | None = None,
    http_client: httpx.Client | None = None,
    log: Any = logger,
) -> list[TextUnit]:
    """
    Dispatch to the format-specific parser.

    Args:
        data: Raw document bytes (used for PDF).
        file_type: Lower-cased extension ("pdf", "docx", "xlsx", "csv").
        filename: Original filename (sent to LlamaParse, names CSV sheets).
        sign_url: Returns a short-lived URL for the stored object; only
            called for DOCX and spreadsheets.

    Raises:
        UnsupportedFormat: for slide decks and unknown types.
        ParseTimeout / ParseJobFailed / ParseEmptyResult: PDF job outcomes.
        ParseFetchError / ParseConversionError: DOCX and spreadsheet paths.

    Pipeline position: Step 1 of ingestion (parse → chunk → embed → store).
    """
    ext = (file_type or "").lower()
    log.info("parse.start ext=%s", ext)

    if ext == "pdf":
        client = pdf_client or LlamaParseClient(http_client=http_client)
        return client.parse(data, filename or "document.pdf", log=log)
    if ext == "docx":
        return parse_docx(sign_url(), http_client=http_client, log=log)
    if ext in SPREADSHEET_TYPES:
        return parse_spreadsheet(
            sign_url(), ext, filename=filename, http_client=http_client, log=log,
        )
    if ext in SLIDE_TYPES:
        raise UnsupportedFormat(
            "Slide decks are not supported. Export to PDF and upload again.",
            code="UNSUPPORTED_PPT",
        )
    raise UnsupportedFormat(
        f"Unsupported type: {ext or 'unknown'}. Upload PDF, DOCX, XLSX or CSV.",
    )
