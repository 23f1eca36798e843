# =============================================================================
# Ask API — Grounded Question Answering
# =============================================================================
#
# POST /ask runs the query graph (classify → retrieve → assemble →
# generate → cite) and maps the final state to the response contract:
#   {answer, citations[], intent, generalIntent}
#
# Validation is Pydantic's; failures are PipelineErrors
# rendered by the handler in app/main.py.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from app.agents.intent import Intent
from app.agents.orchestrator import ask
from app.api.deps import get_request_id
from app.models.requests import AskRequest
from app.models.responses import AskResponse, Citation

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Question Answering"])


@router.post(
    "/ask",
    response_model=AskResponse,
    summary="Ask a question about the indexed documents",
    description=(
        "Retrieves relevant passages, assembles a budgeted context and "
        "returns a grounded answer with one citation per source document. "
        "Never returns a bare non-answer: missing context or a hedging "
        "model reply yields a structured fallback with contact details."
    ),
)
async def ask_endpoint(
    request: AskRequest,
    rid: str = Depends(get_request_id),
) -> AskResponse:
    state = await ask(request.question, k=request.k, rid=rid)

    intent: Intent = state["intent"]
    citations = [
        Citation(
            ref=c.ref,
            document_id=c.document_id,
            filename=c.filename,
            page_or_sheet=c.page_or_sheet,
            section_path=c.section_path,
            url=c.url,
        )
        for c in state.get("citations", [])
    ]

    return AskResponse(
        answer=state["answer"],
        citations=citations,
        intent=intent.value,
        general_intent=intent is Intent.GENERAL,
    )
