"""
Knowledge base API routes.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse

from ...dialogue.kb_updater import KnowledgeBaseUpdater, KnowledgeUpdateError
from ...dialogue.knowledge import KnowledgeBase
from ...models.schemas import KnowledgeUpdateRequest, KnowledgeUpdateResponse
from ...services.knowledge_service import KnowledgeService, KnowledgeServiceError
from ..dependencies import get_kb_updater, get_knowledge_base, get_knowledge_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/update-knowledge-base", response_model=KnowledgeUpdateResponse)
async def update_knowledge_base(
    request: KnowledgeUpdateRequest,
    updater: KnowledgeBaseUpdater = Depends(get_kb_updater)
):
    """
    Turn a ticket's solution into a knowledge entry and resolve the ticket.

    ``forceUpdate`` skips the check that the text reads as a solution.
    """
    try:
        result = await updater.update(
            request.ticket_number,
            request.solution,
            force=request.force_update
        )
    except KnowledgeUpdateError as e:
        logger.info(f"Knowledge update rejected for {request.ticket_number}: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    return KnowledgeUpdateResponse(
        success=True,
        ticket_number=result["ticket_number"],
        message=result["message"],
        question=result["qa_pair"]["question"],
        category=result["qa_pair"]["category"]
    )


@router.get("/knowledge-stats")
async def knowledge_stats(
    knowledge_service: KnowledgeService = Depends(get_knowledge_service),
    knowledge_base: KnowledgeBase = Depends(get_knowledge_base)
):
    try:
        entries = await knowledge_service.get_stats()
    except KnowledgeServiceError as e:
        logger.error(f"Failed to load knowledge stats: {e}")
        raise HTTPException(status_code=500, detail="Failed to load knowledge stats")

    return {
        "entries": entries,
        "document": knowledge_base.stats()
    }


@router.post("/reload-knowledge-base")
async def reload_knowledge_base(updater: KnowledgeBaseUpdater = Depends(get_kb_updater)):
    """Re-read the knowledge file and re-merge the stored entries."""
    try:
        stats = await updater.reload_knowledge()
    except KnowledgeServiceError as e:
        logger.error(f"Knowledge reload failed: {e}")
        raise HTTPException(status_code=500, detail="Knowledge reload failed")

    return {"success": True, "knowledge_base": stats}


@router.get("/current-knowledge-base", response_class=PlainTextResponse)
async def current_knowledge_base(knowledge_base: KnowledgeBase = Depends(get_knowledge_base)):
    """The merged knowledge document as served to the LLM."""
    return PlainTextResponse(knowledge_base.document, media_type="text/markdown")
