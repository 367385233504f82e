from fastapi import APIRouter

from replydesk.api.deps import get_reranker, get_scheduler
from replydesk.core.config import settings
from replydesk.services.ai.llm_service import llm_service

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint with cache and pipeline counters."""
    return {
        "status": "healthy",
        "service": settings.PROJECT_NAME,
        "embedding_cache": llm_service.embedding_cache_stats(),
        "reranker": get_reranker().stats(),
        "scheduler": get_scheduler().stats(),
    }
