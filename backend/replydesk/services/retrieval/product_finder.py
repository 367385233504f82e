from __future__ import annotations

from typing import List, Optional

from replydesk.core.config import settings
from replydesk.services.retrieval.hybrid import HybridRetriever
from replydesk.services.retrieval.rerank_service import CandidateReranker
from replydesk.services.retrieval.types import Corpus, RetrievalCandidate


class ProductFinder:
    """Retrieve an oversized product pool, apply exclusions, then rerank it down."""

    def __init__(self, retriever: HybridRetriever, reranker: CandidateReranker):
        self.retriever = retriever
        self.reranker = reranker

    async def find(
        self,
        query: str,
        *,
        exclude_terms: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[RetrievalCandidate]:
        final_limit = limit or int(getattr(settings, "RERANK_FINAL_LIMIT", 5))
        pool_size = max(final_limit, int(getattr(settings, "RERANK_CANDIDATE_POOL", 20)))
        if not self.retriever.has_corpus(Corpus.PRODUCT):
            return []
        pool = await self.retriever.search(Corpus.PRODUCT, query, pool_size)
        if not pool:
            return []
        return await self.reranker.rerank(query, pool, final_limit, exclude_terms=exclude_terms)
