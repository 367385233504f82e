from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Tuple

from replydesk.core.config import settings
from replydesk.core.logging import get_logger
from replydesk.services.contracts import CorpusStore, EmbeddingClient
from replydesk.services.retrieval.fusion import reciprocal_rank_fusion, waterfall_merge
from replydesk.services.retrieval.terms import (
    PRODUCT_STOP_WORDS,
    STOP_WORDS,
    count_matches,
    extract_terms,
    sanitize_product_query,
)
from replydesk.services.retrieval.types import Corpus, CorpusRecord, RetrievalCandidate

logger = get_logger(__name__)


class HybridRetriever:
    """Semantic + keyword search over the FAQ, document and product corpora.

    FAQ and document results are fused with reciprocal rank fusion; products
    use a keyword-match waterfall so exact attribute matches outrank merely
    similar items. Each channel degrades independently and ``search`` never
    raises.
    """

    def __init__(self, stores: Mapping[Corpus, CorpusStore], embedder: Optional[EmbeddingClient] = None):
        if embedder is None:
            from replydesk.services.ai.llm_service import llm_service

            embedder = llm_service
        self._stores: Dict[Corpus, CorpusStore] = dict(stores)
        self._embedder = embedder

    def has_corpus(self, corpus: Corpus) -> bool:
        return Corpus(corpus) in self._stores

    async def search(self, corpus: Corpus, query: str, limit: int) -> List[RetrievalCandidate]:
        corpus = Corpus(corpus)
        store = self._stores.get(corpus)
        if store is None or limit <= 0 or not (query or "").strip():
            return []

        is_product = corpus is Corpus.PRODUCT
        clean_query = sanitize_product_query(query) if is_product else query.strip()
        if not clean_query:
            return []
        terms = extract_terms(
            clean_query,
            stop_words=PRODUCT_STOP_WORDS if is_product else STOP_WORDS,
            max_terms=int(getattr(settings, "KEYWORD_MAX_TERMS", 10)),
        )
        fetch_limit = limit * 2

        semantic, semantic_ok = await self._semantic_channel(corpus, store, clean_query, terms, fetch_limit)
        keyword, keyword_ok = await self._keyword_channel(corpus, store, terms, fetch_limit)
        if not semantic_ok and not keyword_ok:
            logger.warning(f"[HYBRID] both channels failed for corpus={corpus.value}; returning no results")
            return []

        if is_product:
            results = waterfall_merge(semantic, keyword, total_terms=len(terms), limit=limit)
        else:
            results = reciprocal_rank_fusion(
                semantic,
                keyword,
                limit=limit,
                k=int(getattr(settings, "RRF_K", 60)),
                semantic_weight=float(getattr(settings, "RRF_SEMANTIC_WEIGHT", 0.6)),
                keyword_weight=float(getattr(settings, "RRF_KEYWORD_WEIGHT", 0.4)),
            )
        logger.info(
            f"[HYBRID] corpus={corpus.value} terms={terms} semantic={len(semantic)} "
            f"keyword={len(keyword)} merged={len(results)}"
        )
        return results

    async def _semantic_channel(
        self,
        corpus: Corpus,
        store: CorpusStore,
        query: str,
        terms: List[str],
        limit: int,
    ) -> Tuple[List[RetrievalCandidate], bool]:
        floor = float(getattr(settings, "SEMANTIC_SIMILARITY_FLOOR", 0.3))
        try:
            vector = await self._embedder.generate_embedding(query)
            rows = await store.nearest_neighbors(vector, limit)
        except Exception as exc:
            logger.warning(f"[HYBRID] semantic channel failed for corpus={corpus.value}: {exc}")
            return [], False
        candidates = []
        for record, distance in rows:
            if distance is None or 1.0 - float(distance) < floor:
                continue
            candidates.append(self._candidate(corpus, record, terms, distance=float(distance)))
        return candidates, True

    async def _keyword_channel(
        self,
        corpus: Corpus,
        store: CorpusStore,
        terms: List[str],
        limit: int,
    ) -> Tuple[List[RetrievalCandidate], bool]:
        if not terms:
            return [], True
        try:
            records = await store.keyword_search(terms, limit)
        except Exception as exc:
            logger.warning(f"[HYBRID] keyword channel failed for corpus={corpus.value}: {exc}")
            return [], False
        candidates = [self._candidate(corpus, record, terms) for record in records]
        # Rank the keyword channel by how many distinct terms each record matches.
        candidates.sort(key=lambda c: c.keyword_matches, reverse=True)
        return candidates, True

    @staticmethod
    def _candidate(
        corpus: Corpus,
        record: CorpusRecord,
        terms: List[str],
        *,
        distance: Optional[float] = None,
    ) -> RetrievalCandidate:
        return RetrievalCandidate(
            corpus=corpus,
            record_id=record.record_id,
            record=dict(record.data),
            searchable_text=record.searchable_text,
            distance=distance,
            keyword_matches=count_matches(terms, record.searchable_text),
        )
