from __future__ import annotations

from typing import Dict, List, Sequence

from replydesk.services.retrieval.types import RetrievalCandidate


def reciprocal_rank_fusion(
    semantic: Sequence[RetrievalCandidate],
    keyword: Sequence[RetrievalCandidate],
    *,
    limit: int,
    k: int = 60,
    semantic_weight: float = 0.6,
    keyword_weight: float = 0.4,
) -> List[RetrievalCandidate]:
    """Merge two ranked lists by weighted ``1 / (k + rank + 1)`` summed per record."""
    scores: Dict[str, float] = {}
    merged: Dict[str, RetrievalCandidate] = {}
    for weight, ranked in ((semantic_weight, semantic), (keyword_weight, keyword)):
        for rank, candidate in enumerate(ranked):
            scores[candidate.record_id] = scores.get(candidate.record_id, 0.0) + weight * (1.0 / (k + rank + 1))
            existing = merged.get(candidate.record_id)
            if existing is None:
                merged[candidate.record_id] = candidate
            elif existing.distance is None and candidate.distance is not None:
                merged[candidate.record_id] = candidate
    # sorted() is stable, so ties keep semantic-then-keyword discovery order
    ordered = sorted(merged, key=lambda record_id: scores[record_id], reverse=True)
    return [merged[record_id].with_score(scores[record_id]) for record_id in ordered[: max(0, limit)]]


def waterfall_merge(
    semantic: Sequence[RetrievalCandidate],
    keyword: Sequence[RetrievalCandidate],
    *,
    total_terms: int,
    limit: int,
) -> List[RetrievalCandidate]:
    """Tiered product merge: full, partial (>= 2), single, then semantic-only.

    Candidates must already carry ``keyword_matches``. Each tier keeps
    semantic-then-keyword discovery order and is exhausted before the next.
    """
    if limit <= 0:
        return []
    discovered: Dict[str, RetrievalCandidate] = {}
    semantic_ids = set()
    for candidate in semantic:
        semantic_ids.add(candidate.record_id)
        discovered.setdefault(candidate.record_id, candidate)
    for candidate in keyword:
        discovered.setdefault(candidate.record_id, candidate)

    pool = list(discovered.values())
    tiers = [
        [c for c in pool if total_terms > 0 and c.keyword_matches == total_terms],
        [c for c in pool if 2 <= c.keyword_matches < total_terms],
        [c for c in pool if c.keyword_matches == 1 and c.keyword_matches < total_terms],
        [c for c in pool if c.keyword_matches == 0 and c.record_id in semantic_ids],
    ]

    results: List[RetrievalCandidate] = []
    for tier_rank, tier in enumerate(tiers):
        for candidate in tier:
            results.append(candidate.with_score(float(len(tiers) - tier_rank)))
            if len(results) >= limit:
                return results
    return results
