from __future__ import annotations

import re
from typing import Any, Dict, List, Optional, Sequence

from replydesk.core.config import settings
from replydesk.core.logging import get_logger
from replydesk.prompts.system_prompts import rerank_prompt
from replydesk.services.contracts import ChatModelClient
from replydesk.services.retrieval.terms import fold_case
from replydesk.services.retrieval.types import RetrievalCandidate
from replydesk.utils.debug_log import debug_log
from replydesk.utils.json_extract import extract_first_json_object

logger = get_logger(__name__)

_EXCLUDE_SPLIT_RE = re.compile(r"\s*(?:[,;/]|\s(?:and|or|ve|veya|ya da)\s)\s*", re.IGNORECASE)


def parse_exclude_terms(raw: Optional[str]) -> List[str]:
    """``"gold plating, silver ve taşlı"`` -> ``["gold plating", "silver", "taşlı"]``."""
    if not raw:
        return []
    terms: List[str] = []
    for part in _EXCLUDE_SPLIT_RE.split(fold_case(raw)):
        clean = part.strip(" .!?\"'")
        if len(clean) >= 2 and clean not in terms:
            terms.append(clean)
    return terms


def apply_exclusions(candidates: Sequence[RetrievalCandidate], exclude_terms: Sequence[str]) -> List[RetrievalCandidate]:
    if not exclude_terms:
        return list(candidates)
    kept = []
    for candidate in candidates:
        record = candidate.record or {}
        haystack = fold_case(f"{record.get('title') or ''} {record.get('description') or ''}")
        if any(term in haystack for term in exclude_terms):
            continue
        kept.append(candidate)
    return kept


def _price_range(record: Dict[str, Any]) -> str:
    low, high = record.get("min_price"), record.get("max_price")
    if low is None and high is None:
        return ""
    if low is None or high is None or low == high:
        return f"{low if low is not None else high}"
    return f"{low}-{high}"


class CandidateReranker:
    """Asks the LLM to pick the best ``final_limit`` products out of a larger pool.

    Reranking is a refinement only: any failure returns the pre-rerank order.
    """

    def __init__(self, llm: Optional[ChatModelClient] = None):
        if llm is None:
            from replydesk.services.ai.llm_service import llm_service

            llm = llm_service
        self._llm = llm
        self._stats = {"calls": 0, "skipped": 0, "fallbacks": 0, "backfilled": 0}

    def stats(self) -> Dict[str, int]:
        return dict(self._stats)

    async def rerank(
        self,
        query: str,
        candidates: Sequence[RetrievalCandidate],
        final_limit: int,
        exclude_terms: Optional[str] = None,
    ) -> List[RetrievalCandidate]:
        pool = apply_exclusions(candidates, parse_exclude_terms(exclude_terms))
        if final_limit <= 0:
            return []
        if len(pool) <= final_limit or not bool(getattr(settings, "RERANK_ENABLED", True)):
            self._stats["skipped"] += 1
            return pool[:final_limit]

        self._stats["calls"] += 1
        by_id = {candidate.record_id: candidate for candidate in pool}
        try:
            raw = await self._llm.generate_chat_response(
                messages=[
                    {"role": "system", "content": rerank_prompt(final_limit)},
                    {"role": "user", "content": self._build_prompt(query, pool)},
                ],
                temperature=0.0,
                max_tokens=int(getattr(settings, "RERANK_MAX_TOKENS", 200)),
                model=str(getattr(settings, "RERANK_MODEL", "") or "") or None,
            )
        except Exception as exc:
            return self._fallback(pool, final_limit, reason=f"llm_error: {exc}")

        parsed = extract_first_json_object(raw)
        ids = parsed.get("ids") if isinstance(parsed, dict) else None
        if not isinstance(ids, list):
            return self._fallback(pool, final_limit, reason="unparsable_response")

        selected: List[RetrievalCandidate] = []
        seen = set()
        for value in ids:
            record_id = str(value).strip()
            if record_id in by_id and record_id not in seen:
                seen.add(record_id)
                selected.append(by_id[record_id])
        if not selected:
            return self._fallback(pool, final_limit, reason="no_valid_ids")

        if len(selected) < final_limit:
            self._stats["backfilled"] += 1
            for candidate in pool:
                if len(selected) >= final_limit:
                    break
                if candidate.record_id not in seen:
                    seen.add(candidate.record_id)
                    selected.append(candidate)
        return selected[:final_limit]

    def _fallback(self, pool: List[RetrievalCandidate], final_limit: int, *, reason: str) -> List[RetrievalCandidate]:
        self._stats["fallbacks"] += 1
        logger.warning(f"[RERANK] falling back to retrieval order ({reason})")
        debug_log(
            {
                "location": "rerank_service.fallback",
                "message": "rerank fallback",
                "data": {"reason": reason[:200], "pool_size": len(pool), "final_limit": final_limit},
            }
        )
        return pool[:final_limit]

    @staticmethod
    def _build_prompt(query: str, pool: Sequence[RetrievalCandidate]) -> str:
        max_chars = int(getattr(settings, "RERANK_DESCRIPTION_CHARS", 160))
        lines = [f"Request: {query.strip()}", "", "Products:"]
        for candidate in pool:
            record = candidate.record or {}
            brand = " / ".join(str(part) for part in (record.get("vendor"), record.get("product_type")) if part)
            description = " ".join(str(record.get("description") or "").split())[:max_chars]
            fields = [f"id={candidate.record_id}", str(record.get("title") or "")]
            if brand:
                fields.append(brand)
            price = _price_range(record)
            if price:
                fields.append(f"price={price}")
            if description:
                fields.append(description)
            lines.append("- " + " | ".join(fields))
        return "\n".join(lines)
