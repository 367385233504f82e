from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence

from replydesk.core.config import settings
from replydesk.core.exceptions import LLMResponseError
from replydesk.core.logging import get_logger
from replydesk.prompts.system_prompts import clarification_question, intent_classification_prompt
from replydesk.services.contracts import ChatModelClient
from replydesk.services.intent import lexicon
from replydesk.services.intent.types import IntentLabel, IntentResult
from replydesk.services.retrieval.terms import PRODUCT_STOP_WORDS, extract_terms, fold_case

logger = get_logger(__name__)

_FALLBACK_PATTERNS = (
    (IntentLabel.GREETING, re.compile(r"merhaba|selam|günaydın|iyi\s*günler|\bhello\b|\bhi\b")),
    (IntentLabel.THANKS, re.compile(r"teşekkür|sağ\s*ol|thank")),
    (IntentLabel.FAREWELL, re.compile(r"görüşürüz|hoşça\s*kal|goodbye|\bbye\b")),
    (IntentLabel.ORDER_QUERY, re.compile(r"sipariş|kargo|teslimat|\border|shipping|delivery|tracking")),
    (IntentLabel.HUMAN_REQUEST, re.compile(r"müşteri\s*temsilci|canlı\s*destek|temsilci|\binsan|real\s*person|human|\bagent\b")),
    (IntentLabel.COMPLAINT, re.compile(r"şikayet|memnun\s*değil|berbat|complain|broken|damaged|kırık")),
)

_VALID_LLM_LABELS = {label.value: label for label in IntentLabel}


class IntentClassifier:
    """Classifies a burst of customer messages in three tiers.

    1. Fast path for lone greetings, thanks, farewells and confirmations.
    2. Lexicon scoring of product vocabulary (category, attribute, colour).
    3. LLM classification with recent context, backed by a regex fallback
       that never fails.
    """

    def __init__(self, llm: Optional[ChatModelClient] = None, *, reply_language: Optional[str] = None):
        if llm is None:
            from replydesk.services.ai.llm_service import llm_service

            llm = llm_service
        self._llm = llm
        self.reply_language = reply_language or str(getattr(settings, "REPLY_LANGUAGE", "tr"))

    async def classify(self, messages: Sequence[str], context: Sequence[str] = ()) -> IntentResult:
        cleaned = [str(message).strip() for message in messages if str(message or "").strip()]
        combined = "\n".join(cleaned)
        if not cleaned:
            return IntentResult(intents=frozenset({IntentLabel.OTHER}), confidence=0, source="fast_path")

        scored = lexicon.score_text(combined)

        if len(cleaned) == 1 and not scored.has_product_vocabulary:
            social = lexicon.match_social_exact(cleaned[0])
            if social:
                return IntentResult(
                    intents=frozenset(social),
                    confidence=0,
                    product_keywords=[],
                    combined_query=combined,
                    source="fast_path",
                )

        product_threshold = int(getattr(settings, "INTENT_PRODUCT_THRESHOLD", 70))
        clarify_threshold = int(getattr(settings, "INTENT_CLARIFY_THRESHOLD", 40))
        social_labels = self._social_labels(cleaned)

        if scored.score >= product_threshold:
            return IntentResult(
                intents=frozenset({IntentLabel.PRODUCT_QUERY, *social_labels}),
                confidence=scored.score,
                product_keywords=self._keywords(combined),
                combined_query=combined,
                source="lexicon",
            )
        if scored.score >= clarify_threshold:
            return IntentResult(
                intents=frozenset({IntentLabel.CLARIFICATION_NEEDED, *social_labels}),
                confidence=scored.score,
                product_keywords=self._keywords(combined),
                combined_query=combined,
                clarification_question=clarification_question(
                    lexicon.clarification_kind(scored),
                    self.reply_language,
                ),
                source="lexicon",
            )

        return await self._llm_classify(combined, list(context), lexicon_score=scored.score)

    async def _llm_classify(self, combined: str, context: List[str], *, lexicon_score: int) -> IntentResult:
        turns = max(0, int(getattr(settings, "INTENT_CONTEXT_TURNS", 6)))
        recent = [line for line in context if str(line or "").strip()][-turns:] if turns else []
        user_parts = []
        if recent:
            user_parts.append("Earlier conversation:\n" + "\n".join(recent))
        user_parts.append("Customer message(s):\n" + combined)
        try:
            parsed = await self._llm.generate_chat_json(
                messages=[
                    {"role": "system", "content": intent_classification_prompt()},
                    {"role": "user", "content": "\n\n".join(user_parts)},
                ],
                model=str(getattr(settings, "INTENT_MODEL", "") or "") or None,
                temperature=0.1,
                max_tokens=int(getattr(settings, "INTENT_MAX_TOKENS", 300)),
            )
        except LLMResponseError as exc:
            logger.warning(f"[INTENT] unparsable classification output; using pattern fallback: {exc}")
            return self.fallback_classify(combined, confidence=lexicon_score)
        except Exception as exc:
            logger.error(f"[INTENT] LLM classification failed: {exc}")
            return self.fallback_classify(combined, confidence=lexicon_score)

        if not isinstance(parsed, dict) or not isinstance(parsed.get("intents", []), list):
            logger.warning("[INTENT] unparsable classification output; using pattern fallback")
            return self.fallback_classify(combined, confidence=lexicon_score)

        labels = set()
        for value in parsed.get("intents") or []:
            label = _VALID_LLM_LABELS.get(str(value).strip().lower())
            if label is not None:
                labels.add(label)
        if not labels:
            labels.add(IntentLabel.OTHER)

        keywords_raw = parsed.get("product_keywords") or []
        keywords: List[str] = []
        if isinstance(keywords_raw, list):
            for value in keywords_raw:
                keyword = fold_case(str(value)).strip()
                if keyword and keyword not in keywords:
                    keywords.append(keyword)

        return IntentResult(
            intents=frozenset(labels),
            confidence=lexicon_score,
            product_keywords=keywords[: int(getattr(settings, "KEYWORD_MAX_TERMS", 10))],
            combined_query=combined,
            uses_context=bool(recent),
            source="llm",
        )

    def fallback_classify(self, combined: str, *, confidence: int = 0) -> IntentResult:
        """Pattern-only classification used when the LLM tier is unusable."""
        folded = fold_case(combined)
        labels = [label for label, pattern in _FALLBACK_PATTERNS if pattern.search(folded)]
        keywords: List[str] = []
        if lexicon.score_text(combined).has_product_vocabulary:
            labels.append(IntentLabel.PRODUCT_QUERY)
            keywords = self._keywords(combined)
        if not labels and "?" in combined:
            labels.append(IntentLabel.GENERAL_QUESTION)
        if not labels:
            labels.append(IntentLabel.OTHER)
        return IntentResult(
            intents=frozenset(labels),
            confidence=confidence,
            product_keywords=keywords,
            combined_query=combined,
            source="fallback",
        )

    @staticmethod
    def _social_labels(messages: Iterable[str]) -> List[IntentLabel]:
        labels: List[IntentLabel] = []
        for message in messages:
            for label in lexicon.match_social_prefix(message):
                if label is not IntentLabel.CONFIRMATION and label not in labels:
                    labels.append(label)
        return labels

    @staticmethod
    def _keywords(text: str) -> List[str]:
        return extract_terms(
            text,
            stop_words=PRODUCT_STOP_WORDS,
            max_terms=int(getattr(settings, "INTENT_MAX_KEYWORDS", 5)),
        )
