from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from replydesk.core.config import settings
from replydesk.core.logging import get_logger
from replydesk.services.retrieval.terms import fold_case
from replydesk.utils.debug_log import debug_log

logger = get_logger(__name__)

_CONFIDENCE_RE = re.compile(
    r"\[\s*(?:GÜVEN|GUVEN|CONFIDENCE)\s*:\s*(YÜKSEK|YUKSEK|ORTA|DÜŞÜK|DUSUK|HIGH|MEDIUM|LOW)\s*\]",
    re.IGNORECASE,
)
_CONFIDENCE_LEVELS = {
    "yüksek": "high",
    "yuksek": "high",
    "high": "high",
    "orta": "medium",
    "medium": "medium",
    "düşük": "low",
    "dusuk": "low",
    "low": "low",
}
_FAQ_CITATION_RE = re.compile(r"\[\s*(?:SSS|FAQ)_(\d+)\s*\]", re.IGNORECASE)
_DOC_CITATION_RE = re.compile(r"\[\s*(?:DOKÜMAN|DOKUMAN|DOC|DOCUMENT)_(\d+)\s*\]", re.IGNORECASE)
_BARE_SOURCE_RE = re.compile(r"\[\s*(?:SSS|FAQ|DOKÜMAN|DOKUMAN|DOC)\s*\]", re.IGNORECASE)
_PRODUCT_TAG_RE = re.compile(r"\[\s*(?:ÜRÜN|URUN|PRODUCT)_\d+\s*\]", re.IGNORECASE)
_BOLD_RE = re.compile(r"(\*\*|__)([^*_\n]+?)\1")
_ITALIC_RE = re.compile(r"\*([^*\n]+)\*")
_LINK_RE = re.compile(r"\[([^\]\n]+)\]\([^)\s]+\)")
_TRAILING_OFFER_RE = re.compile(
    r"(?:başka\s+bir\s+(?:konuda|şeyde)\s+yardımcı\s+olabilir\s+miyim|başka\s+bir\s+sorunuz\s+var\s+mı"
    r"|is\s+there\s+anything\s+else\s+i\s+can\s+help(?:\s+you)?\s+with|anything\s+else\s+i\s+can\s+do\s+for\s+you"
    r"|let\s+me\s+know\s+if\s+you\s+need\s+anything\s+else)\s*[?.!]*",
    re.IGNORECASE,
)
_NUMERIC_CLAIM_RE = re.compile(
    r"(?:[₺$€]\s*\d)"
    r"|(?:\d+(?:[.,]\d+)?\s*(?:%|₺|\$|€"
    r"|(?:tl|lira|gün|saat|dakika|hafta|ay|yıl|adet|kg|gram|gr|cm|mm|metre"
    r"|usd|eur|days?|hours?|minutes?|weeks?|months?|years?|pieces?|items?)(?!\w)))"
    r"|(?:\b\d{1,2}[./]\d{1,2}[./]\d{2,4}\b)",
    re.IGNORECASE,
)
_SPACE_RUN_RE = re.compile(r"[ \t\f\v]+")
_SPACE_BEFORE_PUNCT_RE = re.compile(r" +([.,!?;:])")
_BLANK_LINES_RE = re.compile(r"\n{3,}")

NO_INFO_PHRASES = (
    "elimde yeterli bilgi bulunmuyor",
    "bu konuda bilgim yok",
    "müşteri hizmetlerine",
    "müşteri hizmetlerimize",
    "bilgi bulunamadı",
    "emin değilim",
    "net bir bilgi veremiyorum",
    "don't have enough information",
    "do not have enough information",
    "i don't know",
    "i do not know",
    "contact our customer service",
    "i'm not sure",
    "couldn't find any information",
)

HEDGE_PHRASES = (
    "genellikle",
    "muhtemelen",
    "sanırım",
    "tahminimce",
    "büyük ihtimalle",
    "normalde",
    "tipik olarak",
    "çoğu zaman",
    "probably",
    "usually",
    "i think",
    "i believe",
    "typically",
    "normally",
    "most likely",
    "generally",
    "in most cases",
)

_MAX_CLEAN_PASSES = 5


def _clean_once(text: str) -> str:
    cleaned = _CONFIDENCE_RE.sub("", text)
    cleaned = _FAQ_CITATION_RE.sub("", cleaned)
    cleaned = _DOC_CITATION_RE.sub("", cleaned)
    cleaned = _BARE_SOURCE_RE.sub("", cleaned)
    cleaned = _PRODUCT_TAG_RE.sub("", cleaned)
    cleaned = _LINK_RE.sub(r"\1", cleaned)
    cleaned = _BOLD_RE.sub(r"\2", cleaned)
    cleaned = _ITALIC_RE.sub(r"\1", cleaned)
    cleaned = _TRAILING_OFFER_RE.sub("", cleaned)
    cleaned = _SPACE_RUN_RE.sub(" ", cleaned)
    cleaned = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", cleaned)
    cleaned = "\n".join(line.strip() for line in cleaned.split("\n"))
    cleaned = _BLANK_LINES_RE.sub("\n\n", cleaned)
    return cleaned.strip()


def clean_response_tags(text: Optional[str]) -> str:
    """Strip confidence and citation tags, markdown emphasis and links, and closing offers."""
    current = text or ""
    for _ in range(_MAX_CLEAN_PASSES):
        cleaned = _clean_once(current)
        if cleaned == current:
            break
        current = cleaned
    return current


@dataclass(frozen=True)
class HallucinationAssessment:
    score: int
    level: str
    reasons: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ValidationResult:
    confidence: str
    citations: Dict[str, List[int]]
    hallucination_risk: HallucinationAssessment
    cleaned_text: str
    invalid_citations: List[str] = field(default_factory=list)
    has_valid_citations: bool = False
    no_info_response: bool = False

    @property
    def citation_count(self) -> int:
        return sum(len(values) for values in self.citations.values())

    def telemetry(self) -> Dict[str, object]:
        return {
            "confidence": self.confidence,
            "citations": self.citations,
            "invalid_citations": self.invalid_citations,
            "has_valid_citations": self.has_valid_citations,
            "no_info_response": self.no_info_response,
            "hallucination_risk": {
                "score": self.hallucination_risk.score,
                "level": self.hallucination_risk.level,
                "reasons": self.hallucination_risk.reasons,
            },
        }


def _unique_ints(values: Iterable[str]) -> List[int]:
    seen: List[int] = []
    for value in values:
        number = int(value)
        if number not in seen:
            seen.append(number)
    return seen


class ResponseValidator:
    """Scores generated replies for citation validity and hallucination risk. Never raises."""

    def validate(
        self,
        generated_text: Optional[str],
        available_faq_ids: Sequence[int] = (),
        available_document_ids: Sequence[int] = (),
    ) -> ValidationResult:
        try:
            result = self._validate(generated_text or "", list(available_faq_ids), list(available_document_ids))
        except Exception:
            logger.exception("[VALIDATOR] validation failed; returning conservative result")
            result = self._conservative(generated_text)
        self._report(result)
        return result

    def _validate(self, text: str, faq_ids: List[int], document_ids: List[int]) -> ValidationResult:
        folded = fold_case(text)
        no_info = any(phrase in folded for phrase in NO_INFO_PHRASES)

        faq_cited = _unique_ints(_FAQ_CITATION_RE.findall(text))
        doc_cited = _unique_ints(_DOC_CITATION_RE.findall(text))
        known_documents = {int(value) for value in document_ids}
        valid_faq = [index for index in faq_cited if 1 <= index <= len(faq_ids)]
        valid_docs = [doc_id for doc_id in doc_cited if doc_id in known_documents]
        invalid = [f"FAQ_{index}" for index in faq_cited if index not in valid_faq]
        invalid += [f"DOC_{doc_id}" for doc_id in doc_cited if doc_id not in valid_docs]
        citation_total = len(valid_faq) + len(valid_docs)

        confidence = self._explicit_confidence(text)
        if confidence is None:
            if citation_total == 0:
                confidence = "medium" if no_info else "low"
            elif citation_total >= 2:
                confidence = "high"
            else:
                confidence = "medium"

        score = 0
        reasons: List[str] = []
        if citation_total == 0 and not no_info:
            score += 40
            reasons.append("no citations")
        hedges = [phrase for phrase in HEDGE_PHRASES if phrase in folded]
        if hedges:
            score += 10 * len(hedges)
            reasons.append(f"hedging phrases: {', '.join(hedges)}")
        if citation_total == 0 and _NUMERIC_CLAIM_RE.search(text):
            score += 30
            reasons.append("numeric claim without citation")
        if invalid:
            reasons.append(f"invalid citations: {', '.join(invalid)}")
        score = min(score, 100)

        return ValidationResult(
            confidence=confidence,
            citations={"faq": valid_faq, "document": valid_docs},
            hallucination_risk=HallucinationAssessment(score=score, level=self.risk_level(score), reasons=reasons),
            cleaned_text=clean_response_tags(text),
            invalid_citations=invalid,
            has_valid_citations=(citation_total > 0 or no_info) and not invalid,
            no_info_response=no_info,
        )

    @staticmethod
    def risk_level(score: int) -> str:
        low_max = int(getattr(settings, "HALLUCINATION_LOW_MAX", 20))
        medium_max = int(getattr(settings, "HALLUCINATION_MEDIUM_MAX", 50))
        if score <= low_max:
            return "low"
        if score <= medium_max:
            return "medium"
        return "high"

    @staticmethod
    def _explicit_confidence(text: str) -> Optional[str]:
        match = _CONFIDENCE_RE.search(text)
        if not match:
            return None
        return _CONFIDENCE_LEVELS.get(fold_case(match.group(1)))

    @staticmethod
    def _conservative(generated_text: Optional[str]) -> ValidationResult:
        try:
            cleaned = clean_response_tags(generated_text)
        except Exception:
            cleaned = str(generated_text or "").strip()
        return ValidationResult(
            confidence="low",
            citations={"faq": [], "document": []},
            hallucination_risk=HallucinationAssessment(score=100, level="high", reasons=["validation error"]),
            cleaned_text=cleaned,
        )

    @staticmethod
    def _report(result: ValidationResult) -> None:
        if result.hallucination_risk.level == "high":
            logger.warning(
                f"[VALIDATOR] high hallucination risk score={result.hallucination_risk.score} "
                f"reasons={result.hallucination_risk.reasons}"
            )
        debug_log(
            {
                "location": "validator.validate",
                "message": "reply validated",
                "data": result.telemetry(),
            }
        )


response_validator = ResponseValidator()
