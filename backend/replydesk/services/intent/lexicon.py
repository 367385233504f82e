from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Pattern, Sequence, Tuple

from replydesk.core.config import settings
from replydesk.services.intent.types import IntentLabel
from replydesk.services.retrieval.terms import fold_case

CATEGORY_TERMS: Tuple[str, ...] = (
    "kolye", "bileklik", "yüzük", "yüzüğ", "küpe", "halhal", "takı", "aksesuar", "zincir",
    "madalyon", "charm", "set",
    "necklace", "bracelet", "ring", "earring", "anklet", "chain", "pendant", "jewelry", "jewellery",
)
ATTRIBUTE_TERMS: Tuple[str, ...] = (
    "taşlı", "altın", "gümüş", "çelik", "inci", "pırlanta", "zirkon", "baget", "dorika", "kaplama",
    "gold", "silver", "steel", "pearl", "diamond", "zircon", "stone", "plated",
)
COLOR_TERMS: Tuple[str, ...] = (
    "siyah", "beyaz", "mor", "fuşya", "pembe", "mavi", "yeşil", "kırmızı", "sarı", "turuncu",
    "lacivert", "gri",
    "black", "white", "purple", "pink", "blue", "green", "red", "yellow", "orange", "navy",
    "grey", "gray", "rose",
)
GENERAL_PRODUCT_TERMS: Tuple[str, ...] = (
    "fiyat", "ürün", "stok", "model", "beden", "renk",
    "price", "product", "stock", "size", "colour", "color",
)


def _prefix_pattern(terms: Sequence[str]) -> Pattern[str]:
    # Word-start match so Turkish suffixes ("kolyeler") still hit but "earring" does not hit "ring".
    # Terms of three letters or fewer must be whole words ("mor" vs "morning").
    alternatives = "|".join(
        re.escape(term) if len(term) > 3 else rf"{re.escape(term)}(?!\w)"
        for term in sorted(terms, key=len, reverse=True)
    )
    return re.compile(rf"(?<!\w)({alternatives})", re.UNICODE)


_CATEGORY_RE = _prefix_pattern(CATEGORY_TERMS)
_ATTRIBUTE_RE = _prefix_pattern(ATTRIBUTE_TERMS)
_COLOR_RE = _prefix_pattern(COLOR_TERMS)
_GENERAL_RE = _prefix_pattern(GENERAL_PRODUCT_TERMS)

_SOCIAL_PATTERNS: Tuple[Tuple[IntentLabel, str], ...] = (
    (IntentLabel.GREETING, r"merhaba|selam|hey|hi|hello|günaydın|iyi\s*günler|iyi\s*akşamlar"),
    (IntentLabel.FAREWELL, r"görüşürüz|hoşça\s*kal|güle\s*güle|bye|goodbye"),
    (IntentLabel.THANKS, r"teşekkür|teşekkürler|sağ\s*ol|sağol|thanks|thank\s*you"),
    (IntentLabel.CONFIRMATION, r"evet|hayır|tamam|peki|olur|olmaz|ok|okay|yes|no"),
)
_SOCIAL_FULL_RE = tuple(
    (label, re.compile(rf"^(?:{pattern})\s*[!.?]*$", re.UNICODE)) for label, pattern in _SOCIAL_PATTERNS
)
_SOCIAL_PREFIX_RE = tuple(
    (label, re.compile(rf"^(?:{pattern})(?!\w)", re.UNICODE)) for label, pattern in _SOCIAL_PATTERNS
)


@dataclass(frozen=True)
class LexiconScore:
    score: int
    category_terms: Tuple[str, ...]
    attribute_terms: Tuple[str, ...]
    color_terms: Tuple[str, ...]
    general_terms: Tuple[str, ...]

    @property
    def has_product_vocabulary(self) -> bool:
        return bool(self.category_terms or self.attribute_terms or self.color_terms or self.general_terms)


def _distinct_hits(pattern: Pattern[str], text: str) -> Tuple[str, ...]:
    hits: List[str] = []
    for match in pattern.finditer(text):
        term = match.group(1)
        if term not in hits:
            hits.append(term)
    return tuple(hits)


def score_text(text: str) -> LexiconScore:
    folded = fold_case(text)
    categories = _distinct_hits(_CATEGORY_RE, folded)
    attributes = _distinct_hits(_ATTRIBUTE_RE, folded)
    colors = _distinct_hits(_COLOR_RE, folded)
    general = _distinct_hits(_GENERAL_RE, folded)

    score = (
        len(categories) * int(getattr(settings, "INTENT_CATEGORY_WEIGHT", 50))
        + len(attributes) * int(getattr(settings, "INTENT_ATTRIBUTE_WEIGHT", 30))
        + len(colors) * int(getattr(settings, "INTENT_COLOR_WEIGHT", 20))
    )
    if colors and not categories and not attributes:
        score = min(score, int(getattr(settings, "INTENT_COLOR_ONLY_CAP", 25)))
    elif attributes and not categories and not colors:
        score = min(score, int(getattr(settings, "INTENT_ATTRIBUTE_ONLY_CAP", 35)))
    return LexiconScore(
        score=min(score, 100),
        category_terms=categories,
        attribute_terms=attributes,
        color_terms=colors,
        general_terms=general,
    )


def clarification_kind(lexicon: LexiconScore) -> str:
    if not lexicon.category_terms and (lexicon.attribute_terms or lexicon.color_terms):
        return "ask_category"
    if lexicon.category_terms and not lexicon.attribute_terms:
        return "ask_attribute"
    return "generic"


def match_social_exact(text: str) -> List[IntentLabel]:
    folded = fold_case(text).strip()
    return [label for label, pattern in _SOCIAL_FULL_RE if pattern.match(folded)]


def match_social_prefix(text: str) -> List[IntentLabel]:
    folded = fold_case(text).strip()
    return [label for label, pattern in _SOCIAL_PREFIX_RE if pattern.match(folded)]
