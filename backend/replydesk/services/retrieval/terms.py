from __future__ import annotations

import re
from typing import FrozenSet, List, Optional

STOP_WORDS: FrozenSet[str] = frozenset(
    """
    bir ve ile de da için ne nasıl nedir mi mı mu mü
    bu şu o ben sen biz siz onlar var yok
    a an the is are was were be been being
    to of in for on with at by from
    """.split()
)

PRODUCT_STOP_WORDS: FrozenSet[str] = STOP_WORDS | frozenset(
    """
    ürün ürünler fiyat fiyatı kaç kadar
    product products price how much have do you any
    merhaba selam hello hi hey istiyorum arıyorum göster want looking show
    """.split()
)

_NON_WORD_RE = re.compile(r"[^\w\s]|_", re.UNICODE)
_SPEAKER_PREFIX_RE = re.compile(r"^(kullanıcı|asistan|müşteri|user|assistant|customer)\s*:\s*", re.IGNORECASE)


def fold_case(text: Optional[str]) -> str:
    """Lowercase with the Turkish dotted capital I folded to a plain ``i``."""
    return (text or "").replace("İ", "i").lower()


def extract_terms(
    query: Optional[str],
    *,
    stop_words: FrozenSet[str] = STOP_WORDS,
    max_terms: int = 10,
) -> List[str]:
    words = _NON_WORD_RE.sub(" ", fold_case(query)).split()
    terms: List[str] = []
    seen = set()
    for word in words:
        if len(word) < 2 or word in stop_words or word in seen:
            continue
        seen.add(word)
        terms.append(word)
        if len(terms) >= max_terms:
            break
    return terms


def sanitize_product_query(query: Optional[str]) -> str:
    """Keep the latest line of a multi-line query and drop a speaker prefix."""
    lines = [line.strip() for line in (query or "").strip().splitlines() if line.strip()]
    if not lines:
        return ""
    return _SPEAKER_PREFIX_RE.sub("", lines[-1]).strip()


def count_matches(terms: List[str], searchable_text: str) -> int:
    haystack = fold_case(searchable_text)
    return sum(1 for term in terms if term in haystack)
