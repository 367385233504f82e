from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional


class Corpus(str, enum.Enum):
    FAQ = "faq"
    DOCUMENT = "document"
    PRODUCT = "product"


@dataclass(frozen=True)
class CorpusRecord:
    """A row as handed out by a corpus store.

    ``searchable_text`` is the lowercased concatenation of the fields the
    keyword channel matches against; ``data`` carries the display fields.
    """

    record_id: str
    searchable_text: str
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RetrievalCandidate:
    corpus: Corpus
    record_id: str
    record: Dict[str, Any]
    searchable_text: str
    distance: Optional[float] = None
    keyword_matches: int = 0
    match_score: float = 0.0

    @property
    def similarity(self) -> Optional[float]:
        if self.distance is None:
            return None
        return 1.0 - self.distance

    def with_score(self, score: float) -> "RetrievalCandidate":
        return replace(self, match_score=score)
