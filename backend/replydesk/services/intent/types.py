from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional


class IntentLabel(str, enum.Enum):
    GREETING = "greeting"
    FAREWELL = "farewell"
    THANKS = "thanks"
    PRODUCT_QUERY = "product_query"
    ORDER_QUERY = "order_query"
    GENERAL_QUESTION = "general_question"
    COMPLAINT = "complaint"
    HUMAN_REQUEST = "human_request"
    CONFIRMATION = "confirmation"
    CLARIFICATION_NEEDED = "clarification_needed"
    OTHER = "other"


NON_PRODUCT_INTENTS: FrozenSet[IntentLabel] = frozenset(
    {
        IntentLabel.GREETING,
        IntentLabel.FAREWELL,
        IntentLabel.THANKS,
        IntentLabel.CONFIRMATION,
        IntentLabel.HUMAN_REQUEST,
    }
)


@dataclass(frozen=True)
class IntentResult:
    intents: FrozenSet[IntentLabel]
    confidence: int
    product_keywords: List[str] = field(default_factory=list)
    combined_query: str = ""
    uses_context: bool = False
    clarification_question: Optional[str] = None
    source: str = "fallback"

    def has(self, label: IntentLabel) -> bool:
        return label in self.intents


class ReplyAction(str, enum.Enum):
    GENERATE = "generate"
    CLARIFY = "clarify"
    HANDOFF = "handoff"


@dataclass(frozen=True)
class IntentStrategy:
    action: ReplyAction
    search_products: bool
    search_knowledge: bool


INTENT_STRATEGIES: Dict[IntentLabel, IntentStrategy] = {
    IntentLabel.GREETING: IntentStrategy(ReplyAction.GENERATE, False, False),
    IntentLabel.FAREWELL: IntentStrategy(ReplyAction.GENERATE, False, False),
    IntentLabel.THANKS: IntentStrategy(ReplyAction.GENERATE, False, False),
    IntentLabel.CONFIRMATION: IntentStrategy(ReplyAction.GENERATE, False, True),
    IntentLabel.PRODUCT_QUERY: IntentStrategy(ReplyAction.GENERATE, True, True),
    IntentLabel.ORDER_QUERY: IntentStrategy(ReplyAction.GENERATE, False, True),
    IntentLabel.GENERAL_QUESTION: IntentStrategy(ReplyAction.GENERATE, False, True),
    IntentLabel.COMPLAINT: IntentStrategy(ReplyAction.GENERATE, False, True),
    IntentLabel.HUMAN_REQUEST: IntentStrategy(ReplyAction.HANDOFF, False, False),
    IntentLabel.CLARIFICATION_NEEDED: IntentStrategy(ReplyAction.CLARIFY, False, False),
    IntentLabel.OTHER: IntentStrategy(ReplyAction.GENERATE, False, True),
}

_missing = set(IntentLabel) - set(INTENT_STRATEGIES)
if _missing:
    raise RuntimeError(f"intent labels without a strategy: {sorted(label.value for label in _missing)}")

_ACTION_PRIORITY = (ReplyAction.HANDOFF, ReplyAction.CLARIFY, ReplyAction.GENERATE)


@dataclass(frozen=True)
class RouteDecision:
    action: ReplyAction
    search_products: bool
    search_knowledge: bool


def should_search_products(result: IntentResult) -> bool:
    if result.has(IntentLabel.PRODUCT_QUERY):
        return True
    if result.intents and all(label in NON_PRODUCT_INTENTS for label in result.intents):
        return False
    return bool(result.product_keywords)


def resolve_route(result: IntentResult) -> RouteDecision:
    labels = result.intents or frozenset({IntentLabel.OTHER})
    strategies = [INTENT_STRATEGIES[label] for label in labels]
    actions = {strategy.action for strategy in strategies}
    action = next(candidate for candidate in _ACTION_PRIORITY if candidate in actions or candidate is ReplyAction.GENERATE)
    return RouteDecision(
        action=action,
        search_products=should_search_products(result),
        search_knowledge=any(strategy.search_knowledge for strategy in strategies),
    )
