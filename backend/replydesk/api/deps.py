from typing import Optional

from replydesk.core.config import settings
from replydesk.services.ai.llm_service import llm_service
from replydesk.services.chat.generation import ReplyGenerator
from replydesk.services.chat.validator import response_validator
from replydesk.services.conversations.repository import SqlConversationStore
from replydesk.services.integrations.order_lookup import StoreOrderLookupClient
from replydesk.services.intent.classifier import IntentClassifier
from replydesk.services.retrieval.hybrid import HybridRetriever
from replydesk.services.retrieval.product_finder import ProductFinder
from replydesk.services.retrieval.rerank_service import CandidateReranker
from replydesk.services.retrieval.stores import build_sql_stores
from replydesk.services.scheduler.service import ResponseScheduler

_store: Optional[SqlConversationStore] = None
_reranker: Optional[CandidateReranker] = None
_scheduler: Optional[ResponseScheduler] = None


def get_conversation_store() -> SqlConversationStore:
    global _store
    if _store is None:
        _store = SqlConversationStore()
    return _store


def get_reranker() -> CandidateReranker:
    global _reranker
    if _reranker is None:
        _reranker = CandidateReranker(llm_service)
    return _reranker


def get_scheduler() -> ResponseScheduler:
    """Wire the reply pipeline once per process against the SQL stores."""
    global _scheduler
    if _scheduler is None:
        from replydesk.db.session import AsyncSessionLocal

        retriever = HybridRetriever(build_sql_stores(AsyncSessionLocal), embedder=llm_service)
        order_client = StoreOrderLookupClient()
        generator = ReplyGenerator(
            retriever=retriever,
            product_finder=ProductFinder(retriever, get_reranker()),
            order_client=order_client if order_client.available() else None,
            llm=llm_service,
        )
        _scheduler = ResponseScheduler(
            store=get_conversation_store(),
            classifier=IntentClassifier(llm_service, reply_language=settings.REPLY_LANGUAGE),
            generator=generator,
            validator=response_validator,
        )
    return _scheduler
