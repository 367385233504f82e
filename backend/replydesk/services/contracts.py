from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from replydesk.schemas.chat import ReplyPayload
from replydesk.services.conversations.types import ConversationSnapshot, InboundReceipt, StoredMessage
from replydesk.services.retrieval.types import Corpus, CorpusRecord


class EmbeddingClient(Protocol):
    async def generate_embedding(self, text: str) -> List[float]:
        ...


class ChatModelClient(Protocol):
    async def generate_chat_response(
        self,
        messages: List[dict],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> str:
        ...

    async def generate_chat_json(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = 300,
    ) -> Dict[str, Any]:
        ...

    async def generate_chat_with_tools(
        self,
        *,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        tool_choice: str = "auto",
    ) -> Dict[str, Any]:
        ...


class CorpusStore(Protocol):
    corpus: Corpus

    async def nearest_neighbors(self, vector: List[float], limit: int) -> List[Tuple[CorpusRecord, float]]:
        ...

    async def keyword_search(self, terms: Sequence[str], limit: int) -> List[CorpusRecord]:
        ...


class ConversationStore(Protocol):
    async def record_inbound(
        self,
        conversation_id: int,
        content: str,
        *,
        private: bool = False,
        channel: Optional[str] = None,
    ) -> InboundReceipt:
        ...

    async def snapshot(self, conversation_id: int) -> Optional[ConversationSnapshot]:
        ...

    async def pending_batch(self, conversation_id: int) -> List[StoredMessage]:
        ...

    async def history(self, conversation_id: int, limit: int) -> List[StoredMessage]:
        ...

    async def commit_reply(
        self,
        conversation_id: int,
        generation: int,
        reply: ReplyPayload,
        covered_inbound_id: int,
    ) -> Optional[int]:
        """Persist ``reply`` only if no reply has covered ``generation`` yet; return its message id.

        ``covered_inbound_id`` is the newest inbound message the reply answers.
        """
        ...

    async def mark_handoff(self, conversation_id: int, generation: int, note: str, covered_inbound_id: int) -> bool:
        ...

    async def update_attributes(self, conversation_id: int, attributes: Dict[str, Any]) -> None:
        ...


class ReplyDelivery(Protocol):
    async def deliver(self, conversation_id: int, message_id: int, reply: ReplyPayload) -> None:
        ...


class TokenProvider(Protocol):
    async def get_token(self) -> Optional[str]:
        ...


class OrderLookupClient(Protocol):
    async def lookup_order(self, *, order_number: str, email: str) -> Dict[str, Any]:
        ...
