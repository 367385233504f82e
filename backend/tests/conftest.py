from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from replydesk.core.config import settings
from replydesk.schemas.chat import ReplyPayload
from replydesk.services.conversations.types import ConversationSnapshot, InboundReceipt, StoredMessage
from replydesk.services.retrieval.types import Corpus, CorpusRecord


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class InMemoryConversationStore:
    """Conversation log with the same generation bookkeeping as the SQL store."""

    def __init__(self, clock: FakeClock, channel: str = "web_widget"):
        self.clock = clock
        self.channel = channel
        self.conversations: Dict[int, Dict[str, Any]] = {}
        self.messages: List[Tuple[int, StoredMessage]] = []
        self.replies: List[Tuple[int, int, ReplyPayload]] = []
        self.handoff_notes: List[Tuple[int, int, str]] = []
        self._next_id = 1

    def _add(self, conversation_id: int, direction: str, content: str, private: bool) -> StoredMessage:
        message = StoredMessage(
            id=self._next_id,
            direction=direction,
            content=content,
            created_at=self.clock(),
            private=private,
        )
        self._next_id += 1
        self.messages.append((conversation_id, message))
        return message

    def _conversation_messages(self, conversation_id: int) -> List[StoredMessage]:
        return [message for cid, message in self.messages if cid == conversation_id]

    async def record_inbound(
        self,
        conversation_id: int,
        content: str,
        *,
        private: bool = False,
        channel: Optional[str] = None,
    ) -> InboundReceipt:
        conversation = self.conversations.setdefault(
            conversation_id,
            {
                "channel": channel or self.channel,
                "burst_generation": 0,
                "replied_generation": 0,
                "covered_inbound_id": 0,
                "handed_off": False,
                "attributes": {},
            },
        )
        message = self._add(conversation_id, "incoming", content, private)
        if not private:
            conversation["burst_generation"] += 1
        return InboundReceipt(
            conversation_id=conversation_id,
            message_id=message.id,
            generation=conversation["burst_generation"],
            created_at=message.created_at,
        )

    async def snapshot(self, conversation_id: int) -> Optional[ConversationSnapshot]:
        conversation = self.conversations.get(conversation_id)
        if conversation is None:
            return None
        covered_inbound_id = conversation["covered_inbound_id"]
        inbound = [
            m for m in self._conversation_messages(conversation_id) if m.direction == "incoming" and not m.private
        ]
        pending = [m for m in inbound if m.id > covered_inbound_id]
        return ConversationSnapshot(
            conversation_id=conversation_id,
            channel=conversation["channel"],
            latest_inbound_id=max((m.id for m in inbound), default=None),
            burst_generation=conversation["burst_generation"],
            replied_generation=conversation["replied_generation"],
            burst_started_at=min((m.created_at for m in pending), default=None),
            handed_off=conversation["handed_off"],
            covered_inbound_id=covered_inbound_id,
            attributes=dict(conversation["attributes"]),
        )

    def _covered_inbound_id(self, conversation_id: int) -> int:
        conversation = self.conversations.get(conversation_id)
        return conversation["covered_inbound_id"] if conversation else 0

    async def pending_batch(self, conversation_id: int) -> List[StoredMessage]:
        covered_inbound_id = self._covered_inbound_id(conversation_id)
        return [
            m
            for m in self._conversation_messages(conversation_id)
            if m.direction == "incoming" and not m.private and m.id > covered_inbound_id
        ]

    async def history(self, conversation_id: int, limit: int) -> List[StoredMessage]:
        if limit <= 0:
            return []
        covered_inbound_id = self._covered_inbound_id(conversation_id)
        rows = [
            m
            for m in self._conversation_messages(conversation_id)
            if not m.private and (m.direction == "outgoing" or m.id <= covered_inbound_id)
        ]
        return rows[-limit:]

    def _claim(self, conversation_id: int, generation: int, covered_inbound_id: int) -> bool:
        conversation = self.conversations[conversation_id]
        if conversation["replied_generation"] >= generation:
            return False
        conversation["replied_generation"] = generation
        conversation["covered_inbound_id"] = max(conversation["covered_inbound_id"], covered_inbound_id)
        return True

    async def commit_reply(
        self, conversation_id: int, generation: int, reply: ReplyPayload, covered_inbound_id: int
    ) -> Optional[int]:
        if not self._claim(conversation_id, generation, covered_inbound_id):
            return None
        message = self._add(conversation_id, "outgoing", reply.text, False)
        self.replies.append((conversation_id, generation, reply))
        return message.id

    async def mark_handoff(self, conversation_id: int, generation: int, note: str, covered_inbound_id: int) -> bool:
        if not self._claim(conversation_id, generation, covered_inbound_id):
            return False
        self._add(conversation_id, "outgoing", note, True)
        self.conversations[conversation_id]["handed_off"] = True
        self.handoff_notes.append((conversation_id, generation, note))
        return True

    async def update_attributes(self, conversation_id: int, attributes: Dict[str, Any]) -> None:
        self.conversations[conversation_id]["attributes"].update(attributes)


class InMemoryCorpusStore:
    """Corpus store returning canned neighbour and keyword rows."""

    def __init__(
        self,
        corpus: Corpus,
        *,
        neighbors: Sequence[Tuple[CorpusRecord, float]] = (),
        keyword_rows: Sequence[CorpusRecord] = (),
        fail_semantic: bool = False,
        fail_keyword: bool = False,
    ):
        self.corpus = corpus
        self.neighbors = list(neighbors)
        self.keyword_rows = list(keyword_rows)
        self.fail_semantic = fail_semantic
        self.fail_keyword = fail_keyword
        self.keyword_calls: List[List[str]] = []

    async def nearest_neighbors(self, vector: List[float], limit: int) -> List[Tuple[CorpusRecord, float]]:
        if self.fail_semantic:
            raise RuntimeError("vector index unavailable")
        return self.neighbors[:limit]

    async def keyword_search(self, terms: Sequence[str], limit: int) -> List[CorpusRecord]:
        if self.fail_keyword:
            raise RuntimeError("keyword index unavailable")
        self.keyword_calls.append(list(terms))
        return self.keyword_rows[:limit]


class FakeEmbedder:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    async def generate_embedding(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding backend down")
        return [0.1, 0.2, 0.3]


class ScriptedLLM:
    """Chat client that replays queued responses and records every request."""

    def __init__(self, responses: Sequence[Any] = ()):
        self.responses = list(responses)
        self.requests: List[Dict[str, Any]] = []

    def _next(self) -> Any:
        if not self.responses:
            raise AssertionError("unexpected LLM call")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def generate_chat_response(self, messages, temperature=0.7, max_tokens=None, model=None) -> str:
        self.requests.append({"method": "generate_chat_response", "messages": messages, "model": model})
        return self._next()

    async def generate_chat_json(self, messages, model=None, temperature=0.0, max_tokens=300) -> Dict[str, Any]:
        self.requests.append({"method": "generate_chat_json", "messages": messages, "model": model})
        return self._next()

    async def generate_chat_with_tools(self, **kwargs) -> Dict[str, Any]:
        self.requests.append({"method": "generate_chat_with_tools", **kwargs})
        return self._next()


def product_record(record_id: str, title: str, description: str = "", **extra: Any) -> CorpusRecord:
    data = {"id": record_id, "title": title, "description": description, **extra}
    return CorpusRecord(record_id=record_id, searchable_text=f"{title} {description}".lower(), data=data)


@pytest.fixture(autouse=True)
def isolated_debug_log(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "LOG_DIR", str(tmp_path))
    monkeypatch.setattr(settings, "DEBUG_LOG_FILE", "debug.ndjson")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def conversation_store(clock: FakeClock) -> InMemoryConversationStore:
    return InMemoryConversationStore(clock)
