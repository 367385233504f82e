import asyncio

import pytest

pytest.importorskip("pydantic_settings")

from conftest import FakeEmbedder, InMemoryCorpusStore, ScriptedLLM, product_record

from replydesk.core.config import settings
from replydesk.services.chat.generation import ReplyGenerator, build_context_query
from replydesk.services.conversations.types import StoredMessage
from replydesk.services.intent.types import IntentLabel, IntentResult, resolve_route
from replydesk.services.retrieval.hybrid import HybridRetriever
from replydesk.services.retrieval.product_finder import ProductFinder
from replydesk.services.retrieval.rerank_service import CandidateReranker
from replydesk.services.retrieval.types import Corpus, CorpusRecord


def _tool_call(call_id: str, name: str = "search_products", arguments=None, error=None) -> dict:
    arguments = {"query": "gümüş kolye"} if arguments is None else arguments
    return {
        "content": "",
        "tool_calls": [
            {
                "id": call_id,
                "name": name,
                "arguments": arguments,
                "raw_arguments": "{}",
                "argument_error": error,
            }
        ],
        "finish_reason": "tool_calls",
    }


def _finder() -> ProductFinder:
    rows = [product_record("11", "Gümüş kolye", "925 ayar", min_price=450, vendor="Atölye")]
    retriever = HybridRetriever(
        {Corpus.PRODUCT: InMemoryCorpusStore(Corpus.PRODUCT, keyword_rows=rows)},
        embedder=FakeEmbedder(),
    )
    return ProductFinder(retriever, CandidateReranker(ScriptedLLM()))


def _greeting_route():
    intent = IntentResult(intents=frozenset({IntentLabel.GREETING}), confidence=0)
    return intent, resolve_route(intent)


@pytest.mark.asyncio
@pytest.mark.regression
async def test_tool_loop_is_bounded_then_finalizes_without_tools(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "MAX_TOOL_ROUNDS", 3)
    llm = ScriptedLLM(
        [
            _tool_call("c1"),
            _tool_call("c2"),
            _tool_call("c3"),
            {"content": "Gümüş kolyemiz 450 TL [PRODUCT_1]", "tool_calls": [], "finish_reason": "stop"},
        ]
    )
    generator = ReplyGenerator(retriever=HybridRetriever({}, embedder=FakeEmbedder()), product_finder=_finder(), llm=llm)
    intent, route = _greeting_route()

    result = await generator.generate(message="gümüş kolye var mı", history=[], intent=intent, route=route)

    assert len(llm.requests) == 4
    assert [request["tool_choice"] for request in llm.requests] == ["auto", "auto", "auto", "none"]
    assert result.rounds == 4
    assert result.used_tools is True
    assert [step["status"] for step in result.trace] == ["ok", "ok", "ok"]
    assert [candidate.record_id for candidate in result.products] == ["11"]
    assert result.text.startswith("Gümüş kolyemiz")
    tool_message = [message for message in llm.requests[1]["messages"] if message["role"] == "tool"][0]
    assert "Gümüş kolye" in tool_message["content"]


@pytest.mark.asyncio
async def test_plain_answer_ends_loop_in_one_round() -> None:
    llm = ScriptedLLM([{"content": "Merhaba! Size nasıl yardımcı olabilirim?", "tool_calls": []}])
    generator = ReplyGenerator(retriever=HybridRetriever({}, embedder=FakeEmbedder()), llm=llm)
    intent, route = _greeting_route()

    result = await generator.generate(message="merhaba", history=[], intent=intent, route=route)

    assert result.rounds == 1
    assert result.used_tools is False
    assert llm.requests[0]["tools"] == []


@pytest.mark.asyncio
async def test_bad_tool_calls_are_reported_back_to_the_model() -> None:
    llm = ScriptedLLM(
        [
            _tool_call("c1", error="Expecting value"),
            _tool_call("c2", name="delete_everything"),
            _tool_call("c3", arguments={"query": "x"}),
            {"content": "Üzgünüm, şu an arama yapamıyorum.", "tool_calls": []},
        ]
    )
    generator = ReplyGenerator(retriever=HybridRetriever({}, embedder=FakeEmbedder()), product_finder=_finder(), llm=llm)
    intent, route = _greeting_route()

    result = await generator.generate(message="kolye", history=[], intent=intent, route=route)

    assert [step["status"] for step in result.trace] == ["invalid_arguments", "error", "error"]
    assert result.used_tools is False
    assert result.products == []


@pytest.mark.asyncio
async def test_slow_tool_times_out(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "TOOL_TIMEOUT_MS", 100)

    class SlowFinder:
        async def find(self, query, *, exclude_terms=None, limit=None):
            await asyncio.sleep(1)
            return []

    llm = ScriptedLLM([_tool_call("c1"), {"content": "Bir sorun oluştu.", "tool_calls": []}])
    generator = ReplyGenerator(retriever=HybridRetriever({}, embedder=FakeEmbedder()), product_finder=SlowFinder(), llm=llm)
    intent, route = _greeting_route()

    result = await generator.generate(message="kolye", history=[], intent=intent, route=route)

    assert result.trace[0]["status"] == "timeout"


@pytest.mark.asyncio
async def test_knowledge_route_grounds_prompt_with_faq_and_documents() -> None:
    faq = CorpusRecord(
        record_id="21",
        searchable_text="iade süresi",
        data={"id": 21, "question": "İade süresi nedir?", "answer": "14 gün."},
    )
    chunk = CorpusRecord(
        record_id="5",
        searchable_text="iade koşulları",
        data={"id": 5, "document_id": 3, "document_name": "İade Politikası", "chunk_index": 0, "content": "Etiketli ürünler."},
    )
    retriever = HybridRetriever(
        {
            Corpus.FAQ: InMemoryCorpusStore(Corpus.FAQ, neighbors=[(faq, 0.1)]),
            Corpus.DOCUMENT: InMemoryCorpusStore(Corpus.DOCUMENT, neighbors=[(chunk, 0.2)]),
        },
        embedder=FakeEmbedder(),
    )
    llm = ScriptedLLM([{"content": "İade süresi 14 gündür [FAQ_1].", "tool_calls": []}])
    generator = ReplyGenerator(retriever=retriever, llm=llm)
    intent = IntentResult(intents=frozenset({IntentLabel.GENERAL_QUESTION}), confidence=0)

    result = await generator.generate(message="iade süresi", history=[], intent=intent, route=resolve_route(intent))

    system_prompt = llm.requests[0]["messages"][0]["content"]
    assert "[FAQ_1] Q: İade süresi nedir?" in system_prompt
    assert "[DOC_3] İade Politikası" in system_prompt
    assert result.faq_ids == [21]
    assert result.document_ids == [3]


def test_context_query_prefixes_recent_turns() -> None:
    history = [
        StoredMessage(id=1, direction="incoming", content="siyah yüzük var mı", created_at=None),
        StoredMessage(id=2, direction="outgoing", content="Evet, iki modelimiz var.", created_at=None),
    ]

    query = build_context_query("fiyatı ne kadar", history)

    assert query == "Customer: siyah yüzük var mı\nAssistant: Evet, iki modelimiz var.\nCustomer: fiyatı ne kadar"
