from types import SimpleNamespace

import pytest

pytest.importorskip("openai")
pytest.importorskip("pydantic_settings")

from replydesk.core.exceptions import EmbeddingError, LLMResponseError
from replydesk.services.ai.llm_service import LLMService, normalize_embedding_text


class _FakeEmbeddings:
    def __init__(self, fail: bool = False):
        self.inputs = []
        self.fail = fail

    async def create(self, model, input):
        self.inputs.append(input)
        if self.fail:
            raise RuntimeError("quota exceeded")
        return SimpleNamespace(data=[SimpleNamespace(embedding=[0.5, 0.25])])


class _FakeCompletions:
    def __init__(self, message):
        self.message = message
        self.params = None

    async def create(self, **params):
        self.params = params
        return SimpleNamespace(choices=[SimpleNamespace(message=self.message, finish_reason="tool_calls")])


def _service_with(**client_parts) -> LLMService:
    service = LLMService()
    service._client = SimpleNamespace(**client_parts)
    return service


@pytest.mark.asyncio
async def test_embedding_cache_ignores_case_and_whitespace() -> None:
    embeddings = _FakeEmbeddings()
    service = _service_with(embeddings=embeddings)

    first = await service.generate_embedding("  Gümüş   Kolye ")
    second = await service.generate_embedding("gümüş kolye")

    assert first == second == [0.5, 0.25]
    assert embeddings.inputs == ["gümüş kolye"]
    stats = service.embedding_cache_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["size"] == 1


@pytest.mark.asyncio
async def test_embedding_failure_raises_typed_error() -> None:
    service = _service_with(embeddings=_FakeEmbeddings(fail=True))

    with pytest.raises(EmbeddingError):
        await service.generate_embedding("kolye")

    assert service.embedding_cache_stats()["size"] == 0


@pytest.mark.asyncio
async def test_tool_call_arguments_are_parsed_or_flagged() -> None:
    message = SimpleNamespace(
        content=None,
        tool_calls=[
            SimpleNamespace(id="c1", function=SimpleNamespace(name="search_products", arguments='{"query": "kolye"}')),
            SimpleNamespace(id="c2", function=SimpleNamespace(name="search_products", arguments="[1, 2]")),
        ],
    )
    completions = _FakeCompletions(message)
    service = _service_with(chat=SimpleNamespace(completions=completions))

    result = await service.generate_chat_with_tools(messages=[], tools=[{"type": "function"}], tool_choice="none")

    assert result["content"] == ""
    assert result["tool_calls"][0]["arguments"] == {"query": "kolye"}
    assert result["tool_calls"][0]["argument_error"] is None
    assert result["tool_calls"][1]["argument_error"] == "arguments must be a JSON object"
    assert completions.params["tool_choice"] == "none"


def test_normalize_embedding_text() -> None:
    assert normalize_embedding_text("  A\n\tB  ") == "a b"
    assert normalize_embedding_text(None) == ""


@pytest.mark.asyncio
async def test_json_mode_rejects_non_object_output() -> None:
    completions = _FakeCompletions(SimpleNamespace(content="[1, 2]", tool_calls=None))
    service = _service_with(chat=SimpleNamespace(completions=completions))

    with pytest.raises(LLMResponseError):
        await service.generate_chat_json([{"role": "user", "content": "hi"}])

    assert completions.params["response_format"] == {"type": "json_object"}
