import json
import re
import time
import hashlib
from collections import OrderedDict
from typing import Any, Dict, List, Optional
from openai import AsyncOpenAI
from replydesk.core.config import settings
from replydesk.core.exceptions import EmbeddingError, LLMResponseError
from replydesk.core.logging import get_logger

logger = get_logger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_embedding_text(text: Optional[str]) -> str:
    return _WHITESPACE_RE.sub(" ", (text or "").strip().lower())


class _EmbeddingCache:
    def __init__(self, *, max_items: int, ttl_seconds: float):
        self.max_items = max(0, int(max_items))
        self.ttl_seconds = float(ttl_seconds)
        self._data: OrderedDict[str, tuple[float, List[float]]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[List[float]]:
        if not key or self.max_items <= 0:
            return None
        item = self._data.get(key)
        if not item:
            self.misses += 1
            return None
        expires_at, value = item
        if expires_at and expires_at < time.time():
            self._data.pop(key, None)
            self.misses += 1
            return None
        self._data.move_to_end(key)
        self.hits += 1
        return value

    def set(self, key: str, value: List[float]) -> None:
        if not key or self.max_items <= 0:
            return
        expires_at = 0.0
        if self.ttl_seconds > 0:
            expires_at = time.time() + self.ttl_seconds
        self._data[key] = (expires_at, value)
        self._data.move_to_end(key)
        while len(self._data) > self.max_items:
            self._data.popitem(last=False)

    def stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "size": len(self._data),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 3) if total else 0.0,
        }


class LLMService:
    """Service for interacting with OpenAI chat models and embeddings."""

    def __init__(self):
        self._client: Optional[AsyncOpenAI] = None
        self.model = settings.OPENAI_MODEL
        self.embedding_model = settings.EMBEDDING_MODEL
        self._embedding_cache = _EmbeddingCache(
            max_items=int(getattr(settings, "EMBEDDING_CACHE_MAX_ITEMS", 2048)),
            ttl_seconds=float(getattr(settings, "EMBEDDING_CACHE_TTL_SECONDS", 7 * 24 * 3600)),
        )

    @property
    def client(self) -> AsyncOpenAI:
        # Created on first use so importing the service never needs an API key.
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=settings.OPENAI_API_KEY,
                timeout=float(getattr(settings, "OPENAI_TIMEOUT_SECONDS", 30.0)),
            )
        return self._client

    def _embedding_cache_key(self, text: str) -> str:
        payload = f"{self.embedding_model}:{normalize_embedding_text(text)}"
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        return f"{self.embedding_model}:{digest}"

    def embedding_cache_stats(self) -> Dict[str, Any]:
        return self._embedding_cache.stats()

    async def generate_embedding(self, text: str) -> List[float]:
        """Generate embedding for a text, served from the cache when possible."""
        cache_key = self._embedding_cache_key(text)
        cached = self._embedding_cache.get(cache_key)
        if cached is not None:
            return cached
        try:
            response = await self.client.embeddings.create(
                model=self.embedding_model,
                input=normalize_embedding_text(text),
            )
        except Exception as e:
            logger.error(f"Error generating embedding: {e}")
            raise EmbeddingError(str(e)) from e
        embedding = response.data[0].embedding
        # Concurrent misses may both land here; the second write is identical.
        self._embedding_cache.set(cache_key, embedding)
        return embedding

    async def generate_chat_response(
        self,
        messages: List[dict],
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> str:
        """Generate a chat response using the LLM."""
        try:
            response = await self.client.chat.completions.create(
                model=model or self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
            return response.choices[0].message.content or ""
        except Exception as e:
            logger.error(f"Error generating chat response: {e}")
            raise

    async def generate_chat_json(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: Optional[int] = 300,
    ) -> Dict[str, Any]:
        """Generate strict JSON output using response_format=json_object."""
        response = await self.client.chat.completions.create(
            model=model or self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content or "{}"
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"model returned invalid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise LLMResponseError("model returned JSON that is not an object")
        return parsed

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
        """One chat turn with function tools.

        Returns ``{"content", "tool_calls", "finish_reason"}`` where each tool
        call carries parsed ``arguments`` plus ``argument_error`` when the model
        produced arguments that are not a JSON object.
        """
        params: Dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            params["tools"] = tools
            params["tool_choice"] = tool_choice
        try:
            response = await self.client.chat.completions.create(**params)
        except Exception as e:
            logger.error(f"Error generating chat response with tools: {e}")
            raise

        choice = response.choices[0]
        message = choice.message
        tool_calls: List[Dict[str, Any]] = []
        for call in message.tool_calls or []:
            raw_arguments = call.function.arguments or "{}"
            arguments: Dict[str, Any] = {}
            argument_error: Optional[str] = None
            try:
                parsed = json.loads(raw_arguments)
                if isinstance(parsed, dict):
                    arguments = parsed
                else:
                    argument_error = "arguments must be a JSON object"
            except json.JSONDecodeError as exc:
                argument_error = str(exc)
            tool_calls.append(
                {
                    "id": call.id,
                    "name": call.function.name,
                    "arguments": arguments,
                    "raw_arguments": raw_arguments,
                    "argument_error": argument_error,
                }
            )
        return {
            "content": message.content or "",
            "tool_calls": tool_calls,
            "finish_reason": choice.finish_reason,
        }


llm_service = LLMService()
