from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from replydesk.core.config import settings
from replydesk.core.logging import get_logger
from replydesk.prompts.system_prompts import (
    assistant_system_prompt,
    document_section,
    faq_section,
    product_section,
    tool_instructions,
)
from replydesk.services.chat.product_cards import format_product_context
from replydesk.services.chat.tools import SUPPORTED_TOOLS, ReplyToolRegistry
from replydesk.services.contracts import ChatModelClient, OrderLookupClient
from replydesk.services.conversations.types import StoredMessage
from replydesk.services.intent.types import IntentResult, RouteDecision
from replydesk.services.retrieval.hybrid import HybridRetriever
from replydesk.services.retrieval.product_finder import ProductFinder
from replydesk.services.retrieval.types import Corpus, RetrievalCandidate
from replydesk.utils.debug_log import debug_log

logger = get_logger(__name__)

_CONTEXT_QUERY_TURNS = 4


@dataclass
class GenerationResult:
    text: str
    faq_ids: List[int] = field(default_factory=list)
    document_ids: List[int] = field(default_factory=list)
    products: List[RetrievalCandidate] = field(default_factory=list)
    used_tools: bool = False
    rounds: int = 0
    trace: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class _GroundingContext:
    faqs: List[RetrievalCandidate] = field(default_factory=list)
    documents: List[Dict[str, Any]] = field(default_factory=list)
    products: List[RetrievalCandidate] = field(default_factory=list)


def build_context_query(message: str, history: Sequence[StoredMessage], turns: int = _CONTEXT_QUERY_TURNS) -> str:
    """Prefix recent turns so follow-ups like "how much is it?" still retrieve the right entries."""
    recent = [entry for entry in history if entry.content.strip()][-turns:] if turns else []
    if not recent:
        return message
    lines = [f"{'Customer' if entry.role == 'user' else 'Assistant'}: {entry.content.strip()}" for entry in recent]
    lines.append(f"Customer: {message}")
    return "\n".join(lines)


def group_document_chunks(chunks: Sequence[RetrievalCandidate]) -> List[Dict[str, Any]]:
    grouped: Dict[int, Dict[str, Any]] = {}
    for chunk in chunks:
        record = chunk.record or {}
        document_id = record.get("document_id")
        if document_id is None:
            continue
        entry = grouped.setdefault(
            int(document_id),
            {"id": int(document_id), "name": record.get("document_name") or "", "chunks": []},
        )
        entry["chunks"].append(record.get("content") or "")
    return list(grouped.values())


class ReplyGenerator:
    """Builds the grounded prompt and runs the bounded tool-calling loop."""

    def __init__(
        self,
        *,
        retriever: HybridRetriever,
        product_finder: Optional[ProductFinder] = None,
        order_client: Optional[OrderLookupClient] = None,
        llm: Optional[ChatModelClient] = None,
    ):
        if llm is None:
            from replydesk.services.ai.llm_service import llm_service

            llm = llm_service
        self.retriever = retriever
        self.product_finder = product_finder
        self.order_client = order_client
        self._llm = llm
        self.max_rounds = max(1, int(getattr(settings, "MAX_TOOL_ROUNDS", 3)))
        self.timeout_seconds = max(0.1, int(getattr(settings, "TOOL_TIMEOUT_MS", 8000)) / 1000.0)

    async def generate(
        self,
        *,
        message: str,
        history: Sequence[StoredMessage],
        intent: IntentResult,
        route: RouteDecision,
        reply_language: Optional[str] = None,
    ) -> GenerationResult:
        reply_language = reply_language or str(getattr(settings, "REPLY_LANGUAGE", "tr"))
        grounding = await self._ground(message=message, history=history, intent=intent, route=route)

        registry = ReplyToolRegistry(product_finder=self.product_finder, order_client=self.order_client)
        for candidate in grounding.products:
            registry.found_products[candidate.record_id] = candidate

        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": self._system_prompt(grounding, registry, reply_language)}
        ]
        for entry in history:
            if entry.content.strip():
                messages.append({"role": entry.role, "content": entry.content.strip()})
        messages.append({"role": "user", "content": message})

        result = await self._run_tool_loop(messages, registry)
        result.faq_ids = [int(candidate.record_id) for candidate in grounding.faqs]
        result.document_ids = [int(document["id"]) for document in grounding.documents]
        result.products = list(registry.found_products.values())
        return result

    async def _ground(
        self,
        *,
        message: str,
        history: Sequence[StoredMessage],
        intent: IntentResult,
        route: RouteDecision,
    ) -> _GroundingContext:
        grounding = _GroundingContext()
        query = build_context_query(message, history)
        if route.search_knowledge:
            if self.retriever.has_corpus(Corpus.FAQ):
                grounding.faqs = await self.retriever.search(
                    Corpus.FAQ, query, int(getattr(settings, "FAQ_CONTEXT_LIMIT", 5))
                )
            if self.retriever.has_corpus(Corpus.DOCUMENT):
                chunks = await self.retriever.search(
                    Corpus.DOCUMENT, query, int(getattr(settings, "DOCUMENT_CONTEXT_LIMIT", 5))
                )
                grounding.documents = group_document_chunks(chunks)
        if route.search_products and self.product_finder is not None:
            product_query = " ".join(intent.product_keywords) or message
            grounding.products = await self.product_finder.find(product_query)
        return grounding

    def _system_prompt(self, grounding: _GroundingContext, registry: ReplyToolRegistry, reply_language: str) -> str:
        sections = [
            assistant_system_prompt(
                reply_language=reply_language,
                assistant_name=str(getattr(settings, "ASSISTANT_NAME", "Assistant")),
                business_name=str(getattr(settings, "BUSINESS_NAME", "")),
                instructions=str(getattr(settings, "ASSISTANT_INSTRUCTIONS", "")),
            ),
            faq_section([candidate.record for candidate in grounding.faqs]),
            document_section(grounding.documents),
            product_section(
                [
                    format_product_context(candidate.record or {}, index)
                    for index, candidate in enumerate(grounding.products, start=1)
                ]
            ),
        ]
        if registry.tool_definitions():
            sections.append(tool_instructions(order_lookup_enabled=self.order_client is not None))
        return "\n\n".join(section for section in sections if section)

    async def _run_tool_loop(self, messages: List[Dict[str, Any]], registry: ReplyToolRegistry) -> GenerationResult:
        tools = registry.tool_definitions()
        model = str(getattr(settings, "REPLY_MODEL", "") or "") or None
        temperature = float(getattr(settings, "REPLY_TEMPERATURE", 0.3))
        max_tokens = int(getattr(settings, "REPLY_MAX_TOKENS", 700))
        trace: List[Dict[str, Any]] = []
        used_tools = False
        last_text = ""

        for round_index in range(self.max_rounds):
            llm_out = await self._llm.generate_chat_with_tools(
                messages=messages,
                tools=tools,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                tool_choice="auto",
            )
            content = str(llm_out.get("content") or "").strip()
            last_text = content or last_text
            tool_calls = list(llm_out.get("tool_calls") or [])
            if not tool_calls:
                return GenerationResult(text=content or last_text, used_tools=used_tools, rounds=round_index + 1, trace=trace)

            messages.append(
                {
                    "role": "assistant",
                    "content": content,
                    "tool_calls": [
                        {
                            "id": str(call.get("id") or f"call_{round_index}_{index}"),
                            "type": "function",
                            "function": {
                                "name": str(call.get("name") or ""),
                                "arguments": str(call.get("raw_arguments") or "{}"),
                            },
                        }
                        for index, call in enumerate(tool_calls)
                    ],
                }
            )
            for index, call in enumerate(tool_calls):
                call_id = str(call.get("id") or f"call_{round_index}_{index}")
                tool_name = str(call.get("name") or "")
                args = call.get("arguments") if isinstance(call.get("arguments"), dict) else {}
                status, payload, duration_ms = await self._execute(registry, tool_name, args, call.get("argument_error"))
                trace.append({"tool": tool_name, "status": status, "duration_ms": duration_ms, "round": round_index + 1})
                self._log_tool_event(tool_name=tool_name, status=status, duration_ms=duration_ms)
                if status == "ok":
                    used_tools = True
                messages.append(
                    {
                        "role": "tool",
                        "tool_call_id": call_id,
                        "name": tool_name,
                        "content": json.dumps(payload, ensure_ascii=False, default=str),
                    }
                )

        # Rounds exhausted while the model still wanted tools: finish without them.
        final_out = await self._llm.generate_chat_with_tools(
            messages=messages,
            tools=tools,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            tool_choice="none",
        )
        final_text = str(final_out.get("content") or "").strip() or last_text
        return GenerationResult(text=final_text, used_tools=used_tools, rounds=self.max_rounds + 1, trace=trace)

    async def _execute(
        self,
        registry: ReplyToolRegistry,
        tool_name: str,
        args: Dict[str, Any],
        argument_error: Optional[str],
    ):
        started = time.monotonic()
        if argument_error:
            status, payload = "invalid_arguments", {"error": f"Invalid arguments: {argument_error}"}
        elif tool_name not in SUPPORTED_TOOLS:
            status, payload = "error", {"error": f"Unsupported tool: {tool_name}"}
        else:
            try:
                payload = await asyncio.wait_for(registry.execute_tool(tool_name, args), timeout=self.timeout_seconds)
                status = "error" if "error" in payload else "ok"
            except asyncio.TimeoutError:
                status, payload = "timeout", {"error": f"Tool timeout for {tool_name}"}
            except Exception as exc:
                logger.warning(f"[GENERATION] tool {tool_name} failed: {exc}")
                status, payload = "error", {"error": str(exc)}
        return status, payload, int((time.monotonic() - started) * 1000)

    @staticmethod
    def _log_tool_event(*, tool_name: str, status: str, duration_ms: int) -> None:
        debug_log(
            {
                "location": "generation.tool_call",
                "message": "tool call",
                "data": {"tool": tool_name, "status": status, "duration_ms": duration_ms},
            }
        )
