from __future__ import annotations

from typing import Dict, List


_LANGUAGE_NAMES = {"tr": "Turkish", "en": "English"}


def language_name(reply_language: str) -> str:
    code = (reply_language or "").split("-")[0].lower()
    return _LANGUAGE_NAMES.get(code, reply_language or "the customer's language")


def assistant_system_prompt(
    *,
    reply_language: str,
    assistant_name: str,
    business_name: str = "",
    instructions: str = "",
) -> str:
    parts = [
        f"You are {assistant_name}, a customer support assistant"
        + (f" for {business_name}." if business_name else "."),
        "Detect the language the customer writes in and answer in that language; "
        f"default to {language_name(reply_language)}.",
        "Keep replies short and conversational, usually one or two sentences.",
        "Ask a short clarifying question instead of guessing when the request is ambiguous.",
        "",
        "HALLUCINATION RULES:",
        "1. Use ONLY the FAQ entries, document excerpts and tool results given to you.",
        "2. If they do not answer the question, reply exactly with the no-information sentence:",
        f'   "{no_info_reply(reply_language)}"',
        "3. Never guess prices, dates, durations or quantities. Avoid hedging words such as "
        "'probably', 'usually' or 'I think'.",
        "4. Cite every fact: [FAQ_n] for FAQ entries, [DOC_id] for documents, [PRODUCT_n] for products.",
        "5. End every reply with your confidence: [CONFIDENCE: HIGH], [CONFIDENCE: MEDIUM] or [CONFIDENCE: LOW].",
        "",
        "Do not close the conversation and do not ask whether the customer needs anything else.",
    ]
    if instructions.strip():
        parts.extend(["", "BUSINESS INSTRUCTIONS:", instructions.strip()])
    return "\n".join(parts)


def faq_section(entries: List[Dict[str, str]]) -> str:
    if not entries:
        return ""
    lines = ["FREQUENTLY ASKED QUESTIONS (use only these):", ""]
    for index, entry in enumerate(entries, start=1):
        lines.append(f"[FAQ_{index}] Q: {entry.get('question', '')}")
        lines.append(f"   A: {entry.get('answer', '')}")
    lines.append("")
    lines.append("Cite an entry as [FAQ_n] whenever you use it.")
    return "\n".join(lines)


def document_section(documents: List[Dict[str, object]]) -> str:
    """Render grouped chunks: ``[{"id": 3, "name": "...", "chunks": ["..."]}]``."""
    if not documents:
        return ""
    lines = ["REFERENCE DOCUMENTS:", ""]
    for document in documents:
        lines.append(f"### [DOC_{document['id']}] {document.get('name', '')}")
        for index, chunk in enumerate(document.get("chunks") or [], start=1):
            lines.append(f"Part {index}:")
            lines.append(str(chunk))
        lines.append("")
    lines.append("Cite a document as [DOC_id] whenever you use it.")
    return "\n".join(lines)


def product_section(formatted_products: List[str]) -> str:
    if not formatted_products:
        return ""
    return "\n".join(
        [
            "PRODUCTS MATCHING THE CUSTOMER'S REQUEST:",
            "",
            *formatted_products,
            "",
            "Mention only these products and cite them as [PRODUCT_n].",
        ]
    )


def tool_instructions(*, order_lookup_enabled: bool) -> str:
    lines = [
        "STORE TOOLS:",
        "- Call search_products when the customer asks for products, recommendations, colours or "
        "materials, or asks a follow-up such as 'do you have it in black?'.",
        "- In follow-ups always carry the category from earlier turns into the query "
        "(earlier 'rings', now 'with black stones' -> query 'black stone ring').",
        "- When the customer rules something out ('no gold plating', 'except silver') pass it "
        "in exclude_terms.",
    ]
    if order_lookup_enabled:
        lines.extend(
            [
                "- For order status ask for BOTH the e-mail address and the order number, then call "
                "lookup_order and share the result as returned.",
            ]
        )
    return "\n".join(lines)


def intent_classification_prompt() -> str:
    return (
        "Classify the customer's message(s) for a support desk.\n"
        "Allowed intents: greeting, farewell, thanks, product_query, order_query, "
        "general_question, complaint, human_request, confirmation, other.\n"
        "A message can carry several intents (e.g. greeting + product_query).\n"
        "Use the earlier conversation to resolve references such as 'the red one'.\n"
        "product_keywords: only the words to search the catalog with, including the category "
        "resolved from context; empty for greetings, thanks or farewells.\n"
        "Return ONLY JSON: "
        '{"intents": ["..."], "product_keywords": ["..."], "summary": "short summary"}'
    )


def rerank_prompt(final_limit: int) -> str:
    return (
        "You rank catalog products for a shopper's request.\n"
        f"Pick the {final_limit} products that best satisfy the request's explicit constraints "
        "(category, material, colour, exclusions), best first.\n"
        "Use only ids from the list. Return ONLY JSON: "
        '{"ids": ["id1", "id2"]}'
    )


_NO_INFO_REPLIES = {
    "tr": (
        "Bu konuda elimde yeterli bilgi bulunmuyor. Size daha doğru bilgi verebilmem için "
        "müşteri hizmetlerimize ulaşmanızı öneririm."
    ),
    "en": (
        "I don't have enough information about this. Please contact our customer service team "
        "so they can help you accurately."
    ),
}

_CLARIFICATION_TEMPLATES = {
    "tr": {
        "ask_category": "Hangi ürün türüne bakıyorsunuz? Örneğin kolye, bileklik, yüzük veya küpe olabilir.",
        "ask_attribute": "Tercih ettiğiniz bir malzeme, taş ya da renk var mı?",
        "generic": "Aradığınız ürünü biraz daha detaylandırabilir misiniz?",
    },
    "en": {
        "ask_category": "Which kind of product are you looking for? For example a necklace, bracelet, ring or earrings.",
        "ask_attribute": "Do you have a preferred material, stone or colour?",
        "generic": "Could you tell me a bit more about what you are looking for?",
    },
}

_HANDOFF_NOTES = {
    "tr": "Müşteri canlı destek talep etti. Konuşma temsilciye devredildi.",
    "en": "Customer asked for a human agent. Conversation handed off.",
}


def _language_key(reply_language: str) -> str:
    code = (reply_language or "").split("-")[0].lower()
    return code if code in _NO_INFO_REPLIES else "en"


def no_info_reply(reply_language: str) -> str:
    return _NO_INFO_REPLIES[_language_key(reply_language)]


def clarification_question(kind: str, reply_language: str) -> str:
    templates = _CLARIFICATION_TEMPLATES[_language_key(reply_language)]
    return templates.get(kind) or templates["generic"]


def handoff_note(reply_language: str) -> str:
    return _HANDOFF_NOTES[_language_key(reply_language)]
