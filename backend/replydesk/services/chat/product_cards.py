from __future__ import annotations

import re
from typing import Any, Dict, List, Sequence

from replydesk.core.config import settings
from replydesk.schemas.chat import ProductCard
from replydesk.services.retrieval.types import RetrievalCandidate

_HTML_TAG_RE = re.compile(r"<[^>]*>")


def _format_amount(value: Any) -> str:
    amount = float(value)
    return f"{amount:.0f}" if amount.is_integer() else f"{amount:.2f}"


def price_label(record: Dict[str, Any]) -> str:
    label = str(getattr(settings, "PRICE_CURRENCY_LABEL", "TL"))
    low, high = record.get("min_price"), record.get("max_price")
    if low is not None and high is not None and low != high:
        return f"{_format_amount(low)} - {_format_amount(high)} {label}"
    if low is not None:
        return f"{_format_amount(low)} {label}"
    if high is not None:
        return f"{_format_amount(high)} {label}"
    return ""


def format_product_context(record: Dict[str, Any], index: int) -> str:
    """One catalog entry as shown to the model, cited as ``[PRODUCT_n]``."""
    parts = [f"[PRODUCT_{index}] {record.get('title') or ''}"]
    description = " ".join(_HTML_TAG_RE.sub(" ", str(record.get("description") or "")).split())
    max_chars = int(getattr(settings, "PRODUCT_DESCRIPTION_CHARS", 300))
    if description:
        if len(description) > max_chars:
            description = description[: max_chars - 3].rstrip() + "..."
        parts.append(f"Description: {description}")
    price = price_label(record)
    if price:
        parts.append(f"Price: {price}")
    inventory = record.get("total_inventory")
    if inventory is not None:
        parts.append(f"Stock: in stock ({inventory})" if int(inventory) > 0 else "Stock: out of stock")
    variants = list(
        dict.fromkeys(
            str(v.get("title")) for v in record.get("variants") or [] if isinstance(v, dict) and v.get("title")
        )
    )
    if len(variants) > 1:
        parts.append("Options: " + ", ".join(variants[:5]))
    if record.get("vendor"):
        parts.append(f"Brand: {record['vendor']}")
    return "\n   ".join(parts)


def supports_cards(channel: str) -> bool:
    if not bool(getattr(settings, "PRODUCT_CARDS_ENABLED", True)):
        return False
    allowed = {item.strip().lower() for item in str(getattr(settings, "PRODUCT_CARD_CHANNELS", "")).split(",")}
    return (channel or "").strip().lower() in allowed


def build_product_cards(candidates: Sequence[RetrievalCandidate], channel: str) -> List[ProductCard]:
    if not supports_cards(channel):
        return []
    limit = int(getattr(settings, "PRODUCT_CARD_MAX", 10))
    if (channel or "").lower() == "whatsapp":
        limit = min(limit, int(getattr(settings, "PRODUCT_CARD_MAX_WHATSAPP", 3)))
    cards: List[ProductCard] = []
    for candidate in candidates:
        record = candidate.record or {}
        title = str(record.get("title") or "").strip()
        if not title:
            continue
        cards.append(
            ProductCard(
                title=title[:80],
                price=price_label(record) or None,
                image_url=record.get("image_url"),
                link=record.get("url"),
            )
        )
        if len(cards) >= limit:
            break
    return cards
