from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from replydesk.services.chat.product_cards import format_product_context, price_label
from replydesk.services.contracts import OrderLookupClient
from replydesk.services.retrieval.product_finder import ProductFinder
from replydesk.services.retrieval.types import RetrievalCandidate


TOOL_SEARCH_PRODUCTS = "search_products"
TOOL_LOOKUP_ORDER = "lookup_order"

SUPPORTED_TOOLS = {
    TOOL_SEARCH_PRODUCTS,
    TOOL_LOOKUP_ORDER,
}


class SearchProductsArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    query: str = Field(min_length=2, max_length=200)
    exclude_terms: Optional[str] = Field(default=None, max_length=200)

    @field_validator("query")
    @classmethod
    def validate_query(cls, value: str) -> str:
        clean = value.strip()
        if not clean:
            raise ValueError("query cannot be empty")
        return clean

    @field_validator("exclude_terms")
    @classmethod
    def validate_exclude_terms(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        clean = value.strip()
        return clean or None


class LookupOrderArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(min_length=3, max_length=254)
    order_number: str = Field(min_length=1, max_length=32)

    @field_validator("email", "order_number")
    @classmethod
    def strip_value(cls, value: str) -> str:
        clean = value.strip()
        if not clean:
            raise ValueError("value cannot be empty")
        return clean


class ReplyToolRegistry:
    """Executes the model's tool calls and remembers the products it surfaced."""

    def __init__(self, *, product_finder: Optional[ProductFinder], order_client: Optional[OrderLookupClient] = None):
        self.product_finder = product_finder
        self.order_client = order_client
        self.found_products: Dict[str, RetrievalCandidate] = {}

    def tool_definitions(self) -> List[Dict[str, Any]]:
        tools: List[Dict[str, Any]] = []
        if self.product_finder is not None:
            tools.append(
                {
                    "type": "function",
                    "function": {
                        "name": TOOL_SEARCH_PRODUCTS,
                        "description": (
                            "Search the store catalog. Include the product category from earlier turns in "
                            "follow-up queries. Put anything the customer rules out in exclude_terms."
                        ),
                        "parameters": {
                            "type": "object",
                            "properties": {
                                "query": {"type": "string", "minLength": 2, "maxLength": 200},
                                "exclude_terms": {
                                    "type": "string",
                                    "description": "Comma separated terms the products must not contain",
                                },
                            },
                            "required": ["query"],
                            "additionalProperties": False,
                        },
                    },
                }
            )
        if self.order_client is not None:
            tools.append(
                {
                    "type": "function",
                    "function": {
                        "name": TOOL_LOOKUP_ORDER,
                        "description": "Look up an order. Requires both the customer's e-mail and the order number.",
                        "parameters": {
                            "type": "object",
                            "properties": {
                                "email": {"type": "string"},
                                "order_number": {"type": "string"},
                            },
                            "required": ["email", "order_number"],
                            "additionalProperties": False,
                        },
                    },
                }
            )
        return tools

    async def execute_tool(self, tool_name: str, raw_arguments: Dict[str, Any]) -> Dict[str, Any]:
        try:
            if tool_name == TOOL_SEARCH_PRODUCTS and self.product_finder is not None:
                return await self._search_products(SearchProductsArgs.model_validate(raw_arguments))
            if tool_name == TOOL_LOOKUP_ORDER and self.order_client is not None:
                args = LookupOrderArgs.model_validate(raw_arguments)
                return await self.order_client.lookup_order(order_number=args.order_number, email=args.email)
        except ValidationError as exc:
            return {"error": f"Invalid arguments: {exc.errors()[0].get('msg', 'invalid')}"}
        return {"error": f"Unsupported tool: {tool_name}"}

    async def _search_products(self, args: SearchProductsArgs) -> Dict[str, Any]:
        candidates = await self.product_finder.find(args.query, exclude_terms=args.exclude_terms)
        items = []
        offset = len(self.found_products)
        for candidate in candidates:
            if candidate.record_id not in self.found_products:
                self.found_products[candidate.record_id] = candidate
        for index, candidate in enumerate(candidates, start=offset + 1):
            record = candidate.record or {}
            items.append(
                {
                    "id": candidate.record_id,
                    "title": record.get("title"),
                    "price": price_label(record) or None,
                    "details": format_product_context(record, index),
                }
            )
        if not items:
            return {"items": [], "message": "No matching products were found."}
        return {"items": items}
