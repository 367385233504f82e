from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

import httpx

from replydesk.core.config import settings
from replydesk.core.logging import get_logger
from replydesk.services.contracts import TokenProvider

logger = get_logger(__name__)

FULFILLMENT_STATUS = {
    None: "preparing",
    "fulfilled": "delivered to carrier",
    "partial": "partially shipped",
    "restocked": "returned",
    "pending": "pending",
    "open": "processing",
    "in_progress": "in transit",
    "on_hold": "on hold",
    "scheduled": "scheduled",
}

FINANCIAL_STATUS = {
    "pending": "awaiting payment",
    "authorized": "authorized",
    "paid": "paid",
    "partially_paid": "partially paid",
    "refunded": "refunded",
    "partially_refunded": "partially refunded",
    "voided": "cancelled",
    "expired": "expired",
}

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_ORDER_FIELDS = (
    "id,name,email,order_number,created_at,total_price,currency,fulfillment_status,"
    "financial_status,line_items,fulfillments,cancelled_at,cancel_reason"
)


class OrderNotFoundError(Exception):
    pass


class SettingsTokenProvider:
    """Admin API token read from configuration."""

    async def get_token(self) -> Optional[str]:
        return getattr(settings, "ORDER_API_TOKEN", None)


def _digits(value: Any) -> str:
    return re.sub(r"[^0-9]", "", str(value or ""))


class StoreOrderLookupClient:
    """Real-time order status from a Shopify-style admin REST API.

    Both the e-mail address and the order number are required; the order is
    only disclosed when its e-mail matches.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or getattr(settings, "ORDER_API_BASE_URL", None) or "").rstrip("/")
        self.token_provider = token_provider or SettingsTokenProvider()
        self._transport = transport

    def available(self) -> bool:
        return bool(getattr(settings, "ORDER_LOOKUP_ENABLED", False)) and bool(self.base_url)

    async def lookup_order(self, *, order_number: str, email: str) -> Dict[str, Any]:
        if not self.available():
            return {"error": "Order lookup is not enabled for this store."}
        if not email or not order_number:
            return {"error": "Both the e-mail address and the order number are required."}
        if not _EMAIL_RE.match(email.strip()):
            return {"error": "Please provide a valid e-mail address."}
        clean_number = _digits(order_number)
        if not clean_number:
            return {"error": "Please provide a valid order number."}

        try:
            order = await self._fetch_and_verify(clean_number, email)
        except OrderNotFoundError:
            return {"error": f"Order {order_number} was not found or the e-mail address does not match."}
        except Exception as exc:
            logger.error(f"[ORDER] lookup failed: {exc}")
            return {"error": "The order could not be looked up right now. Please try again later."}
        return {"success": True, "order": self.format_order(order)}

    async def _fetch_and_verify(self, order_number: str, email: str) -> Dict[str, Any]:
        token = await self.token_provider.get_token()
        headers = {"X-Shopify-Access-Token": token or "", "Content-Type": "application/json"}
        version = getattr(settings, "ORDER_API_VERSION", "2024-01")
        url = f"{self.base_url}/admin/api/{version}/orders.json"
        timeout = httpx.Timeout(float(getattr(settings, "ORDER_API_TIMEOUT_SECONDS", 10.0)))

        async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
            resp = await client.get(
                url,
                headers=headers,
                params={"name": order_number, "status": "any", "limit": 1, "fields": _ORDER_FIELDS},
            )
            resp.raise_for_status()
            orders = resp.json().get("orders") or []
            if not orders:
                resp = await client.get(
                    url,
                    headers=headers,
                    params={"status": "any", "limit": 100, "fields": _ORDER_FIELDS},
                )
                resp.raise_for_status()
                orders = [
                    order
                    for order in resp.json().get("orders") or []
                    if _digits(order.get("name")) == order_number or str(order.get("order_number")) == order_number
                ]
        if not orders:
            raise OrderNotFoundError(order_number)

        order = orders[0]
        if str(order.get("email") or "").strip().lower() != email.strip().lower():
            logger.warning(f"[ORDER] e-mail mismatch for order {order_number}")
            raise OrderNotFoundError(order_number)
        return order

    @staticmethod
    def format_order(order: Dict[str, Any]) -> Dict[str, Any]:
        items: List[Dict[str, Any]] = []
        for line in order.get("line_items") or []:
            items.append({"title": line.get("title"), "quantity": line.get("quantity"), "price": line.get("price")})
        tracking: List[Dict[str, Any]] = []
        for fulfillment in order.get("fulfillments") or []:
            if fulfillment.get("tracking_number"):
                tracking.append(
                    {
                        "company": fulfillment.get("tracking_company"),
                        "number": fulfillment.get("tracking_number"),
                        "url": fulfillment.get("tracking_url"),
                    }
                )
        return {
            "order_number": order.get("name"),
            "created_at": str(order.get("created_at") or "")[:10],
            "total": f"{order.get('total_price')} {order.get('currency') or ''}".strip(),
            "status": FULFILLMENT_STATUS.get(order.get("fulfillment_status"), str(order.get("fulfillment_status"))),
            "payment_status": FINANCIAL_STATUS.get(order.get("financial_status"), str(order.get("financial_status"))),
            "cancelled": bool(order.get("cancelled_at")),
            "cancel_reason": order.get("cancel_reason"),
            "items": items[:10],
            "tracking": tracking,
        }
