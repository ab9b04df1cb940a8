from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .errors import CommerceError

logger = logging.getLogger("shopguide.commerce")


@dataclass(frozen=True)
class CartItem:
    variant_id: str
    title: str
    quantity: int = 1
    price: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CartItem":
        return cls(
            variant_id=str(data.get("variant_id") or ""),
            title=str(data.get("title") or ""),
            quantity=max(1, int(data.get("quantity") or 1)),
            price=str(data["price"]) if data.get("price") is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"variant_id": self.variant_id, "title": self.title, "quantity": self.quantity}
        if self.price is not None:
            data["price"] = self.price
        return data


@dataclass(frozen=True)
class DraftOrder:
    draft_order_id: str
    subtotal: str
    shipping: str
    tax: str
    total: str
    currency: str


@dataclass(frozen=True)
class PlacedOrder:
    order_id: str
    order_number: str
    total: str
    currency: str


def _variant_ref(variant_id: str) -> Any:
    # The Admin API wants numeric ids; keep anything else as given.
    return int(variant_id) if variant_id.isdigit() else variant_id


class CommerceClient:
    """Admin-API draft orders: create for a cart summary, complete to place the order."""

    def __init__(
        self,
        store_domain: str,
        admin_token: str,
        api_version: str = "2025-10",
        timeout_sec: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._domain = store_domain.strip().rstrip("/")
        self._token = admin_token
        self._version = api_version
        self._timeout = timeout_sec
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self._domain and self._token)

    def _url(self, path: str) -> str:
        return f"https://{self._domain}/admin/api/{self._version}/{path}"

    def _send(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.configured:
            raise CommerceError("commerce store is not configured")
        try:
            resp = self._session.request(
                method,
                url,
                json=payload,
                headers={"X-Shopify-Access-Token": self._token, "Content-Type": "application/json"},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise CommerceError(f"commerce request failed: {exc}") from exc
        if resp.status_code >= 400:
            logger.warning("commerce_error method=%s status=%s body=%s", method, resp.status_code, resp.text[:300])
            raise CommerceError(f"commerce API error {resp.status_code}", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise CommerceError("commerce API returned non-JSON body") from exc
        if not isinstance(data, dict) or not isinstance(data.get("draft_order"), dict):
            raise CommerceError("commerce API response missing draft_order")
        return data["draft_order"]

    def create_draft_order(self, items: List[CartItem], address: Optional[Dict[str, Any]] = None) -> DraftOrder:
        """Purpose: Create a draft order for the cart and return its totals.
        Inputs/Outputs: Inputs are cart items and an optional shipping address; output
            is a DraftOrder with subtotal/shipping/tax/total as strings.
        Side Effects / State: One POST to the commerce Admin API.
        Dependencies: requests.Session.
        Failure Modes: Empty cart, transport errors, HTTP >= 400, and malformed bodies
            raise CommerceError.
        If Removed: cart_summary turns cannot show real totals.
        Testing Notes: Mock the session and assert the URL, header, and line items.
        """
        # Build line items, then post the draft order.
        if not items:
            raise CommerceError("cart is empty")
        payload: Dict[str, Any] = {
            "draft_order": {
                "line_items": [
                    {"variant_id": _variant_ref(item.variant_id), "quantity": item.quantity} for item in items
                ],
            }
        }
        if address:
            payload["draft_order"]["shipping_address"] = address
        draft = self._send("POST", self._url("draft_orders.json"), payload)
        shipping_line = draft.get("shipping_line") or {}
        order = DraftOrder(
            draft_order_id=str(draft.get("id") or ""),
            subtotal=str(draft.get("subtotal_price") or "0.00"),
            shipping=str(shipping_line.get("price") or "0.00"),
            tax=str(draft.get("total_tax") or "0.00"),
            total=str(draft.get("total_price") or "0.00"),
            currency=str(draft.get("currency") or "USD"),
        )
        logger.info("draft_order_created id=%s total=%s %s", order.draft_order_id, order.total, order.currency)
        return order

    def complete_draft_order(self, draft_order_id: str) -> PlacedOrder:
        """Complete a draft order with payment pending (cash on delivery)."""
        if not draft_order_id:
            raise CommerceError("draft_order_id is required")
        draft = self._send(
            "PUT",
            self._url(f"draft_orders/{draft_order_id}/complete.json?payment_pending=true"),
        )
        order = PlacedOrder(
            order_id=str(draft.get("order_id") or draft.get("id") or ""),
            order_number=str(draft.get("name") or draft.get("order_id") or ""),
            total=str(draft.get("total_price") or "0.00"),
            currency=str(draft.get("currency") or "USD"),
        )
        logger.info("draft_order_completed draft=%s order=%s", draft_order_id, order.order_id)
        return order
