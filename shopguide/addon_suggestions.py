from __future__ import annotations

from typing import Any, Dict, List

from .product_service import ProductService

ADDON_REASON = "Completes your setup"


def relevant_addons(products: ProductService, product_id: str, limit: int = 2) -> List[Dict[str, Any]]:
    """Accessories to offer after a cart add, never the product itself."""
    addons = []
    for accessory in products.get_accessories(limit=limit, exclude=[product_id]):
        data = accessory.to_dict()
        data["reason"] = ADDON_REASON
        addons.append(data)
    return addons


def addon_message(addons: List[Dict[str, Any]]) -> str:
    if not addons:
        return ""
    if len(addons) == 1:
        return f"To complete your setup, you might also need a {addons[0]['title']}."
    return "To complete your setup, you might also need: " + " or ".join(a["title"] for a in addons) + "."
