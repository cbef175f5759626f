from __future__ import annotations

from flask import Blueprint, jsonify, request

from dropcart.services import inventory_service
from dropcart.utils.auth import require_actor
from dropcart.utils.errors import BadRequestError
from dropcart.utils.http import json_body

inventory_bp = Blueprint("inventory_bp", __name__, url_prefix="/api/inventory")


@inventory_bp.put("/items/<int:item_id>")
def set_item_inventory(item_id: int):
    data = json_body()
    result = inventory_service.set_inventory(
        require_actor(),
        item_id,
        data.get("quantity"),
        data.get("reason") or "adjustment",
    )
    return jsonify({"ok": True, **result}), 200


@inventory_bp.post("/<slug>/bulk")
def bulk_set(slug: str):
    data = json_body()
    updates = data.get("updates")
    if not isinstance(updates, list) or not updates:
        raise BadRequestError("updates must be a non-empty list", code="INVALID_REQUEST")
    result = inventory_service.bulk_set_inventory(require_actor(), slug, updates, data.get("reason") or "adjustment")
    return jsonify({"ok": True, **result}), 200


@inventory_bp.get("/<slug>/summary")
def summary(slug: str):
    return jsonify({"ok": True, "summary": inventory_service.inventory_summary(require_actor(), slug)}), 200


@inventory_bp.get("/<slug>/low-stock")
def low_stock(slug: str):
    threshold = request.args.get("threshold", type=int)
    items = inventory_service.low_stock_items(require_actor(), slug, threshold)
    return jsonify({"ok": True, "items": items, "count": len(items)}), 200
