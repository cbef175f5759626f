from __future__ import annotations

from flask import Blueprint, jsonify

from dropcart.services import checkout_service
from dropcart.utils.auth import require_actor
from dropcart.utils.cart import migrate_cart
from dropcart.utils.http import json_body

checkout_bp = Blueprint("checkout_bp", __name__, url_prefix="/api")


@checkout_bp.post("/checkout")
def purchase():
    data = json_body()
    result = checkout_service.create_checkout(require_actor(), data.get("tenant_slug") or "", data.get("items"))
    return jsonify({"ok": True, **result}), 200


@checkout_bp.post("/cart/normalize")
def normalize_cart():
    return jsonify({"ok": True, "cart": migrate_cart(json_body())}), 200
