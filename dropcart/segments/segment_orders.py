from __future__ import annotations

from flask import Blueprint, jsonify, request

from dropcart.services import order_service
from dropcart.services.order_status import OrderStatus
from dropcart.utils.auth import require_actor
from dropcart.utils.errors import BadRequestError
from dropcart.utils.http import json_body
from dropcart.utils.idempotency import lookup_response, release_key, store_response

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")


@orders_bp.post("/orders")
def create_order():
    actor = require_actor()
    data = json_body()

    replay = lookup_response(actor.user_id, "/api/orders", data)
    row = None
    if replay is not None:
        kind, body_or_row, status = replay
        if kind in ("hit", "conflict"):
            return jsonify(body_or_row), status
        row = body_or_row

    try:
        order = order_service.place_order(actor, data)
    except Exception:
        if row is not None:
            release_key(row)
        raise
    body = {"ok": True, "order": order}
    if row is not None:
        store_response(row, body, 201)
    return jsonify(body), 201


@orders_bp.get("/orders")
def my_orders():
    result = order_service.list_user_orders(
        require_actor(),
        status=request.args.get("status"),
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", 20, type=int),
    )
    return jsonify({"ok": True, **result}), 200


@orders_bp.get("/orders/<int:order_id>")
def order_detail(order_id: int):
    return jsonify({"ok": True, "order": order_service.order_detail(require_actor(), order_id)}), 200


@orders_bp.post("/orders/<int:order_id>/status")
def update_status(order_id: int):
    actor = require_actor()
    data = json_body()
    status = (data.get("status") or "").strip().lower()
    if not status:
        raise BadRequestError("status is required", code="INVALID_STATUS")
    order = order_service.get_order(actor, order_id)
    order = order_service.transition_order(actor, order, status, reason=data.get("reason") or "")
    return jsonify({"ok": True, "order": order.to_dict(), "timeline": order_service.build_timeline(order)}), 200


@orders_bp.post("/orders/<int:order_id>/cancel")
def cancel_order(order_id: int):
    actor = require_actor()
    order = order_service.get_order(actor, order_id)
    order = order_service.transition_order(actor, order, OrderStatus.CANCELLED, reason=json_body().get("reason") or "")
    return jsonify({"ok": True, "order": order.to_dict()}), 200


@orders_bp.get("/tenants/<slug>/orders")
def tenant_orders(slug: str):
    result = order_service.list_tenant_orders(
        require_actor(),
        slug,
        status=request.args.get("status"),
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", 20, type=int),
    )
    return jsonify({"ok": True, **result}), 200
