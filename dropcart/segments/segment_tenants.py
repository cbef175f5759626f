from __future__ import annotations

from flask import Blueprint, jsonify, request

from dropcart.services import checkout_service, delivery_service, tenant_service
from dropcart.utils.auth import require_actor, require_user
from dropcart.utils.errors import BadRequestError
from dropcart.utils.geo import valid_coordinates
from dropcart.utils.http import json_body, query_bool, query_float

tenants_bp = Blueprint("tenants_bp", __name__, url_prefix="/api/tenants")


@tenants_bp.get("/nearby")
def nearby():
    result = tenant_service.discover_nearby(
        query_float("lat"),
        query_float("lng"),
        business_type=request.args.get("business_type"),
        max_distance=query_float("max_distance"),
        limit=request.args.get("limit", 20, type=int),
        currently_open=query_bool("currently_open"),
    )
    return jsonify({"ok": True, **result}), 200


@tenants_bp.get("/by-type/<business_type>")
def by_business_type(business_type: str):
    result = tenant_service.list_by_business_type(
        business_type,
        lat=query_float("lat"),
        lng=query_float("lng"),
        limit=request.args.get("limit", 12, type=int),
        offset=request.args.get("offset", 0, type=int),
        currently_open=query_bool("currently_open"),
    )
    return jsonify({"ok": True, **result}), 200


@tenants_bp.post("")
def create_tenant():
    user = require_user()
    tenant = checkout_service.create_tenant(user, json_body())
    return jsonify({"ok": True, "tenant": tenant.to_dict(include_private=True)}), 201


@tenants_bp.get("/<slug>")
def get_tenant(slug: str):
    return jsonify({"ok": True, "tenant": tenant_service.get_public_tenant(slug)}), 200


@tenants_bp.patch("/<slug>")
def update_tenant(slug: str):
    tenant = tenant_service.update_tenant(require_actor(), slug, json_body())
    return jsonify({"ok": True, "tenant": tenant.to_dict(include_private=True)}), 200


@tenants_bp.post("/<slug>/active")
def set_active(slug: str):
    data = json_body()
    if "active" not in data:
        raise BadRequestError("active is required", code="INVALID_REQUEST")
    tenant = tenant_service.set_active(require_actor(), slug, bool(data.get("active")))
    return jsonify({"ok": True, "tenant": tenant.to_dict(include_private=True)}), 200


@tenants_bp.delete("/<slug>")
def delete_tenant(slug: str):
    tenant_service.delete_tenant(require_actor(), slug)
    return jsonify({"ok": True}), 200


@tenants_bp.post("/<slug>/onboarding-link")
def onboarding_link(slug: str):
    return jsonify({"ok": True, **checkout_service.onboarding_link(require_actor(), slug)}), 200


@tenants_bp.post("/<slug>/verify")
def verify(slug: str):
    return jsonify({"ok": True, **checkout_service.sync_verification(require_actor(), slug)}), 200


@tenants_bp.post("/<slug>/delivery-quote")
def delivery_quote(slug: str):
    data = json_body()
    lat, lng = data.get("lat"), data.get("lng")
    if not valid_coordinates(lat, lng):
        raise BadRequestError("Valid lat and lng are required", code="INVALID_COORDINATES")
    tenant = checkout_service.tenant_by_slug(slug)
    quote = delivery_service.quote_delivery(tenant, float(lat), float(lng), data.get("order_total") or 0)
    return jsonify({"ok": True, "quote": quote.to_dict()}), 200
