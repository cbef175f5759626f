from __future__ import annotations

from flask import Blueprint, jsonify, request

from dropcart.services import catalog_service, review_service
from dropcart.utils.auth import require_actor
from dropcart.utils.http import json_body, query_bool

catalog_bp = Blueprint("catalog_bp", __name__, url_prefix="/api")


@catalog_bp.get("/items")
def list_items():
    filters = {
        "search": request.args.get("search"),
        "tenant_slug": request.args.get("tenant_slug"),
        "category_slug": request.args.get("category_slug"),
        "business_type": request.args.get("business_type"),
        "min_price": request.args.get("min_price"),
        "max_price": request.args.get("max_price"),
        "only_in_stock": query_bool("only_in_stock"),
        "sort": request.args.get("sort"),
        "page": request.args.get("page", 1, type=int),
        "limit": request.args.get("limit", 12, type=int),
    }
    return jsonify({"ok": True, **catalog_service.list_storefront_items(filters)}), 200


@catalog_bp.get("/items/<int:item_id>")
def item_detail(item_id: int):
    return jsonify({"ok": True, "item": catalog_service.item_detail(item_id)}), 200


@catalog_bp.get("/tenants/<slug>/items")
def tenant_items(slug: str):
    result = catalog_service.list_tenant_items(
        require_actor(),
        slug,
        include_archived=query_bool("include_archived"),
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", 50, type=int),
    )
    return jsonify({"ok": True, **result}), 200


@catalog_bp.post("/tenants/<slug>/items")
def create_item(slug: str):
    item = catalog_service.create_item(require_actor(), slug, json_body())
    return jsonify({"ok": True, "item": item.to_dict()}), 201


@catalog_bp.patch("/items/<int:item_id>")
def update_item(item_id: int):
    item = catalog_service.update_item(require_actor(), item_id, json_body())
    return jsonify({"ok": True, "item": item.to_dict()}), 200


@catalog_bp.post("/items/<int:item_id>/archive")
def archive_item(item_id: int):
    archived = json_body().get("archived", True)
    item = catalog_service.archive_item(require_actor(), item_id, bool(archived))
    return jsonify({"ok": True, "item": item.to_dict()}), 200


@catalog_bp.get("/items/<int:item_id>/reviews")
def list_reviews(item_id: int):
    return jsonify({"ok": True, **review_service.list_reviews(item_id)}), 200


@catalog_bp.post("/items/<int:item_id>/reviews")
def create_review(item_id: int):
    data = json_body()
    review = review_service.create_review(require_actor(), item_id, data.get("rating"), data.get("comment") or "")
    return jsonify({"ok": True, "review": review.to_dict()}), 201


@catalog_bp.get("/categories")
def list_categories():
    rows = catalog_service.list_categories(
        business_type=request.args.get("business_type"),
        tenant_slug=request.args.get("tenant_slug"),
    )
    return jsonify({"ok": True, "categories": rows}), 200


@catalog_bp.post("/categories")
def create_category():
    category = catalog_service.create_category(require_actor(), json_body())
    return jsonify({"ok": True, "category": category.to_dict()}), 201
