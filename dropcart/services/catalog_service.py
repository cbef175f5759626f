from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import func, or_

from dropcart.extensions import db
from dropcart.models import Category, Item, OrderLine, Review, Tenant
from dropcart.services.access_policy import Actor, policy
from dropcart.services.checkout_service import tenant_by_slug
from dropcart.services.inventory_service import apply_set, stock_status, validated_quantity
from dropcart.services.review_service import review_stats, review_stats_for
from dropcart.utils.errors import BadRequestError, NotFoundError
from dropcart.utils.pagination import paginate

ITEM_BUSINESS_TYPES = ("food", "medicine", "grocery")
CATEGORY_BUSINESS_TYPES = ("food", "pharmacy", "grocery", "all")
UNITS = ("piece", "kg", "liter", "pack", "box")
SORTS = ("newest", "price-low", "price-high", "rating", "popular")
SLUG_RE = re.compile(r"^[a-z0-9-]+$")

ITEM_FLAGS = ("track_inventory", "prescription_required", "is_perishable", "is_active", "is_private")


def _choice(value, allowed, field: str, default=None):
    value = (value or "").strip().lower() if isinstance(value, str) else value
    if value in (None, ""):
        if default is not None:
            return default
        raise BadRequestError(f"{field} is required", code="INVALID_ITEM")
    if value not in allowed:
        raise BadRequestError(f"{field} must be one of {'|'.join(allowed)}", code="INVALID_ITEM")
    return value


def _price(value) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise BadRequestError("price must be a number", code="INVALID_PRICE")
    if not price.is_finite() or price <= 0:
        raise BadRequestError("price must be positive", code="INVALID_PRICE")
    return price.quantize(Decimal("0.01"))


def _non_negative_int(value, field: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise BadRequestError(f"{field} must be an integer", code="INVALID_ITEM")
    if parsed < 0:
        raise BadRequestError(f"{field} cannot be negative", code="INVALID_ITEM")
    return parsed


def _category_for(tenant_id: int, category_id) -> int | None:
    if category_id in (None, ""):
        return None
    try:
        category = db.session.get(Category, int(category_id))
    except (TypeError, ValueError):
        category = None
    if category is None or (category.tenant_id is not None and int(category.tenant_id) != int(tenant_id)):
        raise NotFoundError("Category not found", code="CATEGORY_NOT_FOUND")
    return int(category.id)


def _apply_item_fields(item: Item, data: dict, *, creating: bool) -> None:
    if creating or "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise BadRequestError("name is required", code="INVALID_ITEM")
        item.name = name[:160]
    if creating or "price" in data:
        item.price = _price(data.get("price"))
    if "description" in data:
        item.description = (data.get("description") or "").strip() or None
    if creating or "business_type" in data:
        item.business_type = _choice(data.get("business_type"), ITEM_BUSINESS_TYPES, "business_type")
    if creating or "unit" in data:
        item.unit = _choice(data.get("unit"), UNITS, "unit", default="piece")
    if creating:
        item.inventory = _non_negative_int(data.get("inventory", 100), "inventory")
    if creating or "low_stock_threshold" in data:
        item.low_stock_threshold = _non_negative_int(data.get("low_stock_threshold", 10), "low_stock_threshold")
    if "preparation_minutes" in data:
        item.preparation_minutes = _non_negative_int(data.get("preparation_minutes"), "preparation_minutes")
    if "image_url" in data:
        item.image_url = (data.get("image_url") or "").strip() or None
    if "category_id" in data:
        item.category_id = _category_for(item.tenant_id, data.get("category_id"))
    for flag in ITEM_FLAGS:
        if flag in data:
            setattr(item, flag, bool(data.get(flag)))
        elif creating:
            setattr(item, flag, flag in ("track_inventory", "is_active"))


def create_item(actor: Actor, tenant_slug: str, data: dict) -> Item:
    policy.ensure_merchant(actor)
    tenant = tenant_by_slug(tenant_slug)
    policy.ensure_tenant_access(actor, tenant.id)
    policy.ensure_can_sell(tenant, actor=actor)

    item = Item(tenant_id=tenant.id)
    _apply_item_fields(item, data or {}, creating=True)
    db.session.add(item)
    db.session.commit()
    current_app.logger.info("item_created item_id=%s tenant_id=%s actor=%s", item.id, tenant.id, actor.user_id)
    return item


def update_item(actor: Actor, item_id, data: dict) -> Item:
    """Edit an item; a stock change is written to the inventory ledger as an adjustment."""
    policy.ensure_merchant(actor)
    data = data or {}
    item = policy.load_scoped(actor, Item, item_id, label="Item")
    policy.ensure_can_sell(db.session.get(Tenant, int(item.tenant_id)), actor=actor)

    quantity = validated_quantity(data["inventory"]) if "inventory" in data else None
    _apply_item_fields(item, data, creating=False)
    adjustment = None
    if quantity is not None and quantity != int(item.inventory or 0):
        adjustment = apply_set(item, quantity, "adjustment", actor)
    db.session.add(item)
    db.session.commit()
    current_app.logger.info("item_updated item_id=%s tenant_id=%s fields=%s", item.id, item.tenant_id, ",".join(sorted(data.keys())))
    if adjustment is not None:
        current_app.logger.info(
            "inventory_set item_id=%s tenant_id=%s previous=%s new=%s reason=adjustment",
            item.id,
            item.tenant_id,
            adjustment.previous_quantity,
            adjustment.new_quantity,
        )
    return item


def archive_item(actor: Actor, item_id, archived: bool = True) -> Item:
    policy.ensure_merchant(actor)
    item = policy.load_scoped(actor, Item, item_id, label="Item")
    item.is_archived = bool(archived)
    db.session.add(item)
    db.session.commit()
    current_app.logger.info("item_archived item_id=%s archived=%s", item.id, item.is_archived)
    return item


def _with_stats(items, stats) -> list[dict]:
    out = []
    for item in items:
        payload = item.to_dict()
        payload["stock"] = stock_status(item)
        payload["review_stats"] = stats.get(int(item.id), {"count": 0, "average_rating": 0.0})
        out.append(payload)
    return out


def list_storefront_items(filters: dict) -> dict:
    """Public listing across active stores, excluding archived and private items."""
    filters = filters or {}
    sort = (filters.get("sort") or "newest").strip().lower()
    if sort not in SORTS:
        raise BadRequestError(f"sort must be one of {'|'.join(SORTS)}", code="INVALID_SORT")

    query = Item.query.join(Tenant, Tenant.id == Item.tenant_id).filter(
        Item.is_active.is_(True),
        Item.is_archived.is_(False),
        Item.is_private.is_(False),
        Tenant.is_active.is_(True),
    )
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        query = query.filter(or_(Item.name.ilike(like), Item.description.ilike(like)))
    if filters.get("tenant_slug"):
        query = query.filter(Tenant.slug == str(filters["tenant_slug"]).strip().lower())
    if filters.get("business_type"):
        query = query.filter(Item.business_type == _choice(filters["business_type"], ITEM_BUSINESS_TYPES, "business_type"))
    if filters.get("category_slug"):
        query = query.join(Category, Category.id == Item.category_id).filter(
            Category.slug == str(filters["category_slug"]).strip().lower()
        )
    for key, op in (("min_price", "__ge__"), ("max_price", "__le__")):
        if filters.get(key) not in (None, ""):
            try:
                bound = Decimal(str(filters[key]))
            except (InvalidOperation, ValueError):
                raise BadRequestError(f"{key} must be a number", code="INVALID_FILTER")
            query = query.filter(getattr(Item.price, op)(bound))
    if filters.get("only_in_stock"):
        query = query.filter(or_(Item.track_inventory.is_(False), Item.inventory > 0))

    if sort == "price-low":
        query = query.order_by(Item.price.asc(), Item.id.asc())
    elif sort == "price-high":
        query = query.order_by(Item.price.desc(), Item.id.asc())
    elif sort == "rating":
        ratings = (
            db.session.query(Review.item_id.label("item_id"), func.avg(Review.rating).label("avg_rating"))
            .group_by(Review.item_id)
            .subquery()
        )
        query = query.outerjoin(ratings, ratings.c.item_id == Item.id).order_by(
            func.coalesce(ratings.c.avg_rating, 0).desc(), Item.created_at.desc(), Item.id.desc()
        )
    elif sort == "popular":
        sold = (
            db.session.query(OrderLine.item_id.label("item_id"), func.sum(OrderLine.quantity).label("sold"))
            .group_by(OrderLine.item_id)
            .subquery()
        )
        query = query.outerjoin(sold, sold.c.item_id == Item.id).order_by(
            func.coalesce(sold.c.sold, 0).desc(), Item.created_at.desc(), Item.id.desc()
        )
    else:
        query = query.order_by(Item.created_at.desc(), Item.id.desc())

    page = paginate(query, filters.get("page", 1), filters.get("limit", 12), serialize=lambda r: r)
    page["docs"] = _with_stats(page["docs"], review_stats_for([i.id for i in page["docs"]]))
    return page


def list_tenant_items(actor: Actor, tenant_slug: str, *, include_archived: bool = False, page=1, limit=50) -> dict:
    policy.ensure_merchant(actor)
    tenant = tenant_by_slug(tenant_slug)
    policy.ensure_tenant_access(actor, tenant.id)
    query = policy.scope_query(actor, Item.query, Item).filter(Item.tenant_id == tenant.id)
    if not include_archived:
        query = query.filter(Item.is_archived.is_(False))
    result = paginate(query.order_by(Item.created_at.desc(), Item.id.desc()), page, limit, serialize=lambda r: r)
    result["docs"] = _with_stats(result["docs"], review_stats_for([i.id for i in result["docs"]]))
    return result


def item_detail(item_id) -> dict:
    try:
        item = db.session.get(Item, int(item_id))
    except (TypeError, ValueError):
        item = None
    if item is None or not item.is_active or item.is_archived:
        raise NotFoundError("Item not found or unavailable", code="ITEM_NOT_FOUND")
    tenant = db.session.get(Tenant, int(item.tenant_id))
    if tenant is None or not tenant.is_active:
        raise NotFoundError("Merchant is currently not accepting orders", code="MERCHANT_NOT_ACCEPTING_ORDERS")
    payload = item.to_dict()
    payload["stock"] = stock_status(item)
    payload["review_stats"] = review_stats(item.id)
    payload["tenant"] = tenant.summary()
    category = db.session.get(Category, int(item.category_id)) if item.category_id is not None else None
    payload["category"] = category.to_dict() if category is not None else None
    return payload


def _tree(rows: list[Category]) -> list[dict]:
    nodes = {int(c.id): {**c.to_dict(), "subcategories": []} for c in rows}
    roots = []
    for category in rows:
        node = nodes[int(category.id)]
        parent = nodes.get(int(category.parent_id)) if category.parent_id is not None else None
        if parent is not None:
            parent["subcategories"].append(node)
        else:
            roots.append(node)
    return roots


def list_categories(*, business_type: str | None = None, tenant_slug: str | None = None) -> list[dict]:
    """Active categories as a tree: global ones plus, when asked, one store's own."""
    query = Category.query.filter(Category.is_active.is_(True))
    if tenant_slug:
        tenant = tenant_by_slug(tenant_slug)
        query = query.filter(or_(Category.tenant_id.is_(None), Category.tenant_id == tenant.id))
    else:
        query = query.filter(Category.tenant_id.is_(None))
    if business_type:
        kind = _choice(business_type, CATEGORY_BUSINESS_TYPES, "business_type")
        query = query.filter(Category.business_type.in_((kind, "all")))
    rows = query.order_by(Category.sort_order.asc(), Category.name.asc(), Category.id.asc()).all()
    return _tree(rows)


def create_category(actor: Actor, data: dict) -> Category:
    """Stores create their own categories; only superadmins create global ones."""
    data = data or {}
    name = (data.get("name") or "").strip()
    slug = (data.get("slug") or "").strip().lower()
    if not name:
        raise BadRequestError("name is required", code="INVALID_CATEGORY")
    if not slug or not SLUG_RE.match(slug):
        raise BadRequestError("slug may only contain lowercase letters, numbers and hyphens", code="INVALID_SLUG")

    tenant_id = None
    if data.get("tenant_slug"):
        policy.ensure_merchant(actor)
        tenant = tenant_by_slug(data["tenant_slug"])
        policy.ensure_tenant_access(actor, tenant.id)
        tenant_id = tenant.id
    else:
        policy.ensure_superadmin(actor)

    taken = Category.query.filter(Category.slug == slug)
    taken = taken.filter(Category.tenant_id.is_(None)) if tenant_id is None else taken.filter(Category.tenant_id == tenant_id)
    if taken.first() is not None:
        raise BadRequestError("That category slug is taken", code="SLUG_TAKEN")

    parent_id = None
    if data.get("parent_id") not in (None, ""):
        parent_id = _category_for(tenant_id, data["parent_id"]) if tenant_id is not None else None
        if tenant_id is None:
            try:
                parent = db.session.get(Category, int(data["parent_id"]))
            except (TypeError, ValueError):
                parent = None
            if parent is None or parent.tenant_id is not None:
                raise NotFoundError("Category not found", code="CATEGORY_NOT_FOUND")
            parent_id = int(parent.id)

    category = Category(
        tenant_id=tenant_id,
        name=name[:120],
        slug=slug,
        business_type=_choice(data.get("business_type"), CATEGORY_BUSINESS_TYPES, "business_type", default="all"),
        parent_id=parent_id,
        sort_order=_non_negative_int(data.get("sort_order") or 0, "sort_order"),
    )
    db.session.add(category)
    db.session.commit()
    current_app.logger.info("category_created category_id=%s tenant_id=%s slug=%s", category.id, tenant_id, slug)
    return category
