from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal

import sqlalchemy as sa
from flask import current_app, has_app_context

from dropcart.extensions import db
from dropcart.models import InventoryAdjustment, Item, Tenant
from dropcart.services.access_policy import Actor, policy
from dropcart.utils.errors import BadRequestError, ForbiddenError, NotFoundError, ServiceError

REASONS = ("restock", "sale", "damage", "adjustment")


def _log(event: str, **fields) -> None:
    if not has_app_context():
        return
    parts = " ".join(f"{k}={v}" for k, v in fields.items())
    current_app.logger.info("%s %s", event, parts)


def is_available(item: Item, quantity: int = 1) -> bool:
    if not bool(item.track_inventory):
        return True
    return int(item.inventory or 0) >= int(quantity)


def stock_status(item: Item) -> dict:
    tracked = bool(item.track_inventory)
    inventory = int(item.inventory or 0)
    threshold = item.effective_low_stock_threshold
    return {
        "track_inventory": tracked,
        "inventory": inventory,
        "low_stock_threshold": threshold,
        "is_low_stock": tracked and 0 < inventory <= threshold,
        "is_out_of_stock": tracked and inventory <= 0,
        "is_available": is_available(item, 1),
    }


def _normalize_reason(reason: str | None) -> str:
    value = (reason or "adjustment").strip().lower()
    if value not in REASONS:
        raise BadRequestError(f"reason must be one of {'|'.join(REASONS)}", code="INVALID_REASON")
    return value


def _merge_lines(lines) -> "OrderedDict[int, int]":
    merged: "OrderedDict[int, int]" = OrderedDict()
    for item_id, qty in lines:
        qty = int(qty)
        if qty <= 0:
            raise BadRequestError("Quantity must be at least 1", code="INVALID_QUANTITY")
        merged[int(item_id)] = merged.get(int(item_id), 0) + qty
    return merged


def _shortage(item: Item, requested: int) -> dict:
    return {
        "item_id": int(item.id),
        "name": item.name,
        "requested": int(requested),
        "available": int(item.inventory or 0),
    }


def reserve_stock(items_by_id: dict, lines, *, order_id: int | None = None, actor_user_id: int | None = None) -> list[InventoryAdjustment]:
    """Decrement tracked stock for every line of an order, all or nothing.

    ``lines`` is an iterable of (item_id, quantity). Every line is checked
    before anything is written; each decrement is then a conditional UPDATE
    that only matches while enough stock remains, so a concurrent buyer who
    took the last unit makes this call fail instead of driving stock negative.
    Nothing is committed here: the caller owns the transaction and must roll
    back on error.
    """
    merged = _merge_lines(lines)

    shortages = []
    for item_id, qty in merged.items():
        item = items_by_id[item_id]
        if not is_available(item, qty):
            shortages.append(_shortage(item, qty))
    if shortages:
        raise BadRequestError(
            "Insufficient inventory for one or more items",
            code="INSUFFICIENT_INVENTORY",
            details={"items": shortages},
        )

    table = Item.__table__
    adjustments = []
    for item_id, qty in merged.items():
        item = items_by_id[item_id]
        if not bool(item.track_inventory):
            continue
        result = db.session.execute(
            sa.update(table)
            .where(table.c.id == item_id)
            .where(table.c.inventory >= qty)
            .values(inventory=table.c.inventory - qty)
        )
        if result.rowcount != 1:
            db.session.refresh(item)
            raise BadRequestError(
                "Insufficient inventory for one or more items",
                code="INSUFFICIENT_INVENTORY",
                details={"items": [_shortage(item, qty)]},
            )
        previous = int(item.inventory or 0)
        db.session.refresh(item)
        adjustment = InventoryAdjustment(
            item_id=item_id,
            tenant_id=int(item.tenant_id),
            actor_user_id=actor_user_id,
            order_id=order_id,
            previous_quantity=previous,
            new_quantity=int(item.inventory or 0),
            delta=-qty,
            reason="sale",
        )
        db.session.add(adjustment)
        adjustments.append(adjustment)
    return adjustments


def validated_quantity(quantity) -> int:
    try:
        value = int(quantity)
    except (TypeError, ValueError):
        raise BadRequestError("quantity must be an integer", code="INVALID_QUANTITY")
    if value < 0:
        raise BadRequestError("quantity must be zero or more", code="INVALID_QUANTITY")
    return value


def apply_set(item: Item, quantity: int, reason: str, actor: Actor) -> InventoryAdjustment:
    previous = int(item.inventory or 0)
    item.inventory = quantity
    row = InventoryAdjustment(
        item_id=int(item.id),
        tenant_id=int(item.tenant_id),
        actor_user_id=actor.user_id,
        previous_quantity=previous,
        new_quantity=quantity,
        delta=quantity - previous,
        reason=reason,
    )
    db.session.add(item)
    db.session.add(row)
    return row


def set_inventory(actor: Actor, item_id, quantity, reason: str = "adjustment") -> dict:
    policy.ensure_merchant(actor)
    qty = validated_quantity(quantity)
    reason = _normalize_reason(reason)
    item = policy.load_scoped(actor, Item, item_id, label="Item")
    row = apply_set(item, qty, reason, actor)
    db.session.commit()
    _log("inventory_set", item_id=item.id, tenant_id=item.tenant_id, previous=row.previous_quantity, new=qty, reason=reason)
    return {"item": item.to_dict(), "stock": stock_status(item), "adjustment": row.to_dict()}


def _tenant_for(actor: Actor, tenant_slug: str) -> Tenant:
    tenant = Tenant.query.filter_by(slug=(tenant_slug or "").strip().lower()).first()
    if tenant is None:
        raise NotFoundError("Tenant not found", code="TENANT_NOT_FOUND")
    policy.ensure_tenant_access(actor, tenant.id)
    return tenant


def bulk_set_inventory(actor: Actor, tenant_slug: str, updates: list, reason: str = "adjustment") -> dict:
    """Apply many absolute sets; each line reports its own outcome.

    A line fails on its own (unknown item, foreign item, bad quantity) without
    affecting the others.
    """
    policy.ensure_merchant(actor)
    reason = _normalize_reason(reason)
    tenant = _tenant_for(actor, tenant_slug)

    results = []
    for entry in updates or []:
        entry = entry if isinstance(entry, dict) else {}
        item_id = entry.get("item_id")
        try:
            qty = validated_quantity(entry.get("quantity"))
            item = policy.load_scoped(actor, Item, item_id, label="Item")
            if int(item.tenant_id) != int(tenant.id):
                raise ForbiddenError("Item does not belong to this store", code="TENANT_ACCESS_DENIED")
            row = apply_set(item, qty, reason, actor)
            results.append(
                {
                    "item_id": int(item.id),
                    "success": True,
                    "previous_quantity": row.previous_quantity,
                    "new_quantity": qty,
                }
            )
        except ServiceError as exc:
            results.append({"item_id": item_id, "success": False, "error": exc.kind, "message": exc.message})

    db.session.commit()
    succeeded = sum(1 for r in results if r["success"])
    _log("inventory_bulk_set", tenant_id=tenant.id, succeeded=succeeded, failed=len(results) - succeeded, reason=reason)
    return {"results": results, "succeeded": succeeded, "failed": len(results) - succeeded}


def low_stock_items(actor: Actor, tenant_slug: str, threshold: int | None = None) -> list[dict]:
    policy.ensure_merchant(actor)
    tenant = _tenant_for(actor, tenant_slug)
    query = Item.query.filter(
        Item.tenant_id == tenant.id,
        Item.track_inventory.is_(True),
        Item.is_archived.is_(False),
    )
    if threshold is not None:
        query = query.filter(Item.inventory <= int(threshold))
    out = []
    for item in query.order_by(Item.inventory.asc(), Item.id.asc()).all():
        limit = int(threshold) if threshold is not None else item.effective_low_stock_threshold
        if int(item.inventory or 0) <= limit:
            out.append({**item.to_dict(), "stock": stock_status(item)})
    return out


def inventory_summary(actor: Actor, tenant_slug: str) -> dict:
    policy.ensure_merchant(actor)
    tenant = _tenant_for(actor, tenant_slug)
    items = Item.query.filter(Item.tenant_id == tenant.id, Item.is_archived.is_(False)).all()

    tracked = [i for i in items if bool(i.track_inventory)]
    statuses = [stock_status(i) for i in tracked]
    total_value = sum(
        (Decimal(str(i.price or 0)) * int(i.inventory or 0) for i in tracked),
        Decimal("0"),
    )
    return {
        "tenant_id": int(tenant.id),
        "total_items": len(items),
        "tracked_items": len(tracked),
        "out_of_stock": sum(1 for s in statuses if s["is_out_of_stock"]),
        "low_stock": sum(1 for s in statuses if s["is_low_stock"]),
        "total_inventory_value": float(total_value.quantize(Decimal("0.01"))),
    }
