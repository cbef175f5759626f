from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app

from dropcart.extensions import db
from dropcart.models import Order, OrderLine, OrderTransition, Tenant
from dropcart.services import checkout_service, inventory_service
from dropcart.services.access_policy import Actor, Role, policy
from dropcart.services.delivery_service import preparation_minutes, quote_delivery
from dropcart.services.notification_service import ORDER_PLACED, STATUS_CHANGED, queue_order_notification
from dropcart.services.order_status import OrderStatus, can_transition, status_label, status_message
from dropcart.utils.errors import BadRequestError, ForbiddenError, NotFoundError, ServiceError
from dropcart.utils.geo import valid_coordinates
from dropcart.utils.money import quantize_money
from dropcart.utils.observability import get_request_id
from dropcart.utils.pagination import paginate

TIMELINE_STEP_MINUTES = 15
ORDER_TYPES = ("delivery", "pickup")
PAYMENT_METHODS = ("card", "cash")


def _new_order_number() -> str:
    return f"ORD-{datetime.utcnow().strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3).upper()}"


def _parse_address(raw) -> dict:
    raw = raw if isinstance(raw, dict) else {}
    coords = raw.get("coordinates") if isinstance(raw.get("coordinates"), dict) else {}
    lat = coords.get("lat", raw.get("latitude"))
    lng = coords.get("lng", raw.get("longitude"))
    if not valid_coordinates(lat, lng):
        raise BadRequestError("Delivery address coordinates are required", code="INVALID_COORDINATES")
    return {
        "street": (raw.get("street") or "").strip()[:255],
        "city": (raw.get("city") or "").strip()[:120],
        "postal_code": (raw.get("postal_code") or "").strip()[:32],
        "country": (raw.get("country") or "").strip()[:80],
        "latitude": float(lat),
        "longitude": float(lng),
        "address_instructions": (raw.get("instructions") or "").strip()[:500] or None,
    }


def _requested_lines(raw_lines) -> list[dict]:
    out = []
    for entry in raw_lines or []:
        entry = entry if isinstance(entry, dict) else {}
        try:
            item_id = int(entry.get("item_id"))
            quantity = int(entry.get("quantity", 1))
        except (TypeError, ValueError):
            raise BadRequestError("Each line needs a numeric item_id and quantity", code="INVALID_LINE")
        if quantity <= 0:
            raise BadRequestError("Quantity must be at least 1", code="INVALID_QUANTITY")
        out.append(
            {
                "item_id": item_id,
                "quantity": quantity,
                "special_instructions": (entry.get("special_instructions") or "").strip()[:500] or None,
            }
        )
    if not out:
        raise BadRequestError("At least one item is required", code="EMPTY_ORDER")
    return out


def place_order(actor: Actor, data: dict) -> dict:
    """Create an order for one store.

    Tenant, items and delivery are re-validated here, stock is decremented in
    the same transaction as the order insert, and for card payments the
    gateway session is opened before commit so a gateway failure leaves no
    order and no stock change behind.
    """
    data = data or {}
    order_type = (data.get("order_type") or "delivery").strip().lower()
    if order_type not in ORDER_TYPES:
        raise BadRequestError("order_type must be delivery or pickup", code="INVALID_ORDER_TYPE")
    payment_method = (data.get("payment_method") or "card").strip().lower()
    if payment_method not in PAYMENT_METHODS:
        raise BadRequestError("payment_method must be card or cash", code="INVALID_PAYMENT_METHOD")
    lines = _requested_lines(data.get("items"))

    tenant = checkout_service.tenant_by_slug(data.get("tenant_slug") or "")
    if not bool(tenant.is_active):
        raise BadRequestError("Merchant is currently not accepting orders", code="MERCHANT_NOT_ACCEPTING_ORDERS")
    policy.ensure_can_sell(tenant)
    items = checkout_service.load_sellable_items(tenant, [l["item_id"] for l in lines])

    subtotal = quantize_money(
        sum((Decimal(str(items[l["item_id"]].price)) * l["quantity"] for l in lines), Decimal("0"))
    )

    address = {}
    distance_km = None
    if order_type == "delivery":
        address = _parse_address(data.get("delivery_address"))
        quote = quote_delivery(tenant, address["latitude"], address["longitude"], subtotal)
        if not quote.can_deliver:
            raise BadRequestError(quote.message, code="OUTSIDE_DELIVERY_RADIUS", details=quote.to_dict())
        if not quote.meets_minimum_order:
            raise BadRequestError(
                f"Minimum order for delivery is {float(quote.minimum_order):.2f}",
                code="BELOW_MINIMUM_ORDER",
                details={"minimum_order": float(quote.minimum_order), "subtotal": float(subtotal)},
            )
        delivery_fee = quote.delivery_fee
        distance_km = quote.distance_km
        eta_minutes = int(quote.estimated_minutes or 0)
    else:
        delivery_fee = Decimal("0.00")
        eta_minutes = preparation_minutes(tenant.business_type)

    now = datetime.utcnow()
    order = Order(
        number=_new_order_number(),
        user_id=actor.user_id,
        tenant_id=tenant.id,
        status=OrderStatus.PENDING,
        order_type=order_type,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        total=quantize_money(subtotal + delivery_fee),
        distance_km=distance_km,
        estimated_delivery_at=now + timedelta(minutes=eta_minutes),
        special_instructions=(data.get("special_instructions") or "").strip() or None,
        payment_method=payment_method,
        payment_account_id=tenant.payment_account_id,
        created_at=now,
        updated_at=now,
        **address,
    )
    for l in lines:
        item = items[l["item_id"]]
        order.lines.append(
            OrderLine(
                item_id=item.id,
                item_name=item.name,
                unit_price=item.price,
                quantity=l["quantity"],
                special_instructions=l["special_instructions"],
            )
        )

    checkout_url = ""
    try:
        db.session.add(order)
        db.session.flush()
        inventory_service.reserve_stock(
            items,
            [(l["item_id"], l["quantity"]) for l in lines],
            order_id=order.id,
            actor_user_id=actor.user_id,
        )
        db.session.add(
            OrderTransition(
                order_id=order.id,
                from_status="",
                to_status=OrderStatus.PENDING,
                actor_type=actor.as_log_actor()["type"],
                actor_id=actor.user_id,
                reason="placed",
                created_at=now,
            )
        )
        if payment_method == "card":
            session, _subtotal_minor, _fee_minor = checkout_service.open_payment_session(
                tenant,
                [(items[l["item_id"]], l["quantity"]) for l in lines],
                extra_fee=delivery_fee,
                metadata={"order_id": order.id, "order_number": order.number, "tenant_id": tenant.id},
            )
            order.payment_session_id = session.session_id
            checkout_url = session.url
        db.session.commit()
    except ServiceError:
        db.session.rollback()
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception("order_place_failed tenant_id=%s user_id=%s", tenant.id, actor.user_id)
        raise

    current_app.logger.info(
        "order_placed order_id=%s number=%s tenant_id=%s user_id=%s total=%s type=%s",
        order.id,
        order.number,
        tenant.id,
        actor.user_id,
        order.total,
        order.order_type,
    )
    queue_order_notification(order.id, ORDER_PLACED, trace_id=get_request_id())
    payload = order.to_dict()
    payload["checkout_url"] = checkout_url
    return payload


def _check_authority(actor: Actor, order: Order, target: str) -> None:
    if actor.kind == "system" or policy.is_superadmin(actor):
        return
    is_store = policy.can_access_tenant(actor, order.tenant_id) and actor.role == Role.MERCHANT
    if target == OrderStatus.CANCELLED:
        if is_store or (actor.user_id is not None and int(actor.user_id) == int(order.user_id)):
            return
        raise ForbiddenError("You cannot cancel this order", code="ORDER_ACCESS_DENIED")
    if not is_store:
        raise ForbiddenError("Only the store can advance this order", code="ORDER_ACCESS_DENIED")


def transition_order(actor: Actor, order: Order, to_status: str, *, reason: str = "") -> Order:
    """Move an order along its lifecycle, log the transition and notify the customer."""
    target = (to_status or "").strip().lower()
    if target not in OrderStatus.ALL:
        raise BadRequestError(f"Unknown status {to_status}", code="INVALID_STATUS")
    _check_authority(actor, order, target)

    current = order.status
    if current in OrderStatus.TERMINAL:
        raise BadRequestError(
            f"Order is already {status_label(current).lower()} and cannot change",
            code="ORDER_FINALIZED",
        )
    if not can_transition(current, target):
        raise BadRequestError(
            f"Cannot move order from {current} to {target}",
            code="INVALID_STATUS_TRANSITION",
            details={"from": current, "to": target},
        )

    log_actor = actor.as_log_actor()
    now = datetime.utcnow()
    order.status = target
    order.updated_at = now
    db.session.add(order)
    db.session.add(
        OrderTransition(
            order_id=order.id,
            from_status=current,
            to_status=target,
            actor_type=str(log_actor["type"])[:32],
            actor_id=log_actor["id"],
            reason=(reason or "")[:240] or None,
            created_at=now,
        )
    )
    db.session.commit()
    current_app.logger.info(
        "order_status_changed order_id=%s from=%s to=%s actor=%s:%s",
        order.id,
        current,
        target,
        log_actor["type"],
        log_actor["id"],
    )
    queue_order_notification(order.id, STATUS_CHANGED, current, target, trace_id=get_request_id())
    return order


def build_timeline(order: Order) -> list[dict]:
    """Display timeline for an order.

    Logged transition times are used where present; otherwise earlier steps
    are spaced fifteen minutes apart from creation and marked estimated.
    """
    logged = {}
    for row in OrderTransition.query.filter_by(order_id=order.id).order_by(OrderTransition.id.asc()).all():
        logged.setdefault(row.to_status, row.created_at)

    created = order.created_at or datetime.utcnow()
    if order.status == OrderStatus.CANCELLED:
        cancelled_at = logged.get(OrderStatus.CANCELLED)
        return [
            {
                "status": OrderStatus.PENDING,
                "label": status_label(OrderStatus.PENDING),
                "message": status_message(OrderStatus.PENDING),
                "state": "completed",
                "timestamp": created.isoformat(),
                "estimated": False,
            },
            {
                "status": OrderStatus.CANCELLED,
                "label": status_label(OrderStatus.CANCELLED),
                "message": status_message(OrderStatus.CANCELLED),
                "state": "current",
                "timestamp": (cancelled_at or order.updated_at or created).isoformat(),
                "estimated": cancelled_at is None,
            },
        ]

    current_idx = OrderStatus.HAPPY_PATH.index(order.status)
    steps = []
    for idx, status in enumerate(OrderStatus.HAPPY_PATH):
        if idx < current_idx:
            state = "completed"
        elif idx == current_idx:
            state = "current"
        else:
            state = "upcoming"
        timestamp = None
        estimated = False
        if idx == 0:
            timestamp = created
        elif idx <= current_idx:
            timestamp = logged.get(status)
            if timestamp is None:
                timestamp = created + timedelta(minutes=TIMELINE_STEP_MINUTES * idx)
                estimated = True
        steps.append(
            {
                "status": status,
                "label": status_label(status),
                "message": status_message(status),
                "state": state,
                "timestamp": timestamp.isoformat() if timestamp else None,
                "estimated": estimated,
            }
        )
    return steps


def get_order(actor: Actor, order_id) -> Order:
    try:
        oid = int(order_id)
    except (TypeError, ValueError):
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
    order = db.session.get(Order, oid)
    if order is None:
        raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
    if actor.user_id is not None and int(order.user_id) == int(actor.user_id):
        return order
    if policy.can_access_tenant(actor, order.tenant_id):
        return order
    raise ForbiddenError("You do not have access to this order", code="ORDER_ACCESS_DENIED")


def order_detail(actor: Actor, order_id) -> dict:
    order = get_order(actor, order_id)
    tenant = db.session.get(Tenant, int(order.tenant_id))
    payload = order.to_dict()
    payload["tenant"] = tenant.summary() if tenant is not None else None
    payload["timeline"] = build_timeline(order)
    payload["status_message"] = status_message(order.status)
    return payload


def list_user_orders(actor: Actor, *, status: str | None = None, page=1, limit=20) -> dict:
    query = Order.query.filter(Order.user_id == actor.user_id)
    if status:
        query = query.filter(Order.status == status.strip().lower())
    return paginate(query.order_by(Order.created_at.desc(), Order.id.desc()), page, limit)


def list_tenant_orders(actor: Actor, tenant_slug: str, *, status: str | None = None, page=1, limit=20) -> dict:
    policy.ensure_merchant(actor)
    tenant = checkout_service.tenant_by_slug(tenant_slug)
    policy.ensure_tenant_access(actor, tenant.id)
    query = policy.scope_query(actor, Order.query, Order).filter(Order.tenant_id == tenant.id)
    if status:
        query = query.filter(Order.status == status.strip().lower())
    return paginate(query.order_by(Order.created_at.desc(), Order.id.desc()), page, limit)


def mark_paid(session_id: str) -> Order | None:
    """Payment confirmed by the gateway: record it and confirm a pending order."""
    order = Order.query.filter_by(payment_session_id=(session_id or "").strip()).first()
    if order is None:
        return None
    if order.payment_status != "paid":
        order.payment_status = "paid"
        db.session.add(order)
        db.session.commit()
    if order.status == OrderStatus.PENDING:
        transition_order(Actor.system(), order, OrderStatus.CONFIRMED, reason="payment_completed")
    return order
