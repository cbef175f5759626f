from __future__ import annotations

import math
from datetime import datetime
from decimal import Decimal, InvalidOperation

from flask import current_app

from dropcart.extensions import db
from dropcart.models import Category, InventoryAdjustment, Item, Order, Tenant, User
from dropcart.models.tenant import WEEKDAYS
from dropcart.services.access_policy import Actor, policy
from dropcart.services.checkout_service import BUSINESS_TYPES, tenant_by_slug
from dropcart.services.delivery_service import preparation_minutes, travel_minutes
from dropcart.utils.errors import BadRequestError
from dropcart.utils.geo import haversine_km, valid_coordinates

DEFAULT_DISCOVERY_DISTANCE_KM = 20.0
EDITABLE_FIELDS = (
    "name",
    "address",
    "latitude",
    "longitude",
    "delivery_radius_km",
    "minimum_order",
    "delivery_fee",
    "image_url",
)


def _hhmm(value: str) -> int | None:
    try:
        hours, minutes = str(value).strip().split(":", 1)
        return int(hours) * 100 + int(minutes)
    except (TypeError, ValueError):
        return None


def is_open_now(hours: dict | None, now: datetime | None = None) -> bool:
    """Whether a weekly hours table is open at ``now`` (local wall clock).

    Ranges whose close is earlier than their open run past midnight.
    A missing table means always open; a missing day means closed.
    """
    if not hours:
        return True
    now = now or datetime.now()
    today = hours.get(WEEKDAYS[now.weekday()])
    if not isinstance(today, dict) or today.get("closed"):
        return False
    open_at = _hhmm(today.get("open"))
    close_at = _hhmm(today.get("close"))
    if open_at is None or close_at is None:
        return False
    current = now.hour * 100 + now.minute
    if open_at > close_at:
        return current >= open_at or current <= close_at
    return open_at <= current <= close_at


def estimated_delivery_minutes(business_type: str, distance_km: float) -> int:
    return preparation_minutes(business_type) + travel_minutes(distance_km)


def _business_type(value: str | None) -> str | None:
    value = (value or "").strip().lower()
    if not value:
        return None
    if value not in BUSINESS_TYPES:
        raise BadRequestError(f"business_type must be one of {'|'.join(BUSINESS_TYPES)}", code="INVALID_BUSINESS_TYPE")
    return value


def discover_nearby(lat, lng, *, business_type=None, max_distance=None, limit=20, currently_open=False, now=None) -> dict:
    """Active merchants near a point, nearest first.

    Without ``currently_open`` only merchants that deliver to the point are
    listed; with it, merchants within ``max_distance`` are listed if open,
    each flagged with whether it can deliver.
    """
    if not valid_coordinates(lat, lng):
        raise BadRequestError("Valid lat and lng are required", code="INVALID_COORDINATES")
    lat, lng = float(lat), float(lng)
    max_distance = float(max_distance) if max_distance is not None else DEFAULT_DISCOVERY_DISTANCE_KM
    limit = max(1, min(int(limit or 20), 100))

    query = Tenant.query.filter(Tenant.is_active.is_(True))
    kind = _business_type(business_type)
    if kind:
        query = query.filter(Tenant.business_type == kind)

    merchants = []
    for tenant in query.all():
        distance = haversine_km(lat, lng, tenant.latitude, tenant.longitude)
        can_deliver = distance <= float(tenant.delivery_radius_km or 0)
        if distance > max_distance or (not can_deliver and not currently_open):
            continue
        open_now = is_open_now(tenant.operating_hours, now) if currently_open else True
        if currently_open and not open_now:
            continue
        payload = tenant.to_dict()
        payload.update(
            {
                "distance_km": distance,
                "can_deliver": can_deliver,
                "is_currently_open": open_now,
                "estimated_delivery_minutes": estimated_delivery_minutes(tenant.business_type, distance),
            }
        )
        merchants.append(payload)

    merchants.sort(key=lambda m: (m["distance_km"], m["id"]))
    merchants = merchants[:limit]
    return {
        "merchants": merchants,
        "user_location": {"lat": lat, "lng": lng},
        "search_radius_km": max_distance,
        "total_found": len(merchants),
    }


def list_by_business_type(business_type, *, lat=None, lng=None, limit=12, offset=0, currently_open=False, now=None) -> dict:
    kind = _business_type(business_type)
    if kind is None:
        raise BadRequestError("business_type is required", code="INVALID_BUSINESS_TYPE")
    limit = max(1, min(int(limit or 12), 100))
    offset = max(0, int(offset or 0))
    has_location = lat is not None and lng is not None
    if has_location and not valid_coordinates(lat, lng):
        raise BadRequestError("Valid lat and lng are required", code="INVALID_COORDINATES")

    query = Tenant.query.filter(Tenant.is_active.is_(True), Tenant.business_type == kind)
    total = query.count()
    out = []
    for tenant in query.order_by(Tenant.created_at.desc(), Tenant.id.desc()).all():
        payload = tenant.to_dict()
        distance = None
        can_deliver = True
        if has_location:
            distance = haversine_km(float(lat), float(lng), tenant.latitude, tenant.longitude)
            can_deliver = distance <= float(tenant.delivery_radius_km or 0)
        open_now = is_open_now(tenant.operating_hours, now) if currently_open else True
        if (has_location and not can_deliver) or (currently_open and not open_now):
            continue
        payload.update(
            {
                "distance_km": distance,
                "can_deliver": can_deliver,
                "is_currently_open": open_now,
                "estimated_delivery_minutes": (
                    estimated_delivery_minutes(tenant.business_type, distance) if distance is not None else None
                ),
            }
        )
        out.append(payload)
    if has_location:
        out.sort(key=lambda m: (m["distance_km"], m["id"]))
    page = out[offset:offset + limit]
    return {
        "merchants": page,
        "total_count": total,
        "has_more": offset + limit < len(out),
        "business_type": kind,
    }


def get_public_tenant(slug: str) -> dict:
    tenant = tenant_by_slug(slug)
    payload = tenant.to_dict()
    payload["is_currently_open"] = is_open_now(tenant.operating_hours)
    return payload


NUMERIC_FIELDS = {
    "latitude": float,
    "longitude": float,
    "delivery_radius_km": float,
    "minimum_order": Decimal,
    "delivery_fee": Decimal,
}


def _coerce(field: str, value):
    convert = NUMERIC_FIELDS.get(field)
    if convert is None:
        text = (str(value) if value is not None else "").strip()
        if field == "name" and not text:
            raise BadRequestError("name is required", code="INVALID_TENANT")
        return text or (None if field == "image_url" else "")
    try:
        parsed = convert(str(value))
    except (TypeError, ValueError, InvalidOperation):
        raise BadRequestError(f"{field} must be numeric", code="INVALID_TENANT")
    if not (parsed.is_finite() if isinstance(parsed, Decimal) else math.isfinite(parsed)):
        raise BadRequestError(f"{field} must be a finite number", code="INVALID_TENANT")
    if field in ("minimum_order", "delivery_fee") and parsed < 0:
        raise BadRequestError(f"{field} cannot be negative", code="INVALID_TENANT")
    return parsed


def update_tenant(actor: Actor, slug: str, data: dict) -> Tenant:
    policy.ensure_merchant(actor)
    tenant = tenant_by_slug(slug)
    policy.ensure_tenant_access(actor, tenant.id)
    data = data or {}
    for field in EDITABLE_FIELDS:
        if field not in data:
            continue
        setattr(tenant, field, _coerce(field, data[field]))
    if "operating_hours" in data:
        hours = data["operating_hours"]
        if not isinstance(hours, dict):
            raise BadRequestError("operating_hours must be an object keyed by weekday", code="INVALID_HOURS")
        tenant.operating_hours = hours
    if float(tenant.delivery_radius_km or 0) <= 0:
        raise BadRequestError("delivery_radius_km must be positive", code="INVALID_TENANT")
    if not valid_coordinates(tenant.latitude, tenant.longitude):
        raise BadRequestError("Valid latitude and longitude are required", code="INVALID_COORDINATES")
    db.session.add(tenant)
    db.session.commit()
    current_app.logger.info("tenant_updated tenant_id=%s fields=%s", tenant.id, ",".join(sorted(data.keys())))
    return tenant


def set_active(actor: Actor, slug: str, active: bool) -> Tenant:
    """Soft-(de)activate a store. Stores cannot be switched on before payment verification."""
    policy.ensure_merchant(actor)
    tenant = tenant_by_slug(slug)
    policy.ensure_tenant_access(actor, tenant.id)
    if active:
        policy.ensure_can_sell(tenant)
    tenant.is_active = bool(active)
    db.session.add(tenant)
    db.session.commit()
    current_app.logger.info("tenant_active_toggled tenant_id=%s active=%s", tenant.id, tenant.is_active)
    return tenant


def delete_tenant(actor: Actor, slug: str) -> None:
    policy.ensure_superadmin(actor)
    tenant = tenant_by_slug(slug)
    if Order.query.filter_by(tenant_id=tenant.id).first() is not None:
        raise BadRequestError("Stores with orders can only be deactivated", code="TENANT_HAS_ORDERS")
    User.query.filter_by(tenant_id=tenant.id).update({"tenant_id": None})
    InventoryAdjustment.query.filter_by(tenant_id=tenant.id).delete()
    Item.query.filter_by(tenant_id=tenant.id).delete()
    Category.query.filter_by(tenant_id=tenant.id).delete()
    db.session.delete(tenant)
    db.session.commit()
    current_app.logger.info("tenant_deleted tenant_id=%s slug=%s", tenant.id, slug)
