from __future__ import annotations

import math
import re
from decimal import Decimal

from flask import current_app

from dropcart.extensions import db
from dropcart.integrations.common import (
    IntegrationCallError,
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
)
from dropcart.integrations.payments.base import CheckoutLine, CheckoutSessionResult
from dropcart.integrations.payments.factory import build_payments_provider
from dropcart.models import Item, Tenant, User
from dropcart.services.access_policy import Actor, Role, policy
from dropcart.utils.errors import BadRequestError, InternalError, NotFoundError
from dropcart.utils.geo import valid_coordinates
from dropcart.utils.money import bps_of_minor, money_major_to_minor
from dropcart.utils.settings import get_settings

SLUG_RE = re.compile(r"^[a-z0-9-]+$")
BUSINESS_TYPES = ("restaurant", "pharmacy", "grocery")


def _provider():
    try:
        return build_payments_provider(get_settings())
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
        current_app.logger.error("payments_provider_unavailable err=%s", exc)
        raise InternalError("Payments are not available right now", code="PAYMENTS_UNAVAILABLE")


def tenant_by_slug(slug: str) -> Tenant:
    tenant = Tenant.query.filter_by(slug=(slug or "").strip().lower()).first()
    if tenant is None:
        raise NotFoundError("Tenant not found", code="TENANT_NOT_FOUND")
    return tenant


def _merge_requested(lines) -> dict[int, int]:
    merged: dict[int, int] = {}
    for entry in lines or []:
        entry = entry if isinstance(entry, dict) else {}
        try:
            item_id = int(entry.get("item_id"))
            quantity = int(entry.get("quantity", 1))
        except (TypeError, ValueError):
            raise BadRequestError("Each line needs a numeric item_id and quantity", code="INVALID_LINE")
        if quantity <= 0:
            raise BadRequestError("Quantity must be at least 1", code="INVALID_QUANTITY")
        merged[item_id] = merged.get(item_id, 0) + quantity
    if not merged:
        raise BadRequestError("At least one item is required", code="EMPTY_ORDER")
    return merged


def load_sellable_items(tenant: Tenant, item_ids) -> dict[int, Item]:
    """Items of ``tenant`` that can be bought; any unknown, foreign or archived id is NOT_FOUND."""
    ids = sorted({int(i) for i in item_ids})
    rows = (
        Item.query.filter(
            Item.id.in_(ids),
            Item.tenant_id == tenant.id,
            Item.is_archived.is_(False),
            Item.is_active.is_(True),
        ).all()
        if ids
        else []
    )
    if len(rows) != len(ids):
        found = {int(r.id) for r in rows}
        raise NotFoundError(
            "One or more items were not found",
            code="ITEM_NOT_FOUND",
            details={"missing": [i for i in ids if i not in found]},
        )
    return {int(r.id): r for r in rows}


def open_payment_session(
    tenant: Tenant,
    priced_lines: list[tuple[Item, int]],
    *,
    extra_fee=None,
    metadata: dict | None = None,
    customer_email: str = "",
) -> tuple[CheckoutSessionResult, int, int]:
    """Create a hosted checkout on the merchant's connected account.

    Amounts go to the gateway in minor units; the platform fee is a fixed
    share of the item subtotal, taken as an application fee. Returns the
    session with the subtotal and fee in minor units.
    """
    settings = get_settings()
    lines = [
        CheckoutLine(
            name=item.name,
            unit_amount_minor=money_major_to_minor(item.price),
            quantity=int(qty),
            description=(item.description or "")[:200],
        )
        for item, qty in priced_lines
    ]
    subtotal_minor = sum(l.unit_amount_minor * l.quantity for l in lines)
    fee_minor = bps_of_minor(subtotal_minor, settings.platform_fee_bps)
    extra_minor = money_major_to_minor(extra_fee) if extra_fee else 0
    if extra_minor > 0:
        lines.append(CheckoutLine(name="Delivery fee", unit_amount_minor=extra_minor, quantity=1))

    base = settings.app_base_url
    try:
        session = _provider().create_checkout_session(
            account_id=tenant.payment_account_id or "",
            lines=lines,
            currency=settings.currency,
            application_fee_minor=fee_minor,
            success_url=f"{base}/tenants/{tenant.slug}/checkout?success=true",
            cancel_url=f"{base}/tenants/{tenant.slug}/checkout?cancel=true",
            metadata=metadata or {},
            customer_email=customer_email,
        )
    except IntegrationCallError as exc:
        current_app.logger.error("checkout_session_failed tenant_id=%s code=%s err=%s", tenant.id, exc.code, exc)
        raise InternalError("Failed to create checkout session", code="CHECKOUT_SESSION_FAILED")
    if not session.url:
        raise InternalError("Failed to create checkout session", code="CHECKOUT_SESSION_FAILED")
    return session, subtotal_minor, fee_minor


def create_checkout(actor: Actor, tenant_slug: str, lines) -> dict:
    """Turn item ids and quantities for one store into a gateway checkout URL."""
    requested = _merge_requested(lines)
    tenant = tenant_by_slug(tenant_slug)
    policy.ensure_can_sell(tenant)
    items = load_sellable_items(tenant, requested.keys())

    user = db.session.get(User, actor.user_id) if actor.user_id is not None else None
    session, subtotal_minor, fee_minor = open_payment_session(
        tenant,
        [(items[i], q) for i, q in requested.items()],
        metadata={"user_id": actor.user_id, "tenant_id": tenant.id},
        customer_email=(user.email if user is not None else ""),
    )
    current_app.logger.info(
        "checkout_session_created tenant_id=%s user_id=%s session_id=%s subtotal_minor=%s fee_minor=%s",
        tenant.id,
        actor.user_id,
        session.session_id,
        subtotal_minor,
        fee_minor,
    )
    return {
        "url": session.url,
        "session_id": session.session_id,
        "subtotal_minor": subtotal_minor,
        "application_fee_minor": fee_minor,
        "currency": get_settings().currency,
    }


def _validated_tenant_fields(data: dict) -> dict:
    name = (data.get("name") or "").strip()
    slug = (data.get("slug") or "").strip().lower()
    business_type = (data.get("business_type") or "").strip().lower()
    if not name:
        raise BadRequestError("name is required", code="INVALID_TENANT")
    if not slug or not SLUG_RE.match(slug):
        raise BadRequestError("slug may only contain lowercase letters, numbers and hyphens", code="INVALID_SLUG")
    if business_type not in BUSINESS_TYPES:
        raise BadRequestError(f"business_type must be one of {'|'.join(BUSINESS_TYPES)}", code="INVALID_BUSINESS_TYPE")
    if not valid_coordinates(data.get("latitude"), data.get("longitude")):
        raise BadRequestError("Valid latitude and longitude are required", code="INVALID_COORDINATES")
    latitude = float(data["latitude"])
    longitude = float(data["longitude"])
    try:
        radius = float(data.get("delivery_radius_km", 5))
        minimum = Decimal(str(data.get("minimum_order", 20)))
        fee = Decimal(str(data.get("delivery_fee", 3)))
    except (TypeError, ValueError, ArithmeticError):
        raise BadRequestError("delivery settings must be numeric", code="INVALID_TENANT")
    if not (math.isfinite(radius) and minimum.is_finite() and fee.is_finite()):
        raise BadRequestError("delivery settings must be finite", code="INVALID_TENANT")
    if radius <= 0:
        raise BadRequestError("delivery_radius_km must be positive", code="INVALID_TENANT")
    if minimum < 0 or fee < 0:
        raise BadRequestError("minimum_order and delivery_fee cannot be negative", code="INVALID_TENANT")
    return {
        "name": name,
        "slug": slug,
        "business_type": business_type,
        "address": (data.get("address") or "").strip(),
        "latitude": latitude,
        "longitude": longitude,
        "delivery_radius_km": radius,
        "minimum_order": minimum,
        "delivery_fee": fee,
        "image_url": (data.get("image_url") or "").strip() or None,
        "business_license": (data.get("business_license") or "").strip() or None,
    }


def create_tenant(user: User, data: dict) -> Tenant:
    """Merchant onboarding: open a connected payment account and an inactive store."""
    if user.tenant_id is not None:
        raise BadRequestError("You already own a store", code="TENANT_EXISTS")
    fields = _validated_tenant_fields(data or {})
    if Tenant.query.filter_by(slug=fields["slug"]).first() is not None:
        raise BadRequestError("That store slug is taken", code="SLUG_TAKEN")

    try:
        account = _provider().create_account(email=user.email, metadata={"slug": fields["slug"]})
    except IntegrationCallError as exc:
        current_app.logger.error("payment_account_create_failed user_id=%s code=%s", user.id, exc.code)
        raise InternalError("Failed to create payment account", code="PAYMENT_ACCOUNT_FAILED")

    tenant = Tenant(**fields)
    tenant.operating_hours = (data or {}).get("operating_hours")
    tenant.payment_account_id = account.account_id
    tenant.payment_details_submitted = bool(account.details_submitted)
    tenant.is_active = bool(account.details_submitted)
    db.session.add(tenant)
    db.session.flush()
    user.tenant_id = tenant.id
    if user.role != Role.SUPERADMIN:
        user.role = Role.MERCHANT
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("tenant_created tenant_id=%s slug=%s account=%s", tenant.id, tenant.slug, account.account_id)
    return tenant


def onboarding_link(actor: Actor, tenant_slug: str) -> dict:
    tenant = tenant_by_slug(tenant_slug)
    policy.ensure_tenant_access(actor, tenant.id)
    if not tenant.payment_account_id:
        raise BadRequestError("Store has no payment account", code="PAYMENT_ACCOUNT_MISSING")
    base = get_settings().app_base_url
    try:
        link = _provider().create_account_link(
            account_id=tenant.payment_account_id,
            refresh_url=f"{base}/merchant/onboarding?refresh=true",
            return_url=f"{base}/merchant/onboarding?complete=true",
        )
    except IntegrationCallError as exc:
        current_app.logger.error("account_link_failed tenant_id=%s code=%s", tenant.id, exc.code)
        raise InternalError("Failed to create onboarding link", code="ACCOUNT_LINK_FAILED")
    if not link.url:
        raise InternalError("Failed to create onboarding link", code="ACCOUNT_LINK_FAILED")
    return {"url": link.url}


def apply_account_status(tenant: Tenant, details_submitted: bool) -> bool:
    """Record onboarding state; activate the store the first time it completes. Returns True on change."""
    submitted = bool(details_submitted)
    changed = bool(tenant.payment_details_submitted) != submitted
    tenant.payment_details_submitted = submitted
    if submitted and changed:
        tenant.is_active = True
    db.session.add(tenant)
    return changed


def sync_verification(actor: Actor, tenant_slug: str) -> dict:
    tenant = tenant_by_slug(tenant_slug)
    policy.ensure_tenant_access(actor, tenant.id)
    if not tenant.payment_account_id:
        raise BadRequestError("Store has no payment account", code="PAYMENT_ACCOUNT_MISSING")
    try:
        account = _provider().retrieve_account(tenant.payment_account_id)
    except IntegrationCallError as exc:
        current_app.logger.error("account_retrieve_failed tenant_id=%s code=%s", tenant.id, exc.code)
        raise InternalError("Failed to read payment account", code="ACCOUNT_RETRIEVE_FAILED")
    changed = apply_account_status(tenant, account.details_submitted)
    db.session.commit()
    current_app.logger.info(
        "tenant_verification_synced tenant_id=%s submitted=%s changed=%s",
        tenant.id,
        tenant.payment_details_submitted,
        changed,
    )
    return {"payment_details_submitted": bool(tenant.payment_details_submitted), "is_active": bool(tenant.is_active)}
