from __future__ import annotations

import hashlib
import json
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from dropcart.extensions import db
from dropcart.integrations.common import (
    IntegrationCallError,
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
)
from dropcart.integrations.payments.factory import build_payments_provider
from dropcart.models import Tenant, WebhookEvent
from dropcart.services import checkout_service, order_service
from dropcart.utils.errors import BadRequestError, InternalError
from dropcart.utils.observability import get_request_id
from dropcart.utils.settings import get_settings

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")


def _handle_checkout_completed(data: dict) -> str:
    if (data.get("payment_status") or "paid") != "paid":
        return "ignored"
    order = order_service.mark_paid(str(data.get("id") or ""))
    return "processed" if order is not None else "ignored"


def _handle_account_updated(data: dict) -> str:
    tenant = Tenant.query.filter_by(payment_account_id=str(data.get("id") or "")).first()
    if tenant is None:
        return "ignored"
    checkout_service.apply_account_status(tenant, bool(data.get("details_submitted")))
    db.session.commit()
    return "processed"


HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    "account.updated": _handle_account_updated,
}


@webhooks_bp.post("/payments")
def payments_webhook():
    raw = request.get_data(cache=True) or b""
    signature = request.headers.get("Stripe-Signature")
    try:
        provider = build_payments_provider(get_settings())
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
        current_app.logger.error("payments_webhook_provider_unavailable err=%s", exc)
        raise InternalError("Payments are not configured", code="PAYMENTS_UNAVAILABLE") from exc
    try:
        event = provider.verify_webhook(payload=raw, signature=signature)
    except IntegrationCallError as exc:
        current_app.logger.warning("payments_webhook_rejected code=%s", exc.code)
        raise BadRequestError("Invalid webhook", code=exc.code) from exc
    if not event.event_id:
        raise BadRequestError("Webhook event id missing", code="WEBHOOK_EVENT_ID_MISSING")

    existing = WebhookEvent.query.filter_by(event_id=event.event_id).first()
    if existing is not None and existing.status in ("processed", "ignored"):
        return jsonify({"ok": True, "duplicate": True, "status": existing.status}), 200

    row = existing or WebhookEvent(
        provider=provider.name,
        event_id=event.event_id,
        event_type=event.event_type,
        request_id=get_request_id(),
        payload_hash=hashlib.sha256(raw).hexdigest(),
        payload_json=json.dumps(event.raw or {}, separators=(",", ":"))[:20000],
    )
    db.session.add(row)
    db.session.commit()

    handler = HANDLERS.get(event.event_type)
    try:
        outcome = handler(event.data) if handler is not None else "ignored"
    except Exception as exc:
        db.session.rollback()
        row.status = "failed"
        row.error = str(exc)[:2000]
        db.session.add(row)
        db.session.commit()
        current_app.logger.exception("payments_webhook_failed event_id=%s type=%s", event.event_id, event.event_type)
        raise

    row.status = outcome
    row.processed_at = datetime.utcnow()
    db.session.add(row)
    db.session.commit()
    current_app.logger.info("payments_webhook_handled event_id=%s type=%s outcome=%s", event.event_id, event.event_type, outcome)
    return jsonify({"ok": True, "status": outcome}), 200
