from __future__ import annotations

from datetime import datetime

from flask import current_app

from dropcart.extensions import db
from dropcart.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from dropcart.integrations.messaging.factory import build_messaging_provider
from dropcart.models import Notification, Order, Tenant, User
from dropcart.services.access_policy import Role
from dropcart.services.order_status import status_label, status_message
from dropcart.utils.settings import get_settings

ORDER_PLACED = "order_placed"
STATUS_CHANGED = "status_changed"
EVENTS = (ORDER_PLACED, STATUS_CHANGED)


class NotificationDeliveryError(RuntimeError):
    pass


def _money(value) -> str:
    return f"{float(value or 0):.2f}"


def _line_summary(order: Order) -> str:
    return "\n".join(
        f"- {line.quantity} x {line.item_name} @ {_money(line.unit_price)}" for line in order.lines
    )


def render_order_confirmation(order: Order, tenant: Tenant) -> tuple[str, str]:
    subject = f"Order {order.number} confirmed - {tenant.name}"
    body = (
        f"Thanks for your order from {tenant.name}.\n\n"
        f"{_line_summary(order)}\n\n"
        f"Subtotal: {_money(order.subtotal)}\n"
        f"Delivery fee: {_money(order.delivery_fee)}\n"
        f"Total: {_money(order.total)}\n\n"
        f"{status_message(order.status)}."
    )
    if order.estimated_delivery_at:
        body += f"\nEstimated {'delivery' if order.order_type == 'delivery' else 'pickup'}: {order.estimated_delivery_at.isoformat()} UTC"
    return subject, body


def render_new_order(order: Order, tenant: Tenant) -> tuple[str, str]:
    subject = f"New order {order.number}"
    body = (
        f"{tenant.name} received a new {order.order_type} order.\n\n"
        f"{_line_summary(order)}\n\n"
        f"Total: {_money(order.total)}"
    )
    if order.special_instructions:
        body += f"\nInstructions: {order.special_instructions}"
    return subject, body


def render_status_update(order: Order, tenant: Tenant, previous_status: str, new_status: str) -> tuple[str, str]:
    subject = f"Order {order.number}: {status_label(new_status)}"
    body = (
        f"{status_message(new_status)}.\n\n"
        f"Store: {tenant.name}\n"
        f"Previous status: {status_label(previous_status)}\n"
        f"New status: {status_label(new_status)}"
    )
    return subject, body


def _recipients(order: Order, tenant: Tenant, event: str, previous_status: str, new_status: str):
    customer = db.session.get(User, int(order.user_id))
    if event == ORDER_PLACED:
        if customer is not None:
            yield customer, "order_confirmation", render_order_confirmation(order, tenant)
        merchants = User.query.filter_by(tenant_id=tenant.id, role=Role.MERCHANT).order_by(User.id.asc()).all()
        for merchant in merchants:
            yield merchant, "new_order", render_new_order(order, tenant)
    elif event == STATUS_CHANGED and customer is not None:
        yield customer, "status_update", render_status_update(order, tenant, previous_status, new_status)


def deliver_order_notification(order_id: int, event: str, previous_status: str = "", new_status: str = "", *, raise_on_failure: bool = False) -> dict:
    """Render and send the e-mails for one order event, recording each as a Notification.

    Rows already sent for the same order, kind, status and recipient are
    skipped, so a retried task does not send twice.
    """
    if event not in EVENTS:
        raise ValueError(f"unknown notification event {event}")
    order = db.session.get(Order, int(order_id))
    if order is None:
        current_app.logger.warning("notification_order_missing order_id=%s", order_id)
        return {"sent": 0, "failed": 0, "skipped": 0}
    tenant = db.session.get(Tenant, int(order.tenant_id))
    status_key = new_status or order.status

    try:
        provider = build_messaging_provider(get_settings())
        provider_error = ""
    except (IntegrationDisabledError, IntegrationMisconfiguredError) as exc:
        provider = None
        provider_error = str(exc)

    sent = failed = skipped = 0
    for user, kind, (subject, body) in _recipients(order, tenant, event, previous_status, new_status):
        row = (
            Notification.query.filter_by(order_id=order.id, user_id=user.id, kind=kind)
            .filter(Notification.meta.contains(f'"status":"{status_key}"'))
            .first()
        )
        if row is not None and row.status == "sent":
            skipped += 1
            continue
        if row is None:
            row = Notification(user_id=user.id, order_id=order.id, channel="email", kind=kind, title=subject, message=body)
            row.set_meta({"status": status_key, "previous_status": previous_status, "to": user.email})
            db.session.add(row)

        if provider is None:
            row.status = "failed"
            row.error = provider_error
            failed += 1
            continue
        result = provider.send_email(to=user.email, subject=subject, body=body, reference=order.number)
        row.provider = provider.name
        if result.ok:
            row.status = "sent"
            row.sent_at = datetime.utcnow()
            row.error = None
            sent += 1
        else:
            row.status = "failed"
            row.error = f"{result.code}:{result.message}"[:500]
            failed += 1
    db.session.commit()

    current_app.logger.info(
        "order_notification_delivered order_id=%s event=%s sent=%s failed=%s skipped=%s",
        order.id,
        event,
        sent,
        failed,
        skipped,
    )
    if failed and raise_on_failure:
        raise NotificationDeliveryError(f"{failed} notification(s) failed for order {order.id}")
    return {"sent": sent, "failed": failed, "skipped": skipped}


def queue_order_notification(order_id: int, event: str, previous_status: str = "", new_status: str = "", trace_id: str = "") -> None:
    """Dispatch an order notification without affecting the caller.

    With a broker configured the work goes to Celery after a short countdown;
    otherwise it runs inline. Either way failures are logged and dropped.
    """
    settings = get_settings()
    kwargs = {
        "order_id": int(order_id),
        "event": event,
        "previous_status": previous_status or "",
        "new_status": new_status or "",
        "trace_id": trace_id or "",
    }
    if settings.queue_enabled:
        from dropcart.tasks.notification_tasks import send_order_notification

        try:
            send_order_notification.apply_async(kwargs=kwargs, countdown=int(settings.notify_delay_seconds))
            return
        except Exception:
            current_app.logger.exception("order_notification_enqueue_failed order_id=%s event=%s", order_id, event)
            return
    try:
        deliver_order_notification(int(order_id), event, previous_status, new_status)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("order_notification_failed order_id=%s event=%s", order_id, event)
