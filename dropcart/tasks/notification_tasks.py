from __future__ import annotations

import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from dropcart.services.notification_service import NotificationDeliveryError, deliver_order_notification


def _retry_countdown(retries: int) -> int:
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": int(max(0.0, time.perf_counter() - float(started_at)) * 1000.0),
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra or {})
    current_app.logger.info(json.dumps(payload))


@shared_task(bind=True, name="dropcart.tasks.notification_tasks.send_order_notification", max_retries=5)
def send_order_notification(self, order_id: int, event: str, previous_status: str = "", new_status: str = "", trace_id: str = ""):
    started = time.perf_counter()
    try:
        result = deliver_order_notification(int(order_id), event, previous_status, new_status, raise_on_failure=True)
    except NotificationDeliveryError as exc:
        if int(self.request.retries or 0) < int(self.max_retries or 0):
            countdown = _retry_countdown(int(self.request.retries or 0))
            _task_log(
                "send_order_notification",
                status="retrying",
                started_at=started,
                trace_id=trace_id,
                order_id=int(order_id),
                countdown=countdown,
                detail=str(exc),
            )
            raise self.retry(exc=exc, countdown=countdown)
        _task_log("send_order_notification", status="failed", started_at=started, trace_id=trace_id, order_id=int(order_id), detail=str(exc))
        raise
    _task_log("send_order_notification", status="sent", started_at=started, trace_id=trace_id, order_id=int(order_id), **result)
    return {"ok": True, "order_id": int(order_id), **result}
