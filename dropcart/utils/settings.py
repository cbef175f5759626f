from __future__ import annotations

import os
from dataclasses import dataclass

from flask import current_app, has_app_context


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return int(default)
    try:
        return int(raw)
    except ValueError:
        return int(default)


@dataclass
class IntegrationSettings:
    integrations_mode: str = "sandbox"  # disabled | sandbox | live
    payments_provider: str = "mock"  # mock | stripe
    notifications_provider: str = "mock"  # mock | smtp
    platform_fee_bps: int = 1000
    currency: str = "usd"
    app_base_url: str = "http://localhost:3000"
    notify_delay_seconds: int = 2
    queue_enabled: bool = False

    @classmethod
    def from_env(cls) -> "IntegrationSettings":
        broker = (os.getenv("CELERY_BROKER_URL") or os.getenv("REDIS_URL") or "").strip()
        return cls(
            integrations_mode=(os.getenv("INTEGRATIONS_MODE") or "sandbox").strip().lower(),
            payments_provider=(os.getenv("PAYMENTS_PROVIDER") or "mock").strip().lower(),
            notifications_provider=(os.getenv("NOTIFICATIONS_PROVIDER") or "mock").strip().lower(),
            platform_fee_bps=max(0, min(_env_int("PLATFORM_FEE_BPS", 1000), 10000)),
            currency=(os.getenv("CHECKOUT_CURRENCY") or "usd").strip().lower(),
            app_base_url=(os.getenv("APP_BASE_URL") or "http://localhost:3000").strip().rstrip("/"),
            notify_delay_seconds=max(0, _env_int("NOTIFY_DELAY_SECONDS", 2)),
            queue_enabled=bool(broker) and _env_bool("ENABLE_NOTIFICATION_QUEUE", True),
        )


def get_settings() -> IntegrationSettings:
    if has_app_context():
        settings = current_app.config.get("INTEGRATION_SETTINGS")
        if isinstance(settings, IntegrationSettings):
            return settings
    return IntegrationSettings.from_env()
