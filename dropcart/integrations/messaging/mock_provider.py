from __future__ import annotations

import os

from dropcart.integrations.messaging.base import MessagingProvider, MessageResult


class MockMessagingProvider(MessagingProvider):
    name = "mock"

    def __init__(self):
        self.outbox: list[dict] = []

    def _force_failure(self, text: str) -> bool:
        return "[fail]" in (text or "").lower() or (os.getenv("MOCK_NOTIFY_FORCE_FAIL") or "").strip() == "1"

    def send_email(self, *, to: str, subject: str, body: str, reference: str = "") -> MessageResult:
        if self._force_failure(subject) or self._force_failure(body):
            return MessageResult(ok=False, code="EMAIL_PROVIDER_DOWN", message="mock forced failure")
        self.outbox.append({"to": to, "subject": subject, "body": body, "reference": reference})
        return MessageResult(ok=True, code="OK", message="mock_sent", raw={"to": to, "reference": reference})
