from __future__ import annotations

from dataclasses import dataclass


@dataclass
class MessageResult:
    ok: bool
    code: str = ""
    message: str = ""
    raw: dict | None = None


class MessagingProvider:
    name = "unknown"

    def send_email(self, *, to: str, subject: str, body: str, reference: str = "") -> MessageResult:
        raise NotImplementedError
