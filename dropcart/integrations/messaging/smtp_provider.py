from __future__ import annotations

import os
import smtplib
from email.message import EmailMessage

from dropcart.integrations.messaging.base import MessagingProvider, MessageResult


class SmtpMessagingProvider(MessagingProvider):
    name = "smtp"

    def __init__(self, *, host: str, port: int, sender: str, user: str = "", password: str = "", reply_to: str = "", starttls: bool = True):
        self.host = host
        self.port = port
        self.sender = sender
        self.user = user
        self.password = password
        self.reply_to = reply_to
        self.starttls = starttls

    def send_email(self, *, to: str, subject: str, body: str, reference: str = "") -> MessageResult:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to
        if self.reply_to:
            msg["Reply-To"] = self.reply_to
        if reference:
            msg["X-Dropcart-Reference"] = reference
        msg.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.ehlo()
                if self.starttls:
                    server.starttls()
                    server.ehlo()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            return MessageResult(ok=False, code="EMAIL_SEND_FAILED", message=str(exc)[:240])
        return MessageResult(ok=True, code="OK", message="sent", raw={"to": to, "reference": reference})


def smtp_health() -> dict:
    missing = [k for k in ("SMTP_HOST", "SMTP_FROM") if not (os.getenv(k) or "").strip()]
    return {"missing": missing}
