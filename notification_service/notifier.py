"""
notifier.py – External Notifier + SMS / e-mail transports
---------------------------------------------------------
`Notifier.send(channel, payload)` is the only call the throttle makes.
Transports are thin requests wrappers (Twilio, SendGrid). If credentials
are missing or DRY_RUN=1 we fall back to a transport that only logs every
message.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping

import requests

from shared.config import NotifierSettings
from shared.constants import SMS_MAX_CHARS
from shared.errors import NotifierFailure
from shared.logging import get_logger
from shared.models import NotificationEvent

log = get_logger("notification_service.notifier")


class Channel(str, Enum):
    SMS = "sms"
    EMAIL = "email"


@dataclass(frozen=True)
class SmsPayload:
    text: str

    def __post_init__(self) -> None:
        if len(self.text) > SMS_MAX_CHARS:
            object.__setattr__(self, "text", self.text[:SMS_MAX_CHARS])


@dataclass(frozen=True)
class EmailPayload:
    subject: str
    body: str
    timestamp: str
    metrics: Dict[str, Any] = field(default_factory=dict)

    def html(self) -> str:
        rows = "".join(f"<li>{k}: {v}</li>" for k, v in self.metrics.items())
        extra = f"<ul>{rows}</ul>" if rows else ""
        return (f"<h2>{self.subject}</h2><p>{self.body}</p>{extra}"
                f"<p><strong>Timestamp:</strong> {self.timestamp}</p>")


def payload_for(channel: Channel, event: NotificationEvent) -> SmsPayload | EmailPayload:
    if channel is Channel.SMS:
        return SmsPayload(event.message)
    ts = datetime.fromtimestamp(event.created_at, tz=timezone.utc).isoformat(timespec="seconds")
    return EmailPayload(event.subject, event.message, ts, dict(event.payload.get("metrics", {})))


# ───── transports ─────────────────────────────────────────────────────
class Transport(ABC):
    channel: Channel
    idempotent = False

    @abstractmethod
    def send(self, payload: Any) -> None:
        """Deliver or raise NotifierFailure."""


class LogTransport(Transport):
    """Dry-run: every message goes to the log only."""

    idempotent = True

    def __init__(self, channel: Channel) -> None:
        self.channel = channel
        self.sent: list[Any] = []

    def send(self, payload: Any) -> None:
        self.sent.append(payload)
        text = payload.text if isinstance(payload, SmsPayload) else f"{payload.subject}: {payload.body}"
        log.info("DRY-RUN %s → %s", self.channel.value, text)


class TwilioSmsTransport(Transport):
    channel = Channel.SMS
    URL = "https://api.twilio.com/2010-04-01/Accounts/{}/Messages.json"

    def __init__(self, cfg: NotifierSettings, session: requests.Session | None = None,
                 timeout: float = 10.0) -> None:
        self.cfg = cfg
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, payload: SmsPayload) -> None:
        try:
            resp = self.session.post(
                self.URL.format(self.cfg.twilio_account_sid),
                auth=(self.cfg.twilio_account_sid, self.cfg.twilio_auth_token),
                data={
                    "From": self.cfg.twilio_phone_number,
                    "To": self.cfg.recipient_phone_number,
                    "Body": payload.text,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NotifierFailure(self.channel.value, str(exc)) from exc
        if not resp.ok:
            raise NotifierFailure(self.channel.value, f"HTTP {resp.status_code}: {resp.text[:200]}")


class SendGridEmailTransport(Transport):
    channel = Channel.EMAIL
    URL = "https://api.sendgrid.com/v3/mail/send"

    def __init__(self, cfg: NotifierSettings, session: requests.Session | None = None,
                 timeout: float = 10.0) -> None:
        self.cfg = cfg
        self.session = session or requests.Session()
        self.timeout = timeout

    def send(self, payload: EmailPayload) -> None:
        body = {
            "personalizations": [{"to": [{"email": self.cfg.recipient_email}]}],
            "from": {"email": self.cfg.sender_email},
            "subject": payload.subject,
            "content": [{"type": "text/html", "value": payload.html()}],
        }
        try:
            resp = self.session.post(
                self.URL,
                json=body,
                headers={"Authorization": f"Bearer {self.cfg.sendgrid_api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise NotifierFailure(self.channel.value, str(exc)) from exc
        if not resp.ok:
            raise NotifierFailure(self.channel.value, f"HTTP {resp.status_code}: {resp.text[:200]}")


# ───── collaborator ───────────────────────────────────────────────────
class Notifier:
    def __init__(self, transports: Mapping[Channel, Transport]) -> None:
        self.transports = dict(transports)

    @property
    def channels(self) -> list[Channel]:
        return list(self.transports)

    @property
    def idempotent(self) -> bool:
        return bool(self.transports) and all(t.idempotent for t in self.transports.values())

    def send(self, channel: Channel, payload: SmsPayload | EmailPayload) -> None:
        transport = self.transports.get(channel)
        if transport is None:
            raise NotifierFailure(channel.value, "channel not configured")
        transport.send(payload)


def create_notifier(cfg: NotifierSettings) -> Notifier:
    transports: Dict[Channel, Transport] = {}
    if cfg.sms_enabled:
        transports[Channel.SMS] = (LogTransport(Channel.SMS) if cfg.dry_run or not cfg.twilio_account_sid
                                   else TwilioSmsTransport(cfg))
    if cfg.email_enabled:
        transports[Channel.EMAIL] = (LogTransport(Channel.EMAIL) if cfg.dry_run or not cfg.sendgrid_api_key
                                     else SendGridEmailTransport(cfg))
    if not transports:
        log.warning("no notification channel enabled – alerts go to the log only")
        transports[Channel.EMAIL] = LogTransport(Channel.EMAIL)
    return Notifier(transports)
