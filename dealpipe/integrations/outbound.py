# dealpipe/integrations/outbound.py
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from ..config import Settings
from ..models import Channel

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class ProviderNotConfigured(RuntimeError):
    pass


class ProviderSendError(RuntimeError):
    pass


@dataclass(frozen=True)
class OutboundMessage:
    to: str
    message: str
    recipient_id: int | None = None
    subject: str | None = None
    html: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SendResult:
    message_id: str
    provider: str
    status: str = "sent"


class OutboundProvider(Protocol):
    name: str

    def is_configured(self) -> bool:
        ...

    async def send(self, msg: OutboundMessage) -> SendResult:
        ...


class InternalProvider:
    """In-app delivery: the recipient row itself is the inbox."""

    name = Channel.internal.value

    def is_configured(self) -> bool:
        return True

    async def send(self, msg: OutboundMessage) -> SendResult:
        if msg.recipient_id is None:
            raise ProviderSendError("recipient_id is required for internal delivery")
        return SendResult(
            message_id=f"internal_{msg.recipient_id}_{int(time.time() * 1000)}",
            provider=self.name,
        )


class SmsProvider:
    name = Channel.sms.value

    def __init__(
        self,
        account_sid: str | None,
        auth_token: str | None,
        from_number: str | None,
        *,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout_s: int = 20,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    @staticmethod
    def valid_recipient(to: str | None) -> bool:
        return bool(to) and len(re.sub(r"\D", "", to)) >= 10

    async def send(self, msg: OutboundMessage) -> SendResult:
        if not self.is_configured():
            raise ProviderNotConfigured(
                "SMS provider not configured. Missing TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, or TWILIO_PHONE_NUMBER"
            )
        if not self.valid_recipient(msg.to):
            raise ProviderSendError(f"Invalid phone number: {msg.to}")

        url = f"{self.base_url}/Accounts/{self.account_sid}/Messages.json"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                r = await client.post(
                    url,
                    data={"To": msg.to, "From": self.from_number, "Body": msg.message},
                    auth=(self.account_sid or "", self.auth_token or ""),
                )
        except httpx.HTTPError as e:
            raise ProviderSendError(f"SMS send failed: {e}") from e

        if r.status_code >= 400:
            raise ProviderSendError(f"SMS send failed: HTTP {r.status_code}: {r.text[:300]}")
        data = r.json()
        return SendResult(message_id=str(data.get("sid")), provider=self.name, status=data.get("status") or "sent")


class EmailProvider:
    """
    JSON-over-HTTP mail relay. Expects {"id": ...} back.
    """

    name = Channel.email.value

    def __init__(
        self,
        api_url: str | None,
        api_key: str | None,
        from_address: str | None,
        *,
        timeout_s: int = 20,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.from_address = from_address
        self.timeout_s = timeout_s

    def is_configured(self) -> bool:
        return bool(self.api_url and self.api_key and self.from_address)

    @staticmethod
    def valid_recipient(to: str | None) -> bool:
        return bool(to) and bool(_EMAIL_RE.match(to or ""))

    async def send(self, msg: OutboundMessage) -> SendResult:
        if not self.is_configured():
            raise ProviderNotConfigured("Email provider not configured. Missing EMAIL_API_URL, EMAIL_API_KEY, or EMAIL_FROM")
        if not self.valid_recipient(msg.to):
            raise ProviderSendError(f"Invalid email address: {msg.to}")

        body = {
            "from": self.from_address,
            "to": [msg.to],
            "subject": msg.subject or "New Deal Opportunity",
            "text": msg.message,
            "html": msg.html,
            "metadata": msg.metadata,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                r = await client.post(
                    self.api_url or "",
                    json=body,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            raise ProviderSendError(f"Email send failed: {e}") from e

        if r.status_code >= 400:
            raise ProviderSendError(f"Email send failed: HTTP {r.status_code}: {r.text[:300]}")
        data = r.json()
        return SendResult(message_id=str(data.get("id")), provider=self.name, status=data.get("status") or "sent")


@dataclass(frozen=True)
class OutboundProviders:
    """One provider per channel; the channel enum picks."""

    internal: OutboundProvider
    sms: OutboundProvider
    email: OutboundProvider

    def for_channel(self, channel: Channel) -> OutboundProvider:
        if channel == Channel.sms:
            return self.sms
        if channel == Channel.email:
            return self.email
        return self.internal

    def available(self) -> dict[str, bool]:
        return {c.value: self.for_channel(c).is_configured() for c in Channel}

    @classmethod
    def from_settings(cls, s: Settings) -> "OutboundProviders":
        return cls(
            internal=InternalProvider(),
            sms=SmsProvider(
                s.TWILIO_ACCOUNT_SID,
                s.TWILIO_AUTH_TOKEN,
                s.TWILIO_PHONE_NUMBER,
                base_url=s.TWILIO_BASE_URL,
                timeout_s=s.OUTBOUND_HTTP_TIMEOUT_S,
            ),
            email=EmailProvider(
                s.EMAIL_API_URL,
                s.EMAIL_API_KEY,
                s.EMAIL_FROM,
                timeout_s=s.OUTBOUND_HTTP_TIMEOUT_S,
            ),
        )
