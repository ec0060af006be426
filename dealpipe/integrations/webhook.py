# dealpipe/integrations/webhook.py
from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

import httpx

from .base import EventSink, SinkDeliveryResult

SIGNATURE_HEADER = "X-Dealpipe-Signature"
EVENT_HEADER = "X-Dealpipe-Event"


def sign_body(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class WebhookSink(EventSink):
    """POSTs `{"type": ..., "data": ...}` JSON to one URL."""

    def __init__(self, url: str, secret: str | None = None, timeout_s: int = 20) -> None:
        self.url = url
        self.secret = secret
        self.timeout_s = timeout_s

    def sign(self, body: bytes) -> str | None:
        return sign_body(self.secret, body) if self.secret else None

    def _request_parts(self, event_type: str, payload: dict[str, Any]) -> tuple[bytes, dict[str, str]]:
        body = json.dumps({"type": event_type, "data": payload}, default=str).encode("utf-8")
        headers = {"Content-Type": "application/json", EVENT_HEADER: event_type}
        sig = self.sign(body)
        if sig:
            headers[SIGNATURE_HEADER] = sig
        return body, headers

    async def deliver(self, event_type: str, payload: dict[str, Any]) -> SinkDeliveryResult:
        body, headers = self._request_parts(event_type, payload)
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                resp = await client.post(self.url, content=body, headers=headers)
        except httpx.HTTPError as e:
            return SinkDeliveryResult(ok=False, error=f"{type(e).__name__}: {e}")

        if resp.is_success:
            return SinkDeliveryResult(ok=True)
        return SinkDeliveryResult(ok=False, error=f"HTTP {resp.status_code}: {resp.text[:500]}")
