"""
Webhook delivery for asynchronous conversions.

Payloads are JSON, optionally signed with HMAC-SHA256, and retried with
quadratic backoff until a 2xx response arrives or attempts run out.
"""

import asyncio
import base64
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from pdf_forge.models.schemas import StorageResult, WebhookConfig
from pdf_forge.utils.error_handler import WebhookDeliveryError

logger = logging.getLogger(__name__)

USER_AGENT = "PDF-Forge-Webhook/2.0"
EVENT_COMPLETED = "conversion.completed"
EVENT_FAILED = "conversion.failed"


def sign_payload(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of a signature produced by ``sign_payload``."""
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    return hmac.compare_digest(sign_payload(body, secret), signature)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_success_payload(
    request_id: str,
    conversion_type: str,
    pdf_bytes: bytes,
    duration_ms: int,
    include_pdf: bool = False,
    storage: Optional[StorageResult] = None,
) -> Dict[str, Any]:
    payload = {
        "event": EVENT_COMPLETED,
        "request_id": request_id,
        "timestamp": _timestamp(),
        "success": True,
        "conversion_type": conversion_type,
        "file_size": len(pdf_bytes),
        "duration_ms": duration_ms,
    }
    if include_pdf:
        payload["pdf"] = base64.b64encode(pdf_bytes).decode("ascii")
    if storage is not None:
        payload["storage"] = storage.model_dump()
    return payload


def create_error_payload(request_id: str, conversion_type: str, error: str, duration_ms: int) -> Dict[str, Any]:
    return {
        "event": EVENT_FAILED,
        "request_id": request_id,
        "timestamp": _timestamp(),
        "success": False,
        "error": error,
        "conversion_type": conversion_type,
        "duration_ms": duration_ms,
    }


class WebhookService:
    """
    Sends webhook notifications with retries.

    ``transport`` and ``sleep`` are injectable so tests can run without a
    network or real backoff delays.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        retries: int = 3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.timeout = timeout
        self.retries = retries
        self.transport = transport
        self.sleep = sleep

    def _headers(self, config: WebhookConfig, payload: Dict[str, Any], body: bytes) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Webhook-Event": payload.get("event", ""),
            "X-Request-ID": payload.get("request_id", ""),
        }
        headers.update(config.headers)
        if config.secret:
            signature = sign_payload(body, config.secret)
            headers["X-Webhook-Signature"] = signature
            headers["X-Webhook-Signature-256"] = f"sha256={signature}"
        return headers

    async def send(self, config: Optional[WebhookConfig], payload: Dict[str, Any]) -> None:
        """
        Deliver ``payload`` to the configured endpoint.

        Attempts are ``retry_count + 1`` (or the service default when the
        config gives none). Attempt ``n`` waits ``n**2`` seconds first.

        Raises:
            WebhookDeliveryError: If no attempt received a 2xx response
        """
        if config is None or not config.url:
            return

        body = json.dumps(payload).encode("utf-8")
        method = (config.method or "POST").upper()
        headers = self._headers(config, payload, body)
        max_retries = config.retry_count if config.retry_count > 0 else self.retries

        last_error = None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(max_retries + 1):
                if attempt > 0:
                    await self.sleep(attempt * attempt)

                try:
                    response = await client.request(method, config.url, content=body, headers=headers)
                except httpx.HTTPError as e:
                    last_error = f"request failed: {str(e)}"
                    logger.warning(f"Webhook delivery failed - attempt: {attempt + 1}, url: {config.url}, error: {str(e)}")
                    continue

                if 200 <= response.status_code < 300:
                    logger.info(
                        f"Webhook delivered - url: {config.url}, status: {response.status_code}, "
                        f"request_id: {payload.get('request_id')}"
                    )
                    return

                last_error = f"webhook returned status {response.status_code}: {response.text}"
                logger.warning(
                    f"Webhook delivery failed - attempt: {attempt + 1}, url: {config.url}, "
                    f"status: {response.status_code}"
                )

        raise WebhookDeliveryError(
            f"Webhook delivery failed after {max_retries + 1} attempts: {last_error}",
            details={"url": config.url, "attempts": max_retries + 1}
        )
