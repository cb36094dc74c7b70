"""
Tests for webhook payloads, signing and delivery retries.
"""

import base64
import json

import httpx
import pytest

from pdf_forge.models.schemas import StorageResult, WebhookConfig
from pdf_forge.services.webhook import (
    EVENT_COMPLETED,
    EVENT_FAILED,
    USER_AGENT,
    WebhookService,
    create_error_payload,
    create_success_payload,
    sign_payload,
    verify_signature,
)
from pdf_forge.utils.error_handler import WebhookDeliveryError


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def service_with(handler, retries=3):
    requests = []

    def record(request):
        requests.append(request)
        return handler(request)

    sleep = RecordingSleep()
    service = WebhookService(retries=retries, transport=httpx.MockTransport(record), sleep=sleep)
    return service, requests, sleep


class TestPayloads:

    def test_success_payload(self):
        payload = create_success_payload("req-1", "html", b"%PDF-data", 120)
        assert payload["event"] == EVENT_COMPLETED
        assert payload["success"] is True
        assert payload["file_size"] == 9
        assert payload["duration_ms"] == 120
        assert "pdf" not in payload
        assert "storage" not in payload

    def test_success_payload_with_pdf_and_storage(self):
        storage = StorageResult(provider="s3", bucket="b", path="/x.pdf", url="https://b/x.pdf", size=9)
        payload = create_success_payload("req-1", "url", b"%PDF-data", 5, include_pdf=True, storage=storage)
        assert base64.b64decode(payload["pdf"]) == b"%PDF-data"
        assert payload["storage"]["path"] == "/x.pdf"

    def test_error_payload(self):
        payload = create_error_payload("req-2", "markdown", "boom", 7)
        assert payload["event"] == EVENT_FAILED
        assert payload["success"] is False
        assert payload["error"] == "boom"


class TestSignatures:

    def test_round_trip(self):
        body = b'{"a": 1}'
        signature = sign_payload(body, "s3cret")
        assert len(signature) == 64
        assert verify_signature(body, signature, "s3cret")
        assert verify_signature(body, f"sha256={signature}", "s3cret")

    def test_rejects_tampering(self):
        signature = sign_payload(b"original", "s3cret")
        assert not verify_signature(b"tampered", signature, "s3cret")
        assert not verify_signature(b"original", signature, "other")


class TestWebhookService:

    @pytest.mark.asyncio
    async def test_delivers_signed_payload(self):
        service, requests, sleep = service_with(lambda request: httpx.Response(200))
        config = WebhookConfig(url="https://hooks.example.com/pdf", secret="s3cret", headers={"X-Tenant": "t1"})
        payload = create_success_payload("req-1", "html", b"%PDF", 1)

        await service.send(config, payload)

        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["User-Agent"] == USER_AGENT
        assert request.headers["X-Webhook-Event"] == EVENT_COMPLETED
        assert request.headers["X-Request-ID"] == "req-1"
        assert request.headers["X-Tenant"] == "t1"
        assert request.headers["X-Webhook-Signature-256"] == f"sha256={request.headers['X-Webhook-Signature']}"
        assert verify_signature(request.content, request.headers["X-Webhook-Signature"], "s3cret")
        assert json.loads(request.content)["request_id"] == "req-1"
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_unsigned_without_secret(self):
        service, requests, _ = service_with(lambda request: httpx.Response(204))
        await service.send(WebhookConfig(url="https://hooks.example.com", method="put"), {"event": "x"})
        assert requests[0].method == "PUT"
        assert "X-Webhook-Signature" not in requests[0].headers

    @pytest.mark.asyncio
    async def test_retries_with_quadratic_backoff(self):
        responses = iter([httpx.Response(500), httpx.Response(502), httpx.Response(200)])
        service, requests, sleep = service_with(lambda request: next(responses))

        await service.send(WebhookConfig(url="https://hooks.example.com"), {"event": "x"})

        assert len(requests) == 3
        assert sleep.delays == [1, 4]

    @pytest.mark.asyncio
    async def test_gives_up_after_retry_count(self):
        service, requests, sleep = service_with(lambda request: httpx.Response(503, text="down"))

        with pytest.raises(WebhookDeliveryError) as exc_info:
            await service.send(WebhookConfig(url="https://hooks.example.com", retry_count=2), {"event": "x"})

        assert len(requests) == 3
        assert sleep.delays == [1, 4]
        assert exc_info.value.details["attempts"] == 3
        assert "503" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        service, requests, sleep = service_with(handler, retries=1)
        with pytest.raises(WebhookDeliveryError):
            await service.send(WebhookConfig(url="https://hooks.example.com"), {"event": "x"})
        assert len(requests) == 2
        assert sleep.delays == [1]

    @pytest.mark.asyncio
    async def test_no_config_is_noop(self):
        service, requests, _ = service_with(lambda request: httpx.Response(200))
        await service.send(None, {"event": "x"})
        await service.send(WebhookConfig(url=""), {"event": "x"})
        assert requests == []
