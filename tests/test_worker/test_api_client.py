"""Тесты HTTP-вызовов: внутренний API и вебхуки."""
import httpx
import pytest

from crm_worker.exceptions import InternalApiError, WebhookError
from crm_worker.worker.api_client import call_webhook
from tests.test_worker.conftest import RecordingTransport, make_ctx


class TestInternalApiClient:
    async def test_post_sends_json_with_bearer(self) -> None:
        ctx, transport = make_ctx()

        result = await ctx.api.post("/api/email/send", {"to": "a@b.c"})

        assert result == {"ok": True}
        request = transport.requests[0]
        assert request.method == "POST"
        assert str(request.url) == "http://app.local/api/email/send"
        assert request.headers["Authorization"] == "Bearer sys-token"
        assert transport.json_bodies() == [{"to": "a@b.c"}]

    async def test_non_2xx_raises_with_message(self) -> None:
        ctx, _ = make_ctx(transport=RecordingTransport(
            lambda r: httpx.Response(422, json={"message": "Template not found"})
        ))

        with pytest.raises(InternalApiError, match="Template not found") as exc_info:
            await ctx.api.post("/api/email/send", {})
        assert exc_info.value.status_code == 422
        assert exc_info.value.path == "/api/email/send"

    async def test_non_json_error_body(self) -> None:
        ctx, _ = make_ctx(transport=RecordingTransport(
            lambda r: httpx.Response(502, text="<html>Bad gateway</html>")
        ))

        with pytest.raises(InternalApiError, match="HTTP 502"):
            await ctx.api.post("/api/sms/send", {})

    async def test_empty_success_body(self) -> None:
        ctx, _ = make_ctx(transport=RecordingTransport(lambda r: httpx.Response(204)))
        assert await ctx.api.post("/api/sms/send", {}) is None


class TestCallWebhook:
    async def test_success(self) -> None:
        ctx, transport = make_ctx()

        status = await call_webhook(ctx.http, "https://hooks.example.com/a", "PUT", {"x": 1})

        assert status == 200
        assert transport.requests[0].method == "PUT"
        assert transport.json_bodies() == [{"x": 1}]

    async def test_server_error_raises(self) -> None:
        ctx, _ = make_ctx(transport=RecordingTransport(lambda r: httpx.Response(500)))

        with pytest.raises(WebhookError, match="HTTP 500") as exc_info:
            await call_webhook(ctx.http, "https://x/fail")
        assert exc_info.value.status_code == 500

    async def test_network_error_propagates(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        ctx, _ = make_ctx(transport=RecordingTransport(refuse))
        with pytest.raises(httpx.ConnectError):
            await call_webhook(ctx.http, "https://x/down")
