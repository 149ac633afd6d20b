"""Хелперы для тестов обработчиков: контекст с httpx.MockTransport."""
import json
from collections.abc import Callable
from unittest.mock import MagicMock

import httpx

from crm_worker.worker.api_client import InternalApiClient
from crm_worker.worker.dispatcher import HandlerContext
from tests.conftest import make_settings, mock_supabase


class RecordingTransport:
    """Запоминает запросы и отвечает заданной функцией."""

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.respond = respond or (lambda request: httpx.Response(200, json={"ok": True}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.respond(request)

    def json_bodies(self) -> list:
        return [json.loads(r.content) if r.content else None for r in self.requests]


def make_ctx(
    db: MagicMock | None = None,
    transport: RecordingTransport | None = None,
) -> tuple[HandlerContext, RecordingTransport]:
    transport = transport or RecordingTransport()
    http = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    ctx = HandlerContext(
        db=db if db is not None else mock_supabase(),
        api=InternalApiClient(http, "http://app.local/", "sys-token"),
        http=http,
        settings=make_settings(),
    )
    return ctx, transport
