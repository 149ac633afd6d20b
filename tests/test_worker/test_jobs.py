"""Тесты обработчиков job_queue."""
import httpx
import pytest

from crm_worker.exceptions import InternalApiError, UnknownTaskKindError, WebhookError
from crm_worker.worker.jobs import build_job_dispatcher
from tests.conftest import make_task
from tests.test_worker.conftest import RecordingTransport, make_ctx


async def _run(kind: str, payload: dict, transport: RecordingTransport | None = None, **task_fields):
    ctx, transport = make_ctx(transport=transport)
    await build_job_dispatcher().execute(make_task(kind=kind, payload=payload, **task_fields), ctx)
    return transport


class TestWordPressSync:
    async def test_create_or_update_user(self) -> None:
        transport = await _run("wordpress_sync", {"action": "create_or_update_user", "contactId": "c-1"})

        assert transport.requests[0].url.path == "/api/sync/wordpress/update-user"
        assert transport.json_bodies() == [{"contactId": "c-1"}]

    async def test_other_action_skipped(self) -> None:
        transport = await _run("wordpress_sync", {"action": "delete_user", "contactId": "c-1"})
        assert transport.requests == []

    async def test_failure_raises(self) -> None:
        failing = RecordingTransport(lambda r: httpx.Response(500, json={"message": "WP down"}))
        with pytest.raises(InternalApiError, match="WP down"):
            await _run("wordpress_sync", {"action": "create_or_update_user", "contactId": "c-1"}, failing)


class TestEmailSend:
    async def test_posts_to_email_endpoint(self) -> None:
        transport = await _run(
            "email_send", {"to": "a@b.c", "template": "welcome", "data": {"name": "Ann"}},
        )

        assert transport.requests[0].url.path == "/api/email/send"
        assert transport.json_bodies() == [
            {"to": "a@b.c", "template": "welcome", "data": {"name": "Ann"}}
        ]


class TestSmsSend:
    async def test_contact_falls_back_to_task_reference(self) -> None:
        transport = await _run(
            "sms_send", {"to": "+15550001", "message": "hi"}, contact_id="c-7",
        )

        assert transport.requests[0].url.path == "/api/sms/send"
        assert transport.json_bodies() == [{"to": "+15550001", "message": "hi", "contactId": "c-7"}]


class TestWebhookRetry:
    async def test_calls_stored_url(self) -> None:
        transport = await _run(
            "webhook_retry", {"url": "https://hooks.example.com/in", "payload": {"event": "x"}},
        )

        request = transport.requests[0]
        assert str(request.url) == "https://hooks.example.com/in"
        assert request.method == "POST"
        assert "Authorization" not in request.headers

    async def test_non_2xx_fails(self) -> None:
        failing = RecordingTransport(lambda r: httpx.Response(503))
        with pytest.raises(WebhookError):
            await _run("webhook_retry", {"url": "https://x/fail"}, failing)


class TestDataMigration:
    async def test_known_migration_is_noop(self) -> None:
        transport = await _run("data_migration", {"migrationType": "email_preferences_migration"})
        assert transport.requests == []

    async def test_unknown_migration_raises(self) -> None:
        with pytest.raises(UnknownTaskKindError, match="Unknown migration type"):
            await _run("data_migration", {"migrationType": "legacy_import"})


async def test_unknown_job_type() -> None:
    with pytest.raises(UnknownTaskKindError, match="Unknown job type: fax"):
        await _run("fax", {})
