"""Тесты модели Task."""
from datetime import datetime

import pytest

from tests.conftest import actions_queue, jobs_queue


class TestTask:
    """Тесты общей модели задачи."""

    def test_minimal_task(self) -> None:
        from crm_worker.models.task import Task

        t = Task(id="task-1", kind="email_send")
        assert t.status == "pending"
        assert t.retry_count == 0
        assert t.max_retries == 3
        assert t.priority == 0
        assert t.payload == {}

    def test_status_validation(self) -> None:
        from pydantic import ValidationError

        from crm_worker.models.task import Task

        with pytest.raises(ValidationError):
            Task(id="task-2", kind="email_send", status="running")

    @pytest.mark.parametrize(
        ("status", "terminal"),
        [("pending", False), ("processing", False), ("completed", True), ("failed", True)],
    )
    def test_is_terminal(self, status: str, terminal: bool) -> None:
        from crm_worker.models.task import Task

        assert Task(id="t", kind="webhook", status=status).is_terminal is terminal


class TestFromRow:
    """Task.from_row — camelCase строки обеих таблиц."""

    def test_job_queue_row(self) -> None:
        from crm_worker.models.task import Task

        row = {
            "id": "job-1",
            "jobType": "email_send",
            "jobData": {"to": "a@b.c", "template": "welcome"},
            "status": "pending",
            "priority": 2,
            "scheduledFor": "2026-10-19T10:00:00+00:00",
            "retryCount": 1,
            "maxRetries": 5,
            "error": "boom",
            "startedAt": None,
            "completedAt": None,
            "processingTime": None,
        }
        t = Task.from_row(row, jobs_queue())
        assert t.kind == "email_send"
        assert t.payload == {"to": "a@b.c", "template": "welcome"}
        assert t.priority == 2
        assert t.retry_count == 1
        assert t.max_retries == 5
        assert t.error == "boom"
        assert isinstance(t.scheduled_for, datetime)

    def test_scheduled_action_row(self) -> None:
        from crm_worker.models.task import Task

        row = {
            "id": "act-1",
            "actionType": "send_email",
            "actionData": {"template": "reminder"},
            "status": "completed",
            "scheduledFor": "2026-10-19T10:00:00+00:00",
            "retryCount": 0,
            "maxRetries": 3,
            "executedAt": "2026-10-19T10:01:00+00:00",
            "contactId": "c-1",
            "dealId": None,
            "ticketId": "t-1",
            "workflowExecutionId": "wf-1",
        }
        t = Task.from_row(row, actions_queue())
        assert t.kind == "send_email"
        assert t.status == "completed"
        assert t.finished_at is not None
        assert t.contact_id == "c-1"
        assert t.ticket_id == "t-1"
        assert t.workflow_execution_id == "wf-1"
        assert t.priority == 0

    def test_null_columns_fall_back_to_defaults(self) -> None:
        """NULL в jsonb/счётчиках не ломает модель."""
        from crm_worker.models.task import Task

        row = {"id": 42, "jobType": "sms_send", "jobData": None, "retryCount": None, "maxRetries": None}
        t = Task.from_row(row, jobs_queue())
        assert t.id == "42"
        assert t.payload == {}
        assert t.retry_count == 0
        assert t.max_retries == 3

    def test_zero_max_retries_is_kept(self) -> None:
        from crm_worker.models.task import Task

        row = {"id": "j", "jobType": "sms_send", "jobData": {}, "maxRetries": 0}
        assert Task.from_row(row, jobs_queue()).max_retries == 0
