"""Pydantic-модель фоновой задачи (строка job_queue или scheduled_actions)."""
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel

from crm_worker.config import QueueConfig

TaskStatus = Literal["pending", "processing", "completed", "failed"]
TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


class Task(BaseModel):
    """Задача из таблицы очереди, приведённая к общему виду."""

    id: str
    kind: str
    payload: Any = {}  # проверяется по схеме типа при выполнении
    status: TaskStatus = "pending"
    scheduled_for: datetime | None = None
    retry_count: int = 0
    max_retries: int = 3
    priority: int = 0
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    processing_time: int | None = None  # мс
    # Слабые ссылки на CRM-сущности
    contact_id: str | None = None
    deal_id: str | None = None
    ticket_id: str | None = None
    workflow_execution_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_row(cls, row: dict[str, Any], queue: QueueConfig) -> "Task":
        """Собрать Task из camelCase-строки таблицы очереди."""
        return cls(
            id=str(row["id"]),
            kind=row[queue.kind_column],
            payload=row.get(queue.payload_column) or {},
            status=row.get("status") or "pending",
            scheduled_for=row.get("scheduledFor"),
            retry_count=row.get("retryCount") or 0,
            max_retries=row["maxRetries"] if row.get("maxRetries") is not None else 3,
            priority=row.get("priority") or 0,
            error=row.get("error"),
            started_at=row.get("startedAt"),
            finished_at=row.get(queue.finished_column),
            processing_time=row.get("processingTime"),
            contact_id=row.get("contactId"),
            deal_id=row.get("dealId"),
            ticket_id=row.get("ticketId"),
            workflow_execution_id=row.get("workflowExecutionId"),
        )
