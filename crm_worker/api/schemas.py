"""Pydantic-схемы для API воркера."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from crm_worker.models.task import Task


class EnqueueRequest(BaseModel):
    """Общая часть запроса на постановку задачи."""

    kind: str
    payload: dict[str, Any] = {}
    scheduled_for: datetime | None = None  # None → сейчас
    max_retries: int | None = Field(default=None, ge=0, le=10)

    @field_validator("kind")
    @classmethod
    def clean_kind(cls, v: str) -> str:
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("kind must not be empty")
        return cleaned


class JobRequest(EnqueueRequest):
    """Запрос на POST /api/jobs."""

    priority: int | None = None  # меньше — раньше


class ActionRequest(EnqueueRequest):
    """Запрос на POST /api/actions."""

    contact_id: str | None = None
    deal_id: str | None = None
    ticket_id: str | None = None
    workflow_execution_id: str | None = None


class EnqueueResponse(BaseModel):
    """Ответ на постановку задачи."""

    task_id: str
    kind: str
    scheduled_for: datetime


class TaskListResponse(BaseModel):
    """Пагинированный список задач."""

    tasks: list[Task]
    total: int
    limit: int
    offset: int


class QueueHealth(BaseModel):
    pending: int
    processing: int


class HealthResponse(BaseModel):
    """Ответ healthcheck."""

    status: str
    queues: dict[str, QueueHealth]
