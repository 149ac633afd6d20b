"""Общие хелперы тестов: настройки, мок Supabase, задачи."""
from collections.abc import Iterator
from typing import Any
from unittest.mock import MagicMock

import pytest
from loguru import logger
from pydantic import SecretStr

from crm_worker.config import Settings, job_queue_config, scheduled_actions_config
from crm_worker.models.task import Task


def make_settings(**overrides: Any) -> Settings:
    """Settings без чтения env/.env."""
    values: dict[str, Any] = {
        "supabase_url": "https://test.supabase.co",
        "supabase_service_key": SecretStr("service-key"),
        "worker_api_key": SecretStr("sk-test-key"),
        "system_api_token": SecretStr("sys-token"),
        "base_url": "http://app.local",
    }
    values.update(overrides)
    return Settings.model_construct(**values)


def jobs_queue(**overrides: Any):
    return job_queue_config(make_settings(**overrides))


def actions_queue(**overrides: Any):
    return scheduled_actions_config(make_settings(**overrides))


def mock_supabase(data: list[dict] | None = None) -> MagicMock:
    """Мок Supabase client: любая цепочка builder-методов возвращает тот же мок."""
    db = MagicMock()
    table_mock = MagicMock()
    db.table.return_value = table_mock
    for method in (
        "select", "insert", "update", "upsert", "delete",
        "eq", "neq", "in_", "is_", "lte", "lt", "gt", "order", "limit", "range",
    ):
        getattr(table_mock, method).return_value = table_mock
    table_mock.execute.return_value = MagicMock(data=data if data is not None else [], count=0)
    return db


def make_task(**overrides: Any) -> Task:
    values: dict[str, Any] = {
        "id": "task-1",
        "kind": "webhook",
        "payload": {"url": "https://hooks.example.com/x", "method": "POST"},
        "status": "pending",
        "retry_count": 0,
        "max_retries": 3,
    }
    values.update(overrides)
    return Task(**values)


@pytest.fixture
def log_messages() -> Iterator[list[str]]:
    """Собрать сообщения loguru во время теста."""
    messages: list[str] = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)
