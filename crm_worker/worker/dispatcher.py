"""Диспетчер: маршрутизация задачи к обработчику по её типу."""
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx
from supabase import Client

from crm_worker.config import Settings
from crm_worker.exceptions import UnknownTaskKindError
from crm_worker.models.payloads import Payload, parse_payload
from crm_worker.models.task import Task
from crm_worker.worker.api_client import InternalApiClient


@dataclass
class HandlerContext:
    """Зависимости обработчиков — общие на весь процесс, без состояния задач."""

    db: Client
    api: InternalApiClient
    http: httpx.AsyncClient
    settings: Settings


Handler = Callable[[HandlerContext, Task, Any], Awaitable[None]]


class Dispatcher:
    """Фиксированное отображение kind → (схема payload, обработчик)."""

    def __init__(
        self,
        handlers: Mapping[str, Handler],
        payloads: Mapping[str, type[Payload]],
        label: str = "task",
    ) -> None:
        missing = set(handlers) ^ set(payloads)
        if missing:
            raise ValueError(f"Handlers and payload schemas differ: {sorted(missing)}")
        self.handlers = dict(handlers)
        self.payloads = dict(payloads)
        self.label = label

    @property
    def kinds(self) -> list[str]:
        return sorted(self.handlers)

    def parse(self, task: Task) -> Payload:
        """Провалидировать payload задачи; неизвестный тип → UnknownTaskKindError."""
        return parse_payload(task.kind, task.payload, self.payloads, self.label)

    async def execute(self, task: Task, ctx: HandlerContext) -> None:
        """Выполнить обработчик. Успех — нормальный возврат, неудача — исключение."""
        handler = self.handlers.get(task.kind)
        if handler is None:
            raise UnknownTaskKindError(f"Unknown {self.label} type: {task.kind}")
        await handler(ctx, task, self.parse(task))
