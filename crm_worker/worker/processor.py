"""Обработчик очереди: выборка due-задач, выполнение, запись результата."""
import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal

import httpx
from loguru import logger
from supabase import Client

from crm_worker.config import QueueConfig, Settings, job_queue_config, scheduled_actions_config
from crm_worker.database import (
    claim_task,
    fetch_due_tasks,
    mark_task_completed,
    mark_task_failed,
)
from crm_worker.exceptions import HandlerTimeoutError
from crm_worker.models.task import Task
from crm_worker.worker.actions import build_action_dispatcher, update_workflow_execution
from crm_worker.worker.api_client import InternalApiClient
from crm_worker.worker.dispatcher import Dispatcher, HandlerContext
from crm_worker.worker.jobs import build_job_dispatcher

Outcome = Literal["completed", "retried", "failed", "skipped", "error"]
CompletionHook = Callable[[HandlerContext, Task], Awaitable[None]]


def describe_error(e: BaseException) -> str:
    """Текст для колонки error; у части исключений httpx str(e) пустой."""
    return str(e) or type(e).__name__


@dataclass
class PollResult:
    """Итог одного прохода по очереди."""

    fetched: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0

    def add(self, outcome: Outcome) -> None:
        field = "errors" if outcome == "error" else outcome
        setattr(self, field, getattr(self, field) + 1)


class TaskProcessor:
    """
    Один экземпляр на очередь. Задачи внутри прохода выполняются строго
    последовательно в порядке выборки; повторный вход в run_once
    в том же процессе отклоняется.
    """

    def __init__(
        self,
        db: Client,
        queue: QueueConfig,
        dispatcher: Dispatcher,
        ctx: HandlerContext,
        on_completed: CompletionHook | None = None,
    ) -> None:
        self.db = db
        self.queue = queue
        self.dispatcher = dispatcher
        self.ctx = ctx
        self.on_completed = on_completed
        self.is_processing = False

    async def run_once(self) -> PollResult:
        """Один проход: выбрать пачку due-задач и обработать по очереди."""
        prefix = f"[{self.queue.name}]"
        if self.is_processing:
            logger.info(f"{prefix} Already processing...")
            return PollResult()

        self.is_processing = True
        try:
            return await self._process_batch()
        finally:
            self.is_processing = False

    async def _process_batch(self) -> PollResult:
        prefix = f"[{self.queue.name}]"
        result = PollResult()

        try:
            tasks = await fetch_due_tasks(self.db, self.queue)
        except Exception as e:
            # Проход прерывается, статусы задач не трогаем
            logger.exception(f"{prefix} Error fetching {self.queue.noun}: {e}")
            return result

        if not tasks:
            logger.info(f"{prefix} No pending {self.queue.noun}")
            return result

        result.fetched = len(tasks)
        logger.info(f"{prefix} Processing {len(tasks)} {self.queue.noun}...")

        for task in tasks:
            result.add(await self.process_task(task))

        logger.info(
            f"{prefix} Batch done: completed={result.completed}, retried={result.retried}, "
            f"failed={result.failed}, skipped={result.skipped}, errors={result.errors}"
        )
        return result

    async def _execute(self, task: Task) -> None:
        """Выполнить обработчик с дедлайном, если он задан."""
        timeout = self.queue.handler_timeout_seconds
        if not timeout:
            await self.dispatcher.execute(task, self.ctx)
            return
        try:
            await asyncio.wait_for(self.dispatcher.execute(task, self.ctx), timeout=timeout)
        except TimeoutError as e:
            raise HandlerTimeoutError(f"{task.kind} timed out after {timeout}s") from e

    async def process_task(self, task: Task) -> Outcome:
        """
        pending → processing → completed | pending (retry) | failed.
        Исключения не выходят за границу задачи.
        """
        prefix = f"[{self.queue.name}]"
        label = self.queue.kind_label.capitalize()
        started = time.monotonic()

        try:
            claimed = await claim_task(self.db, self.queue, task.id)
        except Exception as e:
            logger.exception(f"{prefix} Failed to claim {self.queue.kind_label} {task.id}: {e}")
            return "error"
        if not claimed:
            logger.warning(f"{prefix} {label} {task.id} already claimed by another worker, skipping")
            return "skipped"

        logger.info(f"{prefix} Processing {self.queue.kind_label} {task.id} ({task.kind})")

        try:
            await self._execute(task)
        except Exception as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            error = describe_error(e)
            logger.error(f"{prefix} ✗ {label} {task.id} failed: {error}")
            try:
                status = await mark_task_failed(self.db, self.queue, task, error, elapsed_ms)
            except Exception as record_error:
                logger.exception(
                    f"{prefix} Could not record failure of {self.queue.kind_label} {task.id}: {record_error}"
                )
                return "error"
            return "retried" if status == "pending" else "failed"

        elapsed_ms = int((time.monotonic() - started) * 1000)
        try:
            await mark_task_completed(self.db, self.queue, task, elapsed_ms)
        except Exception as e:
            logger.exception(f"{prefix} Could not mark {self.queue.kind_label} {task.id} completed: {e}")
            return "error"
        logger.info(f"{prefix} ✓ {label} {task.id} completed in {elapsed_ms}ms")

        if self.on_completed is not None:
            try:
                await self.on_completed(self.ctx, task)
            except Exception as e:
                logger.warning(f"{prefix} Post-completion hook failed for {task.id}: {e}")

        return "completed"


def build_processors(
    db: Client, settings: Settings, http: httpx.AsyncClient
) -> dict[str, TaskProcessor]:
    """Собрать процессоры обеих очередей: {"jobs": ..., "actions": ...}."""
    ctx = HandlerContext(
        db=db,
        api=InternalApiClient(http, settings.base_url, settings.system_api_token.get_secret_value()),
        http=http,
        settings=settings,
    )
    return {
        "jobs": TaskProcessor(db, job_queue_config(settings), build_job_dispatcher(), ctx),
        "actions": TaskProcessor(
            db,
            scheduled_actions_config(settings),
            build_action_dispatcher(),
            ctx,
            on_completed=update_workflow_execution,
        ),
    }
