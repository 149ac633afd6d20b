"""Операции с таблицами очередей в Supabase."""
import asyncio
import re
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger
from postgrest.types import CountMethod
from pydantic import ValidationError
from supabase import Client

from crm_worker.config import QueueConfig
from crm_worker.models.task import Task, TaskStatus


async def run_in_thread(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Выполнить синхронный вызов Supabase в отдельном потоке."""
    return await asyncio.to_thread(func, *args, **kwargs)


def sanitize_error(error: str) -> str:
    """Убрать потенциальные креденшалы из сообщения об ошибке."""
    error = re.sub(r"://[^@\s/]+@", "://***:***@", error)
    return re.sub(r"(?i)(bearer\s+)[\w.\-]+", r"\1***", error)


def get_backoff_seconds(retry_count: int, base_seconds: int) -> int:
    """
    Экспоненциальный backoff: 2^retry_count * base.
    job_queue (base=60): 2мин, 4мин, 8мин; scheduled_actions (base=300): 10мин, 20мин, 40мин.
    """
    return (2 ** max(0, retry_count)) * base_seconds


def _now_iso(now: datetime | None = None) -> str:
    return (now or datetime.now(UTC)).isoformat()


async def fetch_due_tasks(
    db: Client, queue: QueueConfig, now: datetime | None = None
) -> list[Task]:
    """
    Получить пачку pending задач с scheduledFor <= now в порядке очереди.
    Строки, которые не приводятся к Task, сразу записываются как
    неудачная попытка и в пачку не попадают.
    """
    query = (
        db.table(queue.table)
        .select("*")
        .eq("status", "pending")
        .lte("scheduledFor", _now_iso(now))
    )
    if queue.unfinished_column:
        query = query.is_(queue.unfinished_column, "null")
    for column in queue.order_by:
        query = query.order(column, desc=False)
    result = await run_in_thread(query.limit(queue.batch_size).execute)

    tasks: list[Task] = []
    for row in result.data or []:
        try:
            tasks.append(Task.from_row(row, queue))
        except ValidationError as e:
            await _fail_malformed_row(db, queue, row, e)
    if tasks:
        kinds: dict[str, int] = {}
        for t in tasks:
            kinds[t.kind] = kinds.get(t.kind, 0) + 1
        logger.debug(f"[{queue.name}] fetch_due_tasks: {len(tasks)} {queue.noun} ({kinds})")
    return tasks


def _int_or(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _minimal_task(row: dict[str, Any], queue: QueueConfig) -> Task:
    """Task только с полями, нужными для mark_task_failed."""
    return Task(
        id=str(row["id"]),
        kind=str(row.get(queue.kind_column) or ""),
        retry_count=_int_or(row.get("retryCount"), 0),
        max_retries=_int_or(row.get("maxRetries"), 3),
    )


async def _fail_malformed_row(
    db: Client, queue: QueueConfig, row: dict[str, Any], error: ValidationError
) -> None:
    """Записать битую строку как неудачную попытку."""
    task = _minimal_task(row, queue)
    logger.warning(f"[{queue.name}] Malformed {queue.kind_label} row {task.id}: {error}")
    try:
        await mark_task_failed(
            db, queue, task,
            f"Malformed {queue.kind_label} row: {error.error_count()} validation error(s)",
        )
    except Exception as e:
        logger.exception(f"[{queue.name}] Could not record malformed row {task.id}: {e}")


async def claim_task(db: Client, queue: QueueConfig, task_id: str) -> bool:
    """
    Перевести задачу pending → processing.
    Условный UPDATE ... WHERE status='pending': вернёт False,
    если задачу уже забрал другой процесс.
    """
    values: dict[str, Any] = {"status": "processing"}
    if queue.started_column:
        values[queue.started_column] = _now_iso()
    result = await run_in_thread(
        db.table(queue.table)
        .update(values)
        .eq("id", task_id)
        .eq("status", "pending")
        .execute
    )
    return bool(result.data)


async def mark_task_completed(
    db: Client, queue: QueueConfig, task: Task, processing_time_ms: int
) -> None:
    """Пометить задачу как completed с таймингом."""
    values: dict[str, Any] = {
        "status": "completed",
        queue.finished_column: _now_iso(),
    }
    if queue.records_processing_time:
        values["processingTime"] = processing_time_ms
    await run_in_thread(
        db.table(queue.table).update(values).eq("id", task.id).execute
    )


async def mark_task_failed(
    db: Client,
    queue: QueueConfig,
    task: Task,
    error: str,
    processing_time_ms: int | None = None,
    now: datetime | None = None,
) -> TaskStatus:
    """
    Записать неудачную попытку.
    retryCount < maxRetries → pending с backoff, иначе failed (терминально).
    Возвращает итоговый статус.
    """
    safe_error = sanitize_error(error)
    now = now or datetime.now(UTC)

    if task.retry_count < task.max_retries:
        retry_count = task.retry_count + 1
        backoff = get_backoff_seconds(retry_count, queue.backoff_base_seconds)
        await run_in_thread(
            db.table(queue.table).update({
                "status": "pending",
                "retryCount": retry_count,
                "error": safe_error,
                "scheduledFor": (now + timedelta(seconds=backoff)).isoformat(),
            }).eq("id", task.id).execute
        )
        logger.info(
            f"[{queue.name}] {queue.kind_label.capitalize()} {task.id} scheduled for retry "
            f"{retry_count}/{task.max_retries} in {backoff}s"
        )
        return "pending"

    values: dict[str, Any] = {
        "status": "failed",
        "error": safe_error,
        queue.finished_column: now.isoformat(),
    }
    if queue.records_processing_time and processing_time_ms is not None:
        values["processingTime"] = processing_time_ms
    await run_in_thread(
        db.table(queue.table).update(values).eq("id", task.id).execute
    )
    logger.error(
        f"[{queue.name}] {queue.kind_label.capitalize()} {task.id} failed permanently "
        f"after {task.max_retries} retries: {safe_error}"
    )
    return "failed"


async def recover_stuck_tasks(
    db: Client, queue: QueueConfig, max_processing_minutes: int = 30
) -> int:
    """
    Вернуть зависшие processing задачи (упавший воркер) в оборот.
    Зависание считается неудачной попыткой: те же правила retry/failed.
    Возраст строки берётся из recovery_column очереди.
    """
    if not queue.recovery_column:
        return 0

    threshold = datetime.now(UTC) - timedelta(minutes=max_processing_minutes)
    result = await run_in_thread(
        db.table(queue.table)
        .select("*")
        .eq("status", "processing")
        .lt(queue.recovery_column, threshold.isoformat())
        .execute
    )
    if not result.data:
        return 0

    for row in result.data:
        await mark_task_failed(
            db,
            queue,
            _minimal_task(row, queue),
            f"Stuck in processing for >{max_processing_minutes}min",
        )

    logger.warning(
        f"[{queue.name}] Recovered {len(result.data)} stuck {queue.noun} "
        f"(>{max_processing_minutes}min)"
    )
    return len(result.data)


async def enqueue_task(
    db: Client,
    queue: QueueConfig,
    kind: str,
    payload: dict[str, Any],
    scheduled_for: datetime | None = None,
    priority: int | None = None,
    max_retries: int = 3,
    refs: dict[str, str | None] | None = None,
) -> str:
    """
    Поставить задачу в очередь со статусом pending.
    refs — слабые ссылки: contactId, dealId, ticketId, workflowExecutionId.
    """
    row: dict[str, Any] = {
        queue.kind_column: kind,
        queue.payload_column: payload,
        "status": "pending",
        "scheduledFor": _now_iso(scheduled_for),
        "retryCount": 0,
        "maxRetries": max_retries,
    }
    if priority is not None:
        row["priority"] = priority
    for key, value in (refs or {}).items():
        if value is not None:
            row[key] = value

    result = await run_in_thread(db.table(queue.table).insert(row).execute)
    task_id = str(result.data[0]["id"])
    logger.info(f"[{queue.name}] Enqueued {kind} as {task_id} for {row['scheduledFor']}")
    return task_id


async def count_tasks_by_status(db: Client, queue: QueueConfig, status: TaskStatus) -> int:
    """Число задач очереди в заданном статусе."""
    result = await run_in_thread(
        db.table(queue.table)
        .select("id", count=CountMethod.exact)
        .eq("status", status)
        .execute
    )
    return result.count or 0
