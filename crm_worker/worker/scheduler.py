"""APScheduler: периодические проходы по очередям и recovery зависших задач."""
from datetime import UTC, datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger
from supabase import Client

from crm_worker.config import Settings
from crm_worker.database import recover_stuck_tasks
from crm_worker.worker.processor import TaskProcessor


async def run_processor(processor: TaskProcessor) -> None:
    """Один проход очереди; ошибки логируются и не роняют планировщик."""
    try:
        await processor.run_once()
    except Exception as e:
        logger.exception(f"[{processor.queue.name}] Error processing {processor.queue.noun}: {e}")


async def recover_tasks(
    db: Client, processors: dict[str, TaskProcessor], settings: Settings
) -> None:
    """Вернуть зависшие processing задачи в pending/failed во всех очередях."""
    for processor in processors.values():
        try:
            await recover_stuck_tasks(db, processor.queue, settings.stuck_task_minutes)
        except Exception as e:
            logger.error(f"[{processor.queue.name}] Stuck task recovery failed: {e}")


def create_scheduler(
    db: Client,
    processors: dict[str, TaskProcessor],
    settings: Settings,
) -> AsyncIOScheduler:
    """Создать и настроить APScheduler."""
    scheduler = AsyncIOScheduler(
        job_defaults={
            # None = без ограничения (job всегда выполнится при опоздании).
            "misfire_grace_time": None,
            "coalesce": True,
            # Проход очереди не перекрывается со следующим
            "max_instances": 1,
        }
    )

    now = datetime.now(UTC)
    for key, processor in processors.items():
        # next_run_time=now — первый проход сразу при старте
        scheduler.add_job(
            run_processor,
            "interval",
            seconds=processor.queue.poll_interval_seconds,
            kwargs={"processor": processor},
            id=f"process_{key}",
            next_run_time=now,
        )

    # Каждые 10 минут — recovery зависших processing задач
    scheduler.add_job(
        recover_tasks,
        "interval",
        minutes=10,
        kwargs={"db": db, "processors": processors, "settings": settings},
        id="recover_tasks",
    )

    return scheduler
