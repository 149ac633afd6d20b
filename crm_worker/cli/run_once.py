"""
Один проход по очередям — для запуска из cron / serverless-триггера.

Использование:
    python -m crm_worker.cli.run_once                  # обе очереди
    python -m crm_worker.cli.run_once --queue jobs     # только job_queue
    python -m crm_worker.cli.run_once --queue actions  # только scheduled_actions
"""
import argparse
import asyncio
import sys

import httpx
from loguru import logger
from supabase import create_client

from crm_worker.config import load_settings
from crm_worker.worker.processor import PollResult, build_processors

QUEUE_CHOICES = ("jobs", "actions", "all")


async def run_once(queue: str = "all") -> dict[str, PollResult]:
    """Выполнить по одному проходу выбранных очередей."""
    settings = load_settings()
    db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())

    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http:
        processors = build_processors(db, settings, http)
        selected = processors if queue == "all" else {queue: processors[queue]}

        results: dict[str, PollResult] = {}
        for key, processor in selected.items():
            results[key] = await processor.run_once()

    for key, result in results.items():
        logger.info(
            f"{key}: fetched={result.fetched}, completed={result.completed}, "
            f"retried={result.retried}, failed={result.failed}"
        )
    return results


def main() -> None:
    parser = argparse.ArgumentParser(description="Один проход по очередям фоновых задач")
    parser.add_argument(
        "--queue", choices=QUEUE_CHOICES, default="all", help="Какую очередь обработать",
    )
    parser.add_argument("--log-level", default="INFO", help="Уровень логирования")
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level=args.log_level)

    asyncio.run(run_once(queue=args.queue))


if __name__ == "__main__":
    main()
