"""Точка входа воркера — инициализация и запуск API + планировщика очередей."""
import asyncio
import signal
import sys

import httpx
import uvicorn
from loguru import logger
from supabase import create_client

from crm_worker.api.app import create_app
from crm_worker.config import load_settings
from crm_worker.log_sink import create_supabase_sink
from crm_worker.worker.processor import build_processors
from crm_worker.worker.scheduler import create_scheduler


async def main() -> None:
    """Инициализация и запуск API + планировщика."""
    settings = load_settings()

    # Логирование
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    if settings.log_level == "DEBUG":
        logger.add("logs/worker.log", rotation="100 MB", retention="7 days")

    logger.info("Starting CRM worker")

    db = create_client(settings.supabase_url, settings.supabase_service_key.get_secret_value())

    # Персистить WARNING+ логи в Supabase
    logger.add(
        create_supabase_sink(db),
        level="WARNING",
        enqueue=True,
        serialize=False,
    )

    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    processors = build_processors(db, settings, http)

    app = create_app(db, settings)
    config = uvicorn.Config(app, host="0.0.0.0", port=settings.worker_port, log_level="warning")
    server = uvicorn.Server(config)

    # Graceful shutdown
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    scheduler = create_scheduler(db, processors, settings)
    scheduler.start()
    logger.info(
        f"Scheduler started (jobs every {settings.job_poll_interval}s, "
        f"actions every {settings.action_poll_interval}s)"
    )

    logger.info(f"API server starting on port {settings.worker_port}")
    server_task = asyncio.create_task(server.serve())
    shutdown_task = asyncio.create_task(shutdown_event.wait())

    try:
        # uvicorn может сам перехватить сигнал и завершиться первым
        await asyncio.wait({server_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        scheduler.shutdown(wait=False)
        server.should_exit = True
        shutdown_task.cancel()
        await asyncio.gather(server_task, shutdown_task, return_exceptions=True)
        await http.aclose()
        logger.info("CRM worker stopped gracefully")


if __name__ == "__main__":
    asyncio.run(main())
