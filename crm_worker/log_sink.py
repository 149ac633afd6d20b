"""Персист WARNING+ логов воркера в таблицу worker_logs.

Сообщения процессоров начинаются с префикса очереди ("[JobQueue] ..."),
он выносится в отдельную колонку queue для фильтрации в дашборде.
"""
import re
from typing import Any

from supabase import Client

LOGS_TABLE = "worker_logs"

_QUEUE_PREFIX = re.compile(r"^\[(\w+)\]\s*")


def build_log_row(record: dict[str, Any]) -> dict[str, Any]:
    """Строка worker_logs из loguru record."""
    text = str(record["message"])
    match = _QUEUE_PREFIX.match(text)
    row: dict[str, Any] = {
        "level": record["level"].name,
        "module": record["name"],
        "function": record["function"],
        "queue": match.group(1) if match else None,
        "message": text[match.end():] if match else text,
        "createdAt": record["time"].isoformat(),
    }
    exception = record.get("exception")
    if exception is not None and exception.type is not None:
        row["exception"] = f"{exception.type.__name__}: {exception.value}"
    return row


def create_supabase_sink(db: Client):
    """Sink для logger.add(..., level="WARNING", enqueue=True)."""

    def sink(message) -> None:
        row = build_log_row(message.record)
        try:
            db.table(LOGS_TABLE).insert(row).execute()
        except Exception:
            # Supabase недоступен: запись остаётся в stderr-хендлере
            return

    return sink
