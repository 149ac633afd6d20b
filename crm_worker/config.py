"""Конфигурация воркера фоновых задач из переменных окружения."""
from dataclasses import dataclass

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class QueueConfig:
    """Описание одной очереди задач: таблица, колонки, лимиты."""

    name: str                  # префикс в логах: "JobQueue" | "ScheduledActions"
    noun: str                  # "jobs" | "actions"
    table: str
    kind_column: str
    payload_column: str
    finished_column: str       # completedAt | executedAt
    order_by: tuple[str, ...]
    batch_size: int
    backoff_base_seconds: int
    poll_interval_seconds: int
    handler_timeout_seconds: float | None = None
    started_column: str | None = None  # в scheduled_actions нет startedAt
    recovery_column: str | None = None  # возраст processing-строки для recovery
    unfinished_column: str | None = None  # poll: строки с непустой колонкой пропускаются
    records_processing_time: bool = False

    @property
    def kind_label(self) -> str:
        """'job' | 'action' — для сообщений об ошибках."""
        return self.noun.rstrip("s")


class Settings(BaseSettings):
    """Настройки воркера — парсятся из env или .env файла."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Supabase
    supabase_url: str
    supabase_service_key: SecretStr

    # Внутренний API хост-приложения
    base_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("BASE_URL", "NEXT_PUBLIC_BASE_URL"),
    )
    system_api_token: SecretStr = SecretStr("")
    http_timeout_seconds: float = 30.0

    # Очередь job_queue
    job_batch_size: int = 10
    job_poll_interval: int = 30
    job_backoff_base_seconds: int = 60

    # Очередь scheduled_actions
    action_batch_size: int = 50
    action_poll_interval: int = 60
    action_backoff_base_seconds: int = 300

    # Воркер
    handler_timeout_seconds: float = 60.0
    stuck_task_minutes: int = 30
    default_max_retries: int = 3
    log_level: str = "INFO"

    # API
    worker_api_key: SecretStr
    worker_port: int = Field(
        default=8002,
        validation_alias=AliasChoices("WORKER_PORT", "PORT"),
    )


def job_queue_config(settings: Settings) -> QueueConfig:
    """Очередь job_queue: приоритет, затем время; backoff от 1 минуты."""
    return QueueConfig(
        name="JobQueue",
        noun="jobs",
        table="job_queue",
        kind_column="jobType",
        payload_column="jobData",
        finished_column="completedAt",
        order_by=("priority", "scheduledFor"),
        batch_size=settings.job_batch_size,
        backoff_base_seconds=settings.job_backoff_base_seconds,
        poll_interval_seconds=settings.job_poll_interval,
        handler_timeout_seconds=settings.handler_timeout_seconds,
        started_column="startedAt",
        recovery_column="startedAt",
        records_processing_time=True,
    )


def scheduled_actions_config(settings: Settings) -> QueueConfig:
    """Очередь scheduled_actions: только по времени; backoff от 5 минут."""
    return QueueConfig(
        name="ScheduledActions",
        noun="actions",
        table="scheduled_actions",
        kind_column="actionType",
        payload_column="actionData",
        finished_column="executedAt",
        order_by=("scheduledFor",),
        batch_size=settings.action_batch_size,
        backoff_base_seconds=settings.action_backoff_base_seconds,
        poll_interval_seconds=settings.action_poll_interval,
        handler_timeout_seconds=settings.handler_timeout_seconds,
        # scheduledFor захваченной строки всегда в прошлом
        recovery_column="scheduledFor",
        unfinished_column="executedAt",
    )


def load_settings() -> Settings:
    """Создать Settings из переменных окружения (.env файла).

    Фабричная функция — обходит ограничение pyright, который не знает,
    что pydantic-settings заполняет обязательные поля из окружения.
    """
    return Settings.model_validate({})
