"""Исключения обработки фоновых задач.

Любое из них — неудачная попытка: задача уходит в retry с backoff
или в failed, если попытки исчерпаны.
"""


class TaskError(Exception):
    """Общая ошибка выполнения задачи."""


class UnknownTaskKindError(TaskError):
    """Тип задачи не зарегистрирован в диспетчере."""


class InvalidPayloadError(TaskError):
    """Payload задачи не соответствует её типу."""


class InvalidEntityTypeError(TaskError):
    """update_property с неизвестным entityType."""


class HandlerTimeoutError(TaskError):
    """Обработчик не уложился в дедлайн."""


class InternalApiError(TaskError):
    """Не-2xx ответ от внутреннего API хост-приложения."""

    def __init__(self, path: str, status_code: int, detail: str = "") -> None:
        self.path = path
        self.status_code = status_code
        super().__init__(f"{path} failed with HTTP {status_code}: {detail}")


class WebhookError(TaskError):
    """Не-2xx ответ от внешнего вебхука."""

    def __init__(self, url: str, status_code: int, reason: str = "") -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(f"Webhook failed: HTTP {status_code} {reason}".rstrip())
