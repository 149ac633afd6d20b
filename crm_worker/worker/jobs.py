"""Обработчики очереди job_queue — синхронизация, рассылки, вебхуки, миграции."""
from loguru import logger

from crm_worker.exceptions import UnknownTaskKindError
from crm_worker.models.payloads import (
    JOB_PAYLOADS,
    DataMigrationPayload,
    EmailSendPayload,
    SmsSendPayload,
    WebhookPayload,
    WordPressSyncPayload,
)
from crm_worker.models.task import Task
from crm_worker.worker.api_client import call_webhook
from crm_worker.worker.dispatcher import Dispatcher, Handler, HandlerContext

# Миграции, которые пока ничего не переносят — задача завершается успешно
KNOWN_MIGRATIONS = frozenset({"email_preferences_migration", "contact_properties_migration"})


async def handle_wordpress_sync(
    ctx: HandlerContext, task: Task, payload: WordPressSyncPayload
) -> None:
    """Создать или обновить пользователя WordPress для контакта."""
    if payload.action != "create_or_update_user":
        logger.warning(f"[JobQueue] Job {task.id}: unsupported wordpress_sync action '{payload.action}', skipping")
        return
    await ctx.api.post(
        "/api/sync/wordpress/update-user",
        {"contactId": payload.contact_id or task.contact_id},
    )


async def handle_email_send(ctx: HandlerContext, task: Task, payload: EmailSendPayload) -> None:
    await ctx.api.post(
        "/api/email/send",
        {"to": payload.to, "template": payload.template, "data": payload.data},
    )


async def handle_sms_send(ctx: HandlerContext, task: Task, payload: SmsSendPayload) -> None:
    await ctx.api.post(
        "/api/sms/send",
        {
            "to": payload.to,
            "message": payload.message,
            "contactId": payload.contact_id or task.contact_id,
        },
    )


async def handle_webhook_retry(ctx: HandlerContext, task: Task, payload: WebhookPayload) -> None:
    await call_webhook(ctx.http, payload.url, payload.method, payload.payload)


async def handle_data_migration(
    ctx: HandlerContext, task: Task, payload: DataMigrationPayload
) -> None:
    # TODO: перенос email-предпочтений и HubSpot-свойств контактов
    if payload.migration_type not in KNOWN_MIGRATIONS:
        raise UnknownTaskKindError(f"Unknown migration type: {payload.migration_type}")
    logger.info(f"[JobQueue] Job {task.id}: migration {payload.migration_type} has nothing to migrate")


JOB_HANDLERS: dict[str, Handler] = {
    "wordpress_sync": handle_wordpress_sync,
    "email_send": handle_email_send,
    "sms_send": handle_sms_send,
    "webhook_retry": handle_webhook_retry,
    "data_migration": handle_data_migration,
}


def build_job_dispatcher() -> Dispatcher:
    return Dispatcher(JOB_HANDLERS, JOB_PAYLOADS, label="job")
