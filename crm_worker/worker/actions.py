"""Обработчики очереди scheduled_actions — отложенные шаги CRM-воркфлоу."""
from datetime import UTC, datetime

from loguru import logger

from crm_worker.database import run_in_thread
from crm_worker.exceptions import InvalidEntityTypeError, InvalidPayloadError
from crm_worker.models.payloads import (
    ACTION_PAYLOADS,
    CreateTaskPayload,
    ListMembershipPayload,
    SendEmailActionPayload,
    SendSmsActionPayload,
    UpdatePropertyPayload,
    WebhookPayload,
)
from crm_worker.models.task import Task
from crm_worker.worker.api_client import call_webhook
from crm_worker.worker.dispatcher import Dispatcher, Handler, HandlerContext

# entityType → таблица, которую разрешено обновлять через update_property
ENTITY_TABLES: dict[str, str] = {
    "contact": "contacts",
    "deal": "deals",
    "ticket": "tickets",
}

LIST_MEMBERS_TABLE = "contact_list_members"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


async def _ticket_status(ctx: HandlerContext, ticket_id: str) -> str | None:
    result = await run_in_thread(
        ctx.db.table("tickets").select("status").eq("id", ticket_id).limit(1).execute
    )
    return result.data[0].get("status") if result.data else None


async def handle_send_email(
    ctx: HandlerContext, task: Task, payload: SendEmailActionPayload
) -> None:
    """
    Отправить письмо воркфлоу и записать его в email_tracking.
    Условное письмо (ticketId + checkStatus) отменяется без ошибки,
    если тикет уже ушёл из ожидаемого статуса.
    """
    if payload.ticket_id and payload.check_status:
        current = await _ticket_status(ctx, payload.ticket_id)
        if current != payload.check_status:
            logger.info(
                f"[ScheduledActions] Email cancelled - ticket status changed "
                f"from {payload.check_status} to {current}"
            )
            return

    await ctx.api.post(
        "/api/email/send",
        {"to": payload.to, "template": payload.template, "data": payload.data},
    )

    data = payload.data or {}
    await run_in_thread(
        ctx.db.table("email_tracking").insert({
            "contactId": task.contact_id,
            "workflowExecutionId": task.workflow_execution_id,
            "emailType": data.get("emailType") or "workflow",
            "subscriptionType": data.get("subscriptionType"),
            "emailSubject": data.get("subject") or payload.template,
            "emailTemplate": payload.template,
            "status": "sent",
            "sentAt": _now_iso(),
        }).execute
    )
    logger.info(f"[ScheduledActions] Email sent: {payload.template} to {payload.to}")


async def handle_send_sms(ctx: HandlerContext, task: Task, payload: SendSmsActionPayload) -> None:
    """Отправить SMS, записать в sms_tracking и обновить счётчики контакта."""
    contact_id = payload.contact_id or task.contact_id

    await ctx.api.post(
        "/api/sms/send",
        {"to": payload.to, "message": payload.message, "contactId": contact_id},
    )

    sent_at = _now_iso()
    await run_in_thread(
        ctx.db.table("sms_tracking").insert({
            "contactId": contact_id,
            "workflowExecutionId": task.workflow_execution_id,
            "direction": "outbound",
            "phoneNumber": payload.to,
            "message": payload.message,
            "smsType": "workflow",
            "status": "sent",
            "sentAt": sent_at,
        }).execute
    )

    if contact_id:
        # PostgREST не умеет инкремент в update — читаем текущее значение
        result = await run_in_thread(
            ctx.db.table("contacts").select("totalSentSms").eq("id", contact_id).limit(1).execute
        )
        total = (result.data[0].get("totalSentSms") or 0) if result.data else 0
        await run_in_thread(
            ctx.db.table("contacts").update({
                "lastSentSmsDate": sent_at,
                "totalSentSms": total + 1,
            }).eq("id", contact_id).execute
        )

    logger.info(f"[ScheduledActions] SMS sent to {payload.to}")


async def handle_update_property(
    ctx: HandlerContext, task: Task, payload: UpdatePropertyPayload
) -> None:
    """Частичное обновление контакта, сделки или тикета."""
    table = ENTITY_TABLES.get(payload.entity_type)
    if table is None:
        raise InvalidEntityTypeError(f"Invalid entity type: {payload.entity_type}")

    entity_id = payload.entity_id or task.contact_id or task.deal_id or task.ticket_id
    if not entity_id:
        raise InvalidPayloadError(f"No target id for {payload.entity_type} update")

    await run_in_thread(
        ctx.db.table(table).update({
            **payload.properties,
            "updatedAt": _now_iso(),
        }).eq("id", entity_id).execute
    )
    logger.info(f"[ScheduledActions] Updated {payload.entity_type} properties")


def _list_contact_id(task: Task, payload: ListMembershipPayload) -> str:
    contact_id = payload.contact_id or task.contact_id
    if not contact_id:
        raise InvalidPayloadError(f"No contact for list {payload.list_id}")
    return contact_id


async def handle_add_to_list(
    ctx: HandlerContext, task: Task, payload: ListMembershipPayload
) -> None:
    contact_id = _list_contact_id(task, payload)
    await run_in_thread(
        ctx.db.table(LIST_MEMBERS_TABLE).upsert(
            {"contact_id": contact_id, "list_id": payload.list_id, "added_at": _now_iso()},
            on_conflict="contact_id,list_id",
        ).execute
    )
    logger.info(f"[ScheduledActions] Added contact {contact_id} to list {payload.list_id}")


async def handle_remove_from_list(
    ctx: HandlerContext, task: Task, payload: ListMembershipPayload
) -> None:
    contact_id = _list_contact_id(task, payload)
    await run_in_thread(
        ctx.db.table(LIST_MEMBERS_TABLE)
        .delete()
        .eq("contact_id", contact_id)
        .eq("list_id", payload.list_id)
        .execute
    )
    logger.info(f"[ScheduledActions] Removed contact {contact_id} from list {payload.list_id}")


async def handle_create_task(ctx: HandlerContext, task: Task, payload: CreateTaskPayload) -> None:
    await run_in_thread(
        ctx.db.table("tasks").insert({
            "title": payload.title,
            "description": payload.description,
            "contactId": task.contact_id,
            "dealId": task.deal_id,
            "assignedTo": payload.assigned_to,
            "dueDate": payload.due_date,
            "status": "pending",
        }).execute
    )
    logger.info(f"[ScheduledActions] Task created: {payload.title}")


async def handle_webhook(ctx: HandlerContext, task: Task, payload: WebhookPayload) -> None:
    await call_webhook(ctx.http, payload.url, payload.method, payload.payload)
    logger.info(f"[ScheduledActions] Webhook called: {payload.url}")


async def update_workflow_execution(ctx: HandlerContext, task: Task) -> None:
    """Отметить шаг воркфлоу выполненным после успешного действия."""
    if not task.workflow_execution_id:
        return
    await run_in_thread(
        ctx.db.table("workflow_executions").update({
            "currentStep": f"{task.kind}_completed",
            "updatedAt": _now_iso(),
        }).eq("id", task.workflow_execution_id).execute
    )


ACTION_HANDLERS: dict[str, Handler] = {
    "send_email": handle_send_email,
    "send_sms": handle_send_sms,
    "update_property": handle_update_property,
    "add_to_list": handle_add_to_list,
    "remove_from_list": handle_remove_from_list,
    "create_task": handle_create_task,
    "webhook": handle_webhook,
}


def build_action_dispatcher() -> Dispatcher:
    return Dispatcher(ACTION_HANDLERS, ACTION_PAYLOADS, label="action")
