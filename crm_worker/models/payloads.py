"""Pydantic-схемы payload для каждого типа задачи.

Payload хранится в jsonb-колонке (jobData / actionData) в camelCase,
поэтому все модели принимают и camelCase, и snake_case ключи.
"""
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from crm_worker.exceptions import InvalidPayloadError, UnknownTaskKindError


class Payload(BaseModel):
    """База: camelCase-алиасы, лишние ключи сохраняются."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class WebhookPayload(Payload):
    url: str
    method: str = "POST"
    payload: Any = None

    @field_validator("method")
    @classmethod
    def upper_method(cls, v: str) -> str:
        return v.strip().upper() or "POST"


# --- job_queue ---


class WordPressSyncPayload(Payload):
    action: str
    contact_id: str | None = None
    deal_id: str | None = None


class EmailSendPayload(Payload):
    to: str | list[str]
    template: str
    data: dict[str, Any] | None = None


class SmsSendPayload(Payload):
    to: str
    message: str
    contact_id: str | None = None


class DataMigrationPayload(Payload):
    migration_type: str
    params: dict[str, Any] = {}


# --- scheduled_actions ---


class SendEmailActionPayload(Payload):
    template: str
    to: str | list[str] | None = None
    data: dict[str, Any] | None = None
    ticket_id: str | None = None
    check_status: str | None = None  # отправлять, только если тикет всё ещё в этом статусе


class SendSmsActionPayload(Payload):
    to: str
    message: str
    contact_id: str | None = None


class UpdatePropertyPayload(Payload):
    entity_type: str
    entity_id: str | None = None
    properties: dict[str, Any]


class ListMembershipPayload(Payload):
    list_id: str
    contact_id: str | None = None


class CreateTaskPayload(Payload):
    title: str
    description: str | None = None
    assigned_to: str | None = None
    due_date: str | None = None


JobKind = Literal["wordpress_sync", "email_send", "sms_send", "webhook_retry", "data_migration"]
ActionKind = Literal[
    "send_email",
    "send_sms",
    "update_property",
    "add_to_list",
    "remove_from_list",
    "create_task",
    "webhook",
]

JOB_PAYLOADS: dict[str, type[Payload]] = {
    "wordpress_sync": WordPressSyncPayload,
    "email_send": EmailSendPayload,
    "sms_send": SmsSendPayload,
    "webhook_retry": WebhookPayload,
    "data_migration": DataMigrationPayload,
}

ACTION_PAYLOADS: dict[str, type[Payload]] = {
    "send_email": SendEmailActionPayload,
    "send_sms": SendSmsActionPayload,
    "update_property": UpdatePropertyPayload,
    "add_to_list": ListMembershipPayload,
    "remove_from_list": ListMembershipPayload,
    "create_task": CreateTaskPayload,
    "webhook": WebhookPayload,
}


def parse_payload(
    kind: str,
    data: Any,
    registry: dict[str, type[Payload]],
    label: str = "task",
) -> Payload:
    """Провалидировать payload по схеме его типа."""
    model = registry.get(kind)
    if model is None:
        raise UnknownTaskKindError(f"Unknown {label} type: {kind}")
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        raise InvalidPayloadError(
            f"Invalid payload for {kind}: {e.error_count()} error(s): "
            f"{'; '.join(err['msg'] for err in e.errors())}"
        ) from e
