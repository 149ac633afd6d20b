"""FastAPI-приложение воркера: healthcheck, просмотр и постановка задач."""
import hmac
from datetime import UTC, datetime

from fastapi import Depends, FastAPI, HTTPException, Path, Query, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger
from postgrest.types import CountMethod
from supabase import Client

from crm_worker.api.schemas import (
    ActionRequest,
    EnqueueResponse,
    HealthResponse,
    JobRequest,
    QueueHealth,
    TaskListResponse,
)
from crm_worker.config import QueueConfig, Settings, job_queue_config, scheduled_actions_config
from crm_worker.database import count_tasks_by_status, enqueue_task, run_in_thread
from crm_worker.exceptions import TaskError
from crm_worker.models.payloads import ACTION_PAYLOADS, JOB_PAYLOADS, Payload, parse_payload
from crm_worker.models.task import Task, TaskStatus

security = HTTPBearer(auto_error=False)


def create_app(db: Client, settings: Settings) -> FastAPI:
    """Создать FastAPI-приложение с зависимостями."""
    app = FastAPI(title="CRM Worker API", version="0.1.0")

    app.state.db = db
    app.state.settings = settings

    queues: dict[str, QueueConfig] = {
        "jobs": job_queue_config(settings),
        "actions": scheduled_actions_config(settings),
    }
    registries: dict[str, dict[str, type[Payload]]] = {
        "jobs": JOB_PAYLOADS,
        "actions": ACTION_PAYLOADS,
    }

    def get_queue(queue: str = Path(description="jobs | actions")) -> QueueConfig:
        if queue not in queues:
            raise HTTPException(status_code=404, detail=f"Unknown queue: {queue}")
        return queues[queue]

    async def verify_api_key(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> None:
        """Проверка API-ключа."""
        expected = settings.worker_api_key.get_secret_value()
        if credentials is None or not hmac.compare_digest(
            credentials.credentials, expected
        ):
            raise HTTPException(status_code=401, detail="Invalid API key")

    def validate_payload(key: str, kind: str, payload: dict) -> None:
        """Неизвестный тип или неверный payload → 422 до вставки в очередь."""
        try:
            parse_payload(kind, payload, registries[key], queues[key].kind_label)
        except TaskError as e:
            raise HTTPException(status_code=422, detail=str(e))

    @app.get("/api/health", response_model=HealthResponse)
    async def health(response: Response) -> HealthResponse:
        """Healthcheck — без авторизации."""
        stats: dict[str, QueueHealth] = {}
        status = "ok"
        for key, queue in queues.items():
            try:
                stats[key] = QueueHealth(
                    pending=await count_tasks_by_status(db, queue, "pending"),
                    processing=await count_tasks_by_status(db, queue, "processing"),
                )
            except Exception as e:
                logger.warning(f"[{queue.name}] Health check failed: {e}")
                response.status_code = 503
                status = "degraded"
                stats[key] = QueueHealth(pending=-1, processing=-1)
        return HealthResponse(status=status, queues=stats)

    @app.get(
        "/api/{queue}/tasks", response_model=TaskListResponse,
        dependencies=[Depends(verify_api_key)],
    )
    async def list_tasks(
        queue: QueueConfig = Depends(get_queue),
        status: TaskStatus | None = None,
        kind: str | None = None,
        limit: int = Query(default=20, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
    ) -> dict:
        """Список задач очереди с фильтрами и пагинацией."""
        query = db.table(queue.table).select("*", count=CountMethod.exact)
        if status:
            query = query.eq("status", status)
        if kind:
            query = query.eq(queue.kind_column, kind)
        query = query.order("scheduledFor", desc=True).range(offset, offset + limit - 1)
        result = await run_in_thread(query.execute)
        return {
            "tasks": [Task.from_row(row, queue) for row in result.data or []],
            "total": result.count or 0,
            "limit": limit,
            "offset": offset,
        }

    @app.get(
        "/api/{queue}/tasks/{task_id}", response_model=Task,
        dependencies=[Depends(verify_api_key)],
    )
    async def get_task(
        queue: QueueConfig = Depends(get_queue),
        task_id: str = Path(description="ID задачи"),
    ) -> Task:
        """Получить задачу по ID."""
        result = await run_in_thread(
            db.table(queue.table).select("*").eq("id", task_id).execute
        )
        if not result.data:
            raise HTTPException(status_code=404, detail="Task not found")
        return Task.from_row(result.data[0], queue)

    @app.post(
        "/api/jobs", status_code=201, response_model=EnqueueResponse,
        dependencies=[Depends(verify_api_key)],
    )
    async def enqueue_job(body: JobRequest) -> dict:
        """Поставить задачу в job_queue."""
        validate_payload("jobs", body.kind, body.payload)
        scheduled_for = body.scheduled_for or datetime.now(UTC)
        task_id = await enqueue_task(
            db, queues["jobs"], body.kind, body.payload,
            scheduled_for=scheduled_for,
            priority=body.priority,
            max_retries=body.max_retries if body.max_retries is not None else settings.default_max_retries,
        )
        return {"task_id": task_id, "kind": body.kind, "scheduled_for": scheduled_for}

    @app.post(
        "/api/actions", status_code=201, response_model=EnqueueResponse,
        dependencies=[Depends(verify_api_key)],
    )
    async def enqueue_action(body: ActionRequest) -> dict:
        """Поставить отложенное действие в scheduled_actions."""
        validate_payload("actions", body.kind, body.payload)
        scheduled_for = body.scheduled_for or datetime.now(UTC)
        task_id = await enqueue_task(
            db, queues["actions"], body.kind, body.payload,
            scheduled_for=scheduled_for,
            max_retries=body.max_retries if body.max_retries is not None else settings.default_max_retries,
            refs={
                "contactId": body.contact_id,
                "dealId": body.deal_id,
                "ticketId": body.ticket_id,
                "workflowExecutionId": body.workflow_execution_id,
            },
        )
        return {"task_id": task_id, "kind": body.kind, "scheduled_for": scheduled_for}

    return app
