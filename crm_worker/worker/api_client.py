"""HTTP-вызовы из обработчиков: внутренний API хост-приложения и вебхуки."""
from typing import Any

import httpx
from loguru import logger

from crm_worker.exceptions import InternalApiError, WebhookError


def _error_detail(response: httpx.Response) -> str:
    """Достать message из JSON-ответа, иначе reason phrase."""
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


class InternalApiClient:
    """POST в /api/* хост-приложения от имени системного пользователя."""

    def __init__(self, http: httpx.AsyncClient, base_url: str, token: str) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.token = token

    async def post(self, path: str, body: dict[str, Any]) -> Any:
        """Отправить JSON; не-2xx → InternalApiError."""
        response = await self.http.post(
            f"{self.base_url}{path}",
            json=body,
            headers={"Authorization": f"Bearer {self.token}"},
        )
        if not response.is_success:
            raise InternalApiError(path, response.status_code, _error_detail(response))
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None


async def call_webhook(
    http: httpx.AsyncClient, url: str, method: str = "POST", payload: Any = None
) -> int:
    """Вызвать вебхук с JSON-телом. Сетевые ошибки httpx пробрасываются как есть."""
    response = await http.request(method, url, json=payload)
    if not response.is_success:
        raise WebhookError(url, response.status_code, response.reason_phrase)
    logger.debug(f"Webhook {method} {url} → {response.status_code}")
    return response.status_code
