"""Общие фикстуры и хелперы для тестов API."""
from unittest.mock import MagicMock

from tests.conftest import make_settings


def make_app(db=None, settings=None):
    """Создать FastAPI app с моками."""
    from crm_worker.api.app import create_app

    return create_app(db=db or MagicMock(), settings=settings or make_settings())


# Общий заголовок авторизации
AUTH_HEADERS = {"Authorization": "Bearer sk-test-key"}
