"""Shared test fixtures."""

from __future__ import annotations

import base64
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Tuple

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from config.settings import Settings
from core.services import build_services
from database.models import Base
from database.session import build_session_factory
from utils.schemas import ActivityItem

MASTER_KEY = base64.urlsafe_b64encode(b"k" * 32).decode()


class FakeProviderAPI:
    """Routes httpx requests to canned handlers keyed by (method, url without query)."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, handler: Any = None, *, status: int = 200, json_body: Any = None) -> None:
        if handler is None:
            def handler(request: httpx.Request, _s=status, _b=json_body) -> httpx.Response:
                return httpx.Response(_s, json=_b if _b is not None else {})
        self.routes[(method.upper(), url)] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, f"{request.url.scheme}://{request.url.host}{request.url.path}")
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(404, json={"error": "no route", "url": key[1]})
        return handler(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def form(self, request: httpx.Request) -> Dict[str, str]:
        return dict(httpx.QueryParams(request.content.decode()))

    def json(self, request: httpx.Request) -> Any:
        return json.loads(request.content.decode())


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        encryption_master_key=MASTER_KEY,
        jwt_secret="test-jwt-secret",
        cron_secret="test-cron-secret",
        oauth_redirect_base="http://api.test",
        frontend_base_url="http://app.test",
        github_client_id="gh-id",
        github_client_secret="gh-secret",
        notion_client_id="notion-id",
        notion_client_secret="notion-secret",
        slack_client_id="slack-id",
        slack_client_secret="slack-secret",
        google_client_id="google-id",
        google_client_secret="google-secret",
        provider_timeout_seconds=2.0,
        rate_limit_sync=3,
    )


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine, tables created fresh for each test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def provider_api() -> FakeProviderAPI:
    return FakeProviderAPI()


@pytest.fixture
def services(session_factory, test_settings, provider_api):
    return build_services(session_factory, test_settings, transport=provider_api.transport)


@pytest.fixture
def user_id() -> str:
    return str(uuid.uuid4())


@pytest.fixture
def make_item() -> Callable[..., ActivityItem]:
    def _make(external_id: str, title: str = "item", type: str = "issue") -> ActivityItem:
        return ActivityItem(
            external_id=external_id,
            type=type,
            title=title,
            occurred_at=datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
        )

    return _make
