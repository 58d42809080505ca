from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from api.config.settings import Settings, get_settings
from api.infra.database import Database, get_session
from api.main import create_app
from api.v1.core.registries import EventRouteRegistry, JobContext, JobRegistry

# Import models to ensure they're registered
from api.v1.infra.heartbeat import models as heartbeat_models  # noqa: F401
from api.v1.infra.jobs import models as job_models  # noqa: F401
from api.v1.infra.outbox import models as outbox_models  # noqa: F401
from api.v1.infra.outbox.models import OutboxEvent
from api.v1.infra.outbox.routing import register_default_routes

T0 = datetime(2026, 1, 5, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test SQLite file."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}",
        job_backoff_jitter=0.0,
        worker_poll_interval_ms=10,
        bridge_poll_interval_ms=10,
        heartbeat_interval_s=0.05,
        shutdown_grace_s=2,
    )


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    """Create the schema in a fresh database for each test."""
    db = Database(settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session() as session:
        yield session


@pytest.fixture
def routes() -> EventRouteRegistry:
    registry = EventRouteRegistry()
    register_default_routes(registry)
    return registry


class RecordingHandler:
    """Job handler that records calls and optionally raises."""

    def __init__(self, error: BaseException | None = None):
        self.error = error
        self.calls: list[tuple[dict[str, Any], JobContext]] = []

    async def handle(self, payload: dict[str, Any], context: JobContext):
        self.calls.append((payload, context))
        if self.error is not None:
            raise self.error
        return {"status": "ok"}


@pytest.fixture
def handler_factory():
    return RecordingHandler


@pytest.fixture
def job_registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def add_event(db_session):
    """Insert an outbox event the way the application would."""

    async def _add(event_name: str = "invoice_generated", **fields) -> OutboxEvent:
        event = OutboxEvent(event_name=event_name, created_at=T0, **fields)
        db_session.add(event)
        await db_session.commit()
        return event

    return _add


@pytest.fixture
def app(database, settings):
    """Create a test FastAPI application bound to the test database."""
    app = create_app()

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        async with database.session() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_settings] = lambda: settings

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
