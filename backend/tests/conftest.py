"""Shared fixtures: fake-backed engine and authenticated API clients."""

from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pipeline_analytics.api.deps import get_audit, get_engine, get_run_store
from pipeline_analytics.auth.jwt import create_access_token
from pipeline_analytics.main import app
from pipeline_analytics.services.engine import AnalyticsEngine
from pipeline_analytics.services.lifecycle import LifecycleManager, PipelineLocks
from tests.fakes import FakeAdvisor, InMemoryOptimizationStore, InMemoryRunStore, RecordingAudit

FIXED_NOW = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    """Manually advanced clock for lifecycle timestamps."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def run_store() -> InMemoryRunStore:
    return InMemoryRunStore()


@pytest.fixture
def opt_store() -> InMemoryOptimizationStore:
    return InMemoryOptimizationStore()


@pytest.fixture
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture
def signals() -> list:
    return []


@pytest.fixture
def lifecycle(opt_store, audit, signals, clock) -> LifecycleManager:
    async def on_applied(candidate, cutover):
        signals.append((candidate.optimization_id, cutover))

    return LifecycleManager(
        opt_store, audit=audit, on_applied=on_applied, locks=PipelineLocks(), clock=clock,
    )


@pytest.fixture
def advisor() -> FakeAdvisor:
    return FakeAdvisor()


@pytest.fixture
def report_cache() -> dict:
    return {}


@pytest.fixture
def engine(run_store, lifecycle, advisor, report_cache, clock) -> AnalyticsEngine:
    async def load(pipeline_config_id):
        return report_cache.get(pipeline_config_id)

    async def save(report):
        report_cache[report.pipeline_config_id] = report

    return AnalyticsEngine(
        runs=run_store,
        lifecycle=lifecycle,
        advisor=advisor,
        load_cached_report=load,
        save_report=save,
        clock=clock,
    )


def _make_auth_header(user_id: str, role: str) -> dict:
    """Create an Authorization header with a valid JWT."""
    token = create_access_token(user_id, role)
    return {"Authorization": f"Bearer {token}"}


def _override_app(engine: AnalyticsEngine, run_store: InMemoryRunStore) -> None:
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_run_store] = lambda: run_store
    app.dependency_overrides[get_audit] = lambda: None


async def _client(headers: dict | None = None) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=headers or {}) as client:
        yield client


@pytest_asyncio.fixture
async def engineer_client(engine, run_store) -> AsyncGenerator[AsyncClient, None]:
    _override_app(engine, run_store)
    async for client in _client(_make_auth_header("eng-1", "engineer")):
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def viewer_client(engine, run_store) -> AsyncGenerator[AsyncClient, None]:
    _override_app(engine, run_store)
    async for client in _client(_make_auth_header("viewer-1", "viewer")):
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def anon_client(engine, run_store) -> AsyncGenerator[AsyncClient, None]:
    _override_app(engine, run_store)
    async for client in _client():
        yield client
    app.dependency_overrides.clear()
