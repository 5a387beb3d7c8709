"""
Shared test fixtures for the grade passback service.

Fixtures:
  - test_settings:      Settings(debug=True), no Redis
  - clock:              controllable monotonic clock for session TTL tests
  - grading_client:     FakeGradingClient recording every AGS call
  - make_context:       factory for LaunchContext objects
  - aggregator / resolver / pipeline / orchestrator: core wired to the fake
  - fake_redis_client:  fakeredis.FakeRedis instance
  - lti_storage:        RedisLaunchDataStorage backed by fake Redis
  - app / client:       FastAPI app + httpx.AsyncClient (no lifespan)
  - lti_app / lti_client: same, with LTI launch storage enabled
"""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import AsyncGenerator
from unittest.mock import patch

import fakeredis
import pytest
import pytest_asyncio

from passback.core import (
    GradingClient,
    LineItemDescriptor,
    LineItemRequest,
    LineItemResolver,
    RequestOrchestrator,
    ScoreAggregator,
    ScorePayload,
    SessionStore,
    SubmissionAck,
    SubmissionPipeline,
)
from passback.errors import GradingServiceError
from passback.lti.storage import RedisLaunchDataStorage
from passback.models import LaunchContext, role_table
from passback.settings import Settings, clear_settings_cache

FIXED_NOW = datetime.datetime(2026, 1, 15, 9, 30, tzinfo=datetime.timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeGradingClient(GradingClient):
    """In-memory platform: remembers line items and every score posted."""

    def __init__(self) -> None:
        self.line_items: list[LineItemDescriptor] = []
        self.created: list[LineItemRequest] = []
        self.submitted: list[tuple[str, ScorePayload]] = []
        self.query_calls = 0
        self.delay = 0.0
        self.fail_query = False
        self.fail_create = False
        self.fail_submit_for: set[str] = set()
        self.fail_all_submits = False
        self._next_id = 0

    async def _maybe_wait(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)

    async def query_line_items(self, context):
        self.query_calls += 1
        await self._maybe_wait()
        if self.fail_query:
            raise GradingServiceError("line item query refused")
        return list(self.line_items)

    async def create_line_item(self, context, request):
        await self._maybe_wait()
        if self.fail_create:
            raise GradingServiceError("line item create refused")
        self._next_id += 1
        item = LineItemDescriptor(
            id=f"https://lms.example.com/lineitems/{self._next_id}",
            label=request.label,
            tag=request.tag,
            score_maximum=request.score_maximum,
            resource_link_id=request.resource_link_id,
        )
        self.created.append(request)
        self.line_items.append(item)
        return item

    async def submit_score(self, context, line_item_id, payload):
        await self._maybe_wait()
        if self.fail_all_submits or line_item_id in self.fail_submit_for:
            raise GradingServiceError("platform rejected score")
        self.submitted.append((line_item_id, payload))
        return SubmissionAck(line_item_id=line_item_id, status_code=200)

    def scores_for(self, line_item_id: str) -> list[float]:
        return [p.score_given for item_id, p in self.submitted if item_id == line_item_id]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    clear_settings_cache()
    return Settings(
        env="local",
        redis_url="",
        debug=True,
        score_maximum=100,
        attempts_maximum=1000,
        track_attempts=True,
        score_mode="cumulative",
        include_user_id=False,
        exercise_url="/game/index.html",
    )


# ---------------------------------------------------------------------------
# Core
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def grading_client() -> FakeGradingClient:
    return FakeGradingClient()


@pytest.fixture
def make_context():
    """Factory fixture: make_context(learner_id=..., line_item_hint=...) -> LaunchContext."""

    def _make(**overrides) -> LaunchContext:
        data = {
            "session_key": "launch-001",
            "learner_id": "sub-learner-001",
            "platform_issuer": "https://moodle.example.com",
            "course_id": "course-42",
            "activity_id": "resource-7",
            "line_item_hint": None,
            "created_at": FIXED_NOW,
            **overrides,
        }
        return LaunchContext(**data)

    return _make


@pytest.fixture
def roles():
    return role_table(score_maximum=100, attempts_maximum=1000)


@pytest.fixture
def aggregator() -> ScoreAggregator:
    return ScoreAggregator()


@pytest.fixture
def resolver(grading_client, roles) -> LineItemResolver:
    return LineItemResolver(grading_client, roles=roles)


@pytest.fixture
def pipeline(grading_client, roles) -> SubmissionPipeline:
    return SubmissionPipeline(grading_client, roles=roles, clock=lambda: FIXED_NOW)


@pytest_asyncio.fixture
async def orchestrator(aggregator, resolver, pipeline) -> AsyncGenerator[RequestOrchestrator, None]:
    orch = RequestOrchestrator(
        sessions=SessionStore(ttl_seconds=7200),
        aggregator=aggregator,
        resolver=resolver,
        pipeline=pipeline,
    )
    yield orch
    await orch.drain()
    orch.shutdown()


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis_client() -> fakeredis.FakeRedis:
    server = fakeredis.FakeServer()
    return fakeredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def lti_storage(fake_redis_client) -> RedisLaunchDataStorage:
    return RedisLaunchDataStorage(fake_redis_client)


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------


def _patched_settings(settings: Settings):
    return (
        patch("passback.api.routes.get_settings", return_value=settings),
        patch("passback.lti.routes.get_settings", return_value=settings),
    )


@pytest_asyncio.fixture
async def app(test_settings, grading_client) -> AsyncGenerator:
    from passback.app import get_app, init_passback, shutdown_passback

    api_patch, lti_patch = _patched_settings(test_settings)
    with api_patch, lti_patch:
        test_app = get_app()
        init_passback(test_app, test_settings, grading_client=grading_client)
        yield test_app
        await shutdown_passback(test_app)
    clear_settings_cache()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator:
    from httpx import ASGITransport, AsyncClient

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest_asyncio.fixture
async def lti_app(test_settings, grading_client, lti_storage) -> AsyncGenerator:
    from passback.app import get_app, init_passback, shutdown_passback

    api_patch, lti_patch = _patched_settings(test_settings)
    with api_patch, lti_patch:
        test_app = get_app()
        init_passback(
            test_app, test_settings, grading_client=grading_client, lti_storage=lti_storage
        )
        yield test_app
        await shutdown_passback(test_app)
    clear_settings_cache()


@pytest_asyncio.fixture
async def lti_client(lti_app) -> AsyncGenerator:
    from httpx import ASGITransport, AsyncClient

    transport = ASGITransport(app=lti_app)
    async with AsyncClient(transport=transport, base_url="https://test") as c:
        yield c


@pytest.fixture
def seed_session(app):
    """Factory fixture: seed_session(context) stores a launch in the app's session store."""

    def _seed(context: LaunchContext) -> str:
        app.state.orchestrator.sessions.put(context.session_key, context)
        return context.session_key

    return _seed
