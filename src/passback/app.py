"""
FastAPI application for grade passback.

The session store, aggregate map and line item cache are created in the
lifespan startup, owned by ``app.state`` and torn down on shutdown (timers
cancelled, in-flight submissions drained, entries cleared).

Run with::

    uvicorn passback.app:app --port 3000
"""

from dotenv import load_dotenv

# Load .env before anything reads PASSBACK_* variables
load_dotenv()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from starlette.middleware.base import BaseHTTPMiddleware

from passback.api.routes import router as api_router
from passback.core import (
    GradingClient,
    LineItemResolver,
    RequestOrchestrator,
    ScoreAggregator,
    SessionStore,
    SubmissionPipeline,
)
from passback.lti.launch import LaunchHooks
from passback.lti.routes import router as lti_router
from passback.lti.storage import RedisLaunchDataStorage
from passback.models import role_table
from passback.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def build_orchestrator(settings: Settings, client: GradingClient) -> RequestOrchestrator:
    """Wire the core components from settings."""
    roles = role_table(
        score_maximum=settings.score_maximum,
        attempts_maximum=settings.attempts_maximum,
        score_label=settings.score_label,
        attempts_label=settings.attempts_label,
    )
    sessions = SessionStore(ttl_seconds=settings.session_ttl_seconds)
    sessions.start()
    return RequestOrchestrator(
        sessions=sessions,
        aggregator=ScoreAggregator(mode=settings.score_mode),
        resolver=LineItemResolver(client, roles=roles),
        pipeline=SubmissionPipeline(client, roles=roles, include_user_id=settings.include_user_id),
        track_attempts=settings.track_attempts,
    )


def init_passback(
    app: FastAPI,
    settings: Settings,
    grading_client: Optional[GradingClient] = None,
    lti_storage: Optional[RedisLaunchDataStorage] = None,
) -> None:
    """
    Attach launch storage, hooks and the orchestrator to ``app.state``.

    Without Redis and without an explicit grading client, LTI routes and
    the update endpoint answer 503.
    """
    app.state.launch_hooks = LaunchHooks()
    app.state.lti_storage = lti_storage
    app.state.orchestrator = None

    if lti_storage is None and settings.redis_url:
        lti_storage = app.state.lti_storage = RedisLaunchDataStorage.from_url(
            settings.redis_url, ttl_seconds=settings.session_ttl_seconds
        )
        logger.info("LTI launch storage initialized (Redis)")

    if grading_client is None and lti_storage is not None:
        from passback.lti.ags import PyLTIGradingClient
        from passback.lti.config import get_tool_config

        grading_client = PyLTIGradingClient(get_tool_config(settings), lti_storage)

    if grading_client is None:
        logger.info("PASSBACK_REDIS_URL not set: LTI launches and grade passback disabled")
        return

    orchestrator = build_orchestrator(settings, grading_client)
    app.state.orchestrator = orchestrator
    app.state.launch_hooks.on_launch(
        lambda context: orchestrator.sessions.put(context.session_key, context)
    )
    logger.info(
        "Grade passback ready: mode=%s score_max=%s attempts=%s ttl=%ss",
        settings.score_mode, settings.score_maximum,
        "on" if settings.track_attempts else "off", settings.session_ttl_seconds,
    )


async def shutdown_passback(app: FastAPI) -> None:
    orchestrator: Optional[RequestOrchestrator] = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        await orchestrator.drain()
        orchestrator.shutdown()
    hooks: Optional[LaunchHooks] = getattr(app.state, "launch_hooks", None)
    if hooks is not None:
        hooks.clear()
    storage: Optional[RedisLaunchDataStorage] = getattr(app.state, "lti_storage", None)
    if storage is not None:
        storage.close()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    - startup: create stores and the orchestrator in the server's event loop
    - shutdown: drain in-flight submissions, cancel session timers
    """
    init_passback(app, get_settings())
    yield
    await shutdown_passback(app)
    logger.info("Grade passback shut down")


def get_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(
        title="LTI Grade Passback",
        description="Reports embedded exercise scores to the LMS gradebook via LTI AGS",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CSP middleware for LTI iframe embedding
    class CSPMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            response: Response = await call_next(request)
            response.headers["Content-Security-Policy"] = (
                f"frame-ancestors {settings.csp_frame_ancestors}"
            )
            # Remove X-Frame-Options so CSP frame-ancestors takes precedence
            if "X-Frame-Options" in response.headers:
                del response.headers["X-Frame-Options"]
            return response

    app.add_middleware(CSPMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)  # /api/*
    app.include_router(lti_router)  # /lti/*

    @app.get("/", response_class=HTMLResponse)
    async def home():
        return (
            "<h2>LTI Grade Passback</h2>"
            "<p>This tool must be launched from your LMS.</p>"
            '<p>Health: <a href="/health">/health</a></p>'
        )

    @app.get("/health")
    async def health_check():
        return {"status": "healthy"}

    return app


# Create the app instance
app = get_app()
