"""
Grade update endpoints.

POST /api/update               - score event from the embedded exercise
GET  /api/debug/aggregates     - current cumulative snapshots   (DEBUG only)
GET  /api/debug/session        - launch context for a session   (DEBUG only)
POST /api/debug/reset          - reset one learner's aggregate  (DEBUG only)
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from passback.core.orchestrator import RequestOrchestrator
from passback.errors import SessionExpired
from passback.models import ResetRequest, UpdateRequest
from passback.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["grades"])


def get_orchestrator(request: Request) -> RequestOrchestrator:
    """FastAPI dependency: the orchestrator created in the app lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Grade passback not initialized")
    return orchestrator


def require_debug() -> None:
    if not get_settings().debug:
        raise HTTPException(status_code=404, detail="Not found")


def session_key_from_request(request: Request) -> Optional[str]:
    """
    Session key from ``?ltik=`` / ``?session=``, the ``X-LTI-Launch-Id``
    header, or the session cookie set at launch, in that order.
    """
    return (
        request.query_params.get("ltik")
        or request.query_params.get("session")
        or request.headers.get("x-lti-launch-id")
        or request.cookies.get(get_settings().session_cookie)
        or None
    )


@router.post("/update")
async def update_grade(
    body: UpdateRequest,
    request: Request,
    orchestrator: RequestOrchestrator = Depends(get_orchestrator),
):
    """
    Fold a score event into the learner's cumulative grade and post it.

    Body: ``{"score": 3, "attempts": 1, "isExit": false}``
    """
    session_key = session_key_from_request(request)
    outcome = await orchestrator.handle(session_key, body.to_event())
    return JSONResponse(status_code=outcome.status_code, content=outcome.to_body())


@router.get("/debug/aggregates", dependencies=[Depends(require_debug)])
async def debug_aggregates(orchestrator: RequestOrchestrator = Depends(get_orchestrator)):
    snapshots = orchestrator.aggregator.snapshots()
    return {
        "count": len(snapshots),
        "aggregates": [
            {
                "platform_issuer": key.platform_issuer,
                "course_id": key.course_id,
                "activity_id": key.activity_id,
                "learner_id": key.learner_id,
                "score": state.cumulative_score,
                "attempts": state.cumulative_attempts,
            }
            for key, state in snapshots.items()
        ],
    }


@router.get("/debug/session", dependencies=[Depends(require_debug)])
async def debug_session(
    request: Request, orchestrator: RequestOrchestrator = Depends(get_orchestrator)
):
    session_key = session_key_from_request(request)
    if not session_key:
        return JSONResponse(status_code=400, content={"error": "No session key on request"})
    try:
        context = orchestrator.sessions.get(session_key)
    except SessionExpired as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.kind, "detail": str(e)})
    return {"session_key": session_key, "context": context.model_dump(mode="json")}


@router.post("/debug/reset", dependencies=[Depends(require_debug)])
async def debug_reset(
    body: ResetRequest, orchestrator: RequestOrchestrator = Depends(get_orchestrator)
):
    key = body.to_key()
    reset, forgotten = await orchestrator.reset(key)
    logger.info("Admin reset %s: state=%s cached_line_items=%s", key, reset, forgotten)
    return {"ok": True, "reset": reset, "line_items_forgotten": forgotten}
