"""
LTI 1.3 endpoints.

GET|POST /lti/login   - OIDC third-party initiated login
POST     /lti/launch  - id_token validation, session hand-off, exercise page
GET      /lti/jwks    - Tool's public key set

All token validation is delegated to PyLTI1p3; this module only moves
the validated claims into the passback core.
"""

from __future__ import annotations

import html
import logging
from urllib.parse import quote

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse

from passback.settings import get_settings

from .adapter import LTIMessageLaunch, LTIOIDCLogin, LTIRequest
from .config import get_tool_config
from .launch import LaunchHooks, context_from_launch
from .storage import RedisLaunchDataStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/lti", tags=["lti"])


def get_launch_storage(request: Request) -> RedisLaunchDataStorage:
    storage = getattr(request.app.state, "lti_storage", None)
    if storage is None:
        raise HTTPException(
            status_code=503,
            detail="LTI disabled: set PASSBACK_REDIS_URL and restart",
        )
    return storage


def get_launch_hooks(request: Request) -> LaunchHooks:
    return request.app.state.launch_hooks


@router.api_route("/login", methods=["GET", "POST"])
async def lti_login(request: Request):
    """
    OIDC-initiated login.

    Called by the platform when a learner opens the activity.  Redirects to
    the platform's auth endpoint with state and nonce stored in Redis.
    """
    storage = get_launch_storage(request)
    lti_request = await LTIRequest.from_starlette(request)

    target_link_uri = lti_request.get_param("target_link_uri")
    if not target_link_uri:
        raise HTTPException(status_code=400, detail='Missing "target_link_uri" param')

    oidc_login = LTIOIDCLogin(lti_request, get_tool_config(), launch_data_storage=storage)
    response = oidc_login.redirect(target_link_uri)
    logger.info("OIDC login redirect -> %s", response.headers.get("location", "N/A"))
    return response


@router.post("/launch")
async def lti_launch(request: Request):
    """
    Resource link launch.

    Validates the id_token, hands the grading context to the launch hooks
    and returns the page that embeds the exercise.  The exercise receives
    the session key as ``?ltik=`` and sends it back with every update.
    """
    storage = get_launch_storage(request)
    lti_request = await LTIRequest.from_starlette(request)

    message_launch = LTIMessageLaunch(lti_request, get_tool_config(), launch_data_storage=storage)
    launch_data = message_launch.get_launch_data()
    launch_id = message_launch.get_launch_id()

    if not message_launch.has_ags():
        logger.warning(
            "Launch %s from %s has no AGS claim; grades cannot be sent",
            launch_id, launch_data.get("iss"),
        )

    context = context_from_launch(launch_id, launch_data)
    get_launch_hooks(request).emit(context)

    settings = get_settings()
    response = HTMLResponse(content=_exercise_page(settings.exercise_url, launch_id))
    secure = lti_request.is_secure()
    response.set_cookie(
        key=settings.session_cookie,
        value=launch_id,
        max_age=settings.session_ttl_seconds,
        path="/",
        httponly=True,
        secure=secure,
        samesite="none" if secure else "lax",
    )
    return response


@router.get("/jwks")
async def lti_jwks():
    """Public JSON Web Key Set the platform uses to verify tool-signed JWTs."""
    # get_jwks() already returns {"keys": [...]}
    return JSONResponse(content=get_tool_config().get_jwks())


def _exercise_page(exercise_url: str, launch_id: str) -> str:
    separator = "&" if "?" in exercise_url else "?"
    src = html.escape(f"{exercise_url}{separator}ltik={quote(launch_id, safe='')}")
    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8"/>
  <meta name="viewport" content="width=device-width,initial-scale=1"/>
  <title>Exercise</title>
</head>
<body style="font-family:sans-serif;margin:16px;">
  <iframe
    src="{src}"
    style="width:960px;height:600px;border:1px solid #ccc;border-radius:8px;"
  ></iframe>
</body>
</html>
"""
