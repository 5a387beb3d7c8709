"""
Launch hand-off into the passback core.

The LTI layer validates the id_token, turns its claims into a
LaunchContext and notifies every registered handler.  The app registers
the session store so update requests can find the grading context later.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

from passback.models import DEFAULT_SCOPE_ID, LaunchContext

logger = logging.getLogger(__name__)

CLAIM_CONTEXT = "https://purl.imsglobal.org/spec/lti/claim/context"
CLAIM_RESOURCE_LINK = "https://purl.imsglobal.org/spec/lti/claim/resource_link"
CLAIM_AGS_ENDPOINT = "https://purl.imsglobal.org/spec/lti-ags/claim/endpoint"

LaunchHandler = Callable[[LaunchContext], None]


def context_from_launch(
    launch_id: str,
    launch_data: dict[str, Any],
    created_at: Optional[datetime] = None,
) -> LaunchContext:
    """Build a LaunchContext from validated id_token claims."""
    context_claim = launch_data.get(CLAIM_CONTEXT) or {}
    resource_link = launch_data.get(CLAIM_RESOURCE_LINK) or {}
    ags = launch_data.get(CLAIM_AGS_ENDPOINT) or {}

    scopes = ags.get("scope") or []
    if isinstance(scopes, str):
        scopes = scopes.split()

    return LaunchContext(
        session_key=launch_id,
        learner_id=launch_data.get("sub", ""),
        platform_issuer=launch_data.get("iss", ""),
        course_id=context_claim.get("id") or DEFAULT_SCOPE_ID,
        activity_id=resource_link.get("id") or DEFAULT_SCOPE_ID,
        line_item_hint=ags.get("lineitem") or None,
        line_items_url=ags.get("lineitems") or None,
        scopes=tuple(scopes),
        created_at=created_at or datetime.now(timezone.utc),
    )


class LaunchHooks:
    """Registry of callbacks run once per successful launch."""

    def __init__(self) -> None:
        self._handlers: list[LaunchHandler] = []

    def on_launch(self, handler: LaunchHandler) -> LaunchHandler:
        self._handlers.append(handler)
        return handler

    def emit(self, context: LaunchContext) -> None:
        logger.info(
            "LTI launch: session=%s sub=%s iss=%s course=%s activity=%s lineitem=%s",
            context.session_key, context.learner_id, context.platform_issuer,
            context.course_id, context.activity_id, context.line_item_hint,
        )
        for handler in self._handlers:
            handler(context)

    def clear(self) -> None:
        self._handlers.clear()
