"""
AGS grading client backed by PyLTI1p3.

Restores the validated message launch from the Redis launch cache by
session key and drives PyLTI1p3's AssignmentsGradesService.  PyLTI1p3 is
synchronous, so every call runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging

import requests
from pylti1p3.exception import LtiException
from pylti1p3.grade import Grade
from pylti1p3.lineitem import LineItem

from passback.core.grading import (
    GradingClient,
    LineItemDescriptor,
    LineItemRequest,
    ScorePayload,
    SubmissionAck,
)
from passback.errors import GradingServiceError
from passback.lti.adapter import LTIMessageLaunch, LTIRequest
from passback.lti.storage import RedisLaunchDataStorage
from passback.models import LaunchContext

logger = logging.getLogger(__name__)

_REMOTE_ERRORS = (LtiException, requests.RequestException)


class PyLTIGradingClient(GradingClient):
    """GradingClient for launches validated by the /lti routes."""

    def __init__(self, tool_config, storage: RedisLaunchDataStorage):
        self._tool_config = tool_config
        self._storage = storage

    async def query_line_items(self, context: LaunchContext) -> list[LineItemDescriptor]:
        return await asyncio.to_thread(self._query_line_items, context)

    async def create_line_item(
        self, context: LaunchContext, request: LineItemRequest
    ) -> LineItemDescriptor:
        return await asyncio.to_thread(self._create_line_item, context, request)

    async def submit_score(
        self, context: LaunchContext, line_item_id: str, payload: ScorePayload
    ) -> SubmissionAck:
        return await asyncio.to_thread(self._submit_score, context, line_item_id, payload)

    # ── sync PyLTI1p3 calls (worker thread) ──────────────────────────

    def _ags(self, context: LaunchContext):
        try:
            message_launch = LTIMessageLaunch.from_cache(
                context.session_key,
                LTIRequest.detached(),
                self._tool_config,
                launch_data_storage=self._storage,
            )
        except _REMOTE_ERRORS as e:
            raise GradingServiceError(
                f"Cannot restore LTI launch {context.session_key}: {e}"
            ) from e

        if not message_launch.has_ags():
            raise GradingServiceError(
                f"AGS not available for launch {context.session_key} (platform sent no AGS claim)"
            )
        return message_launch.get_ags()

    def _query_line_items(self, context: LaunchContext) -> list[LineItemDescriptor]:
        ags = self._ags(context)
        try:
            items = ags.get_lineitems()
        except _REMOTE_ERRORS as e:
            raise GradingServiceError(f"Line item query failed: {e}") from e
        return [LineItemDescriptor.model_validate(item) for item in items if item.get("id")]

    def _create_line_item(
        self, context: LaunchContext, request: LineItemRequest
    ) -> LineItemDescriptor:
        ags = self._ags(context)

        line_item = LineItem()
        line_item.set_label(request.label)
        line_item.set_tag(request.tag)
        line_item.set_score_maximum(request.score_maximum)
        if request.resource_link_id:
            line_item.set_resource_link_id(request.resource_link_id)

        try:
            if request.resource_link_id:
                # find_or_create_lineitem searches the whole course by tag and
                # would return another activity's column.
                created = _post_line_item(ags, line_item)
            else:
                created = ags.find_or_create_lineitem(line_item, find_by="tag")
        except _REMOTE_ERRORS as e:
            raise GradingServiceError(f"Line item create failed: {e}") from e

        if not created or not created.get_id():
            raise GradingServiceError("Platform returned a line item without an id")

        return LineItemDescriptor(
            id=created.get_id(),
            label=created.get_label(),
            tag=created.get_tag(),
            score_maximum=created.get_score_maximum(),
            resource_link_id=created.get_resource_link_id(),
        )

    def _submit_score(
        self, context: LaunchContext, line_item_id: str, payload: ScorePayload
    ) -> SubmissionAck:
        ags = self._ags(context)

        grade = Grade()
        grade.set_score_given(payload.score_given)
        grade.set_score_maximum(payload.score_maximum)
        grade.set_activity_progress(payload.activity_progress)
        grade.set_grading_progress(payload.grading_progress)
        grade.set_timestamp(payload.timestamp)
        if payload.comment:
            grade.set_comment(payload.comment)
        if payload.user_id:
            grade.set_user_id(payload.user_id)

        try:
            response = ags.put_grade(grade, LineItem({"id": line_item_id}))
        except _REMOTE_ERRORS as e:
            raise GradingServiceError(f"Score post to {line_item_id} failed: {e}") from e

        return SubmissionAck(line_item_id=line_item_id, body=(response or {}).get("body"))


def _post_line_item(ags, line_item: LineItem) -> LineItem:
    """POST a new line item to the launch's container without a find step."""
    if not ags.can_create_lineitem():
        raise GradingServiceError("Cannot create line item: AGS lineitem scope not granted")
    response = ags._service_connector.make_service_request(
        ags._service_data["scope"],
        ags._service_data["lineitems"],
        is_post=True,
        data=line_item.get_value(),
        content_type="application/vnd.ims.lis.v2.lineitem+json",
        accept="application/vnd.ims.lis.v2.lineitem+json",
    )
    return LineItem(response["body"])
