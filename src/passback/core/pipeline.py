"""
Score submission.

Formats an aggregate snapshot as AGS score payloads and posts them: the
score column first (the grade the platform is owed), then the attempts
column as a best-effort second call.  Scores are published with replace
semantics on the platform, so re-posting the same snapshot is harmless.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable, Mapping
from typing import Optional

from passback.core.grading import GradingClient, ScorePayload
from passback.errors import (
    PARTIAL_SUBMISSION_FAILURE,
    GradingServiceError,
    NoGradableLineItem,
    SubmissionFailure,
)
from passback.models import (
    ActivityProgress,
    AggregateState,
    GradingProgress,
    LaunchContext,
    LineItemRef,
    LineItemRole,
    RoleSpec,
    SubmissionResult,
    role_table,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def activity_progress(snapshot: AggregateState, score_maximum: float) -> ActivityProgress:
    if snapshot.cumulative_score >= score_maximum:
        return ActivityProgress.COMPLETED
    return ActivityProgress.IN_PROGRESS


def format_comment(snapshot: AggregateState, score_maximum: float) -> str:
    """Human-readable summary shown next to the grade in the gradebook."""
    score = snapshot.cumulative_score
    attempts = snapshot.cumulative_attempts
    accuracy = f"{score / attempts * 100:.0f}%" if attempts > 0 else "n/a"
    return f"Score {score:g}/{score_maximum:g} | Attempts {attempts} | Accuracy {accuracy}"


class SubmissionPipeline:
    """Posts snapshots to the resolved line items."""

    def __init__(
        self,
        client: GradingClient,
        roles: Optional[dict[LineItemRole, RoleSpec]] = None,
        include_user_id: bool = False,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._roles = roles or role_table()
        self._include_user_id = include_user_id
        self._clock = clock

    def build_payload(
        self,
        context: LaunchContext,
        snapshot: AggregateState,
        role: LineItemRole,
    ) -> ScorePayload:
        score_spec = self._roles[LineItemRole.SCORE]
        spec = self._roles[role]

        if role is LineItemRole.ATTEMPTS:
            score_given = min(float(snapshot.cumulative_attempts), spec.score_maximum)
        else:
            score_given = min(snapshot.cumulative_score, spec.score_maximum)

        return ScorePayload(
            score_given=score_given,
            score_maximum=spec.score_maximum,
            activity_progress=activity_progress(snapshot, score_spec.score_maximum).value,
            grading_progress=GradingProgress.FULLY_GRADED.value,
            timestamp=self._clock().isoformat().replace("+00:00", "Z"),
            comment=format_comment(snapshot, score_spec.score_maximum),
            user_id=context.learner_id if self._include_user_id else None,
        )

    async def submit(
        self,
        context: LaunchContext,
        snapshot: AggregateState,
        line_items: Mapping[LineItemRole, LineItemRef],
    ) -> SubmissionResult:
        """
        Submit *snapshot* to the score column, then the attempts column.

        Returns:
            ok=True when the score post succeeded (an attempts failure is
            reported in ``error``); ok=False with the failure otherwise.

        Raises:
            NoGradableLineItem: no score-role line item; nothing is posted
        """
        score_ref = line_items.get(LineItemRole.SCORE)
        if score_ref is None:
            raise NoGradableLineItem(
                "No score line item resolved; refusing to submit without a gradebook column"
            )

        progress = activity_progress(snapshot, self._roles[LineItemRole.SCORE].score_maximum)
        result = SubmissionResult(
            ok=False,
            cumulative_score=snapshot.cumulative_score,
            cumulative_attempts=snapshot.cumulative_attempts,
            activity_progress=progress,
        )

        payload = self.build_payload(context, snapshot, LineItemRole.SCORE)
        try:
            await self._client.submit_score(context, score_ref.id, payload)
        except GradingServiceError as e:
            logger.error(
                "AGS score submission failed for %s line_item=%s: %s",
                context.aggregate_key, score_ref.id, e,
            )
            result.error = f"{SubmissionFailure.kind}: {e}"
            return result

        result.ok = True
        result.line_item_ids.append(score_ref.id)
        logger.info(
            "Grade sent: %s/%s (attempts=%s) for %s line_item=%s",
            payload.score_given, payload.score_maximum,
            snapshot.cumulative_attempts, context.aggregate_key, score_ref.id,
        )

        attempts_ref = line_items.get(LineItemRole.ATTEMPTS)
        if attempts_ref is not None:
            attempts_payload = self.build_payload(context, snapshot, LineItemRole.ATTEMPTS)
            try:
                await self._client.submit_score(context, attempts_ref.id, attempts_payload)
            except GradingServiceError as e:
                logger.warning(
                    "Attempts submission failed for %s line_item=%s: %s",
                    context.aggregate_key, attempts_ref.id, e,
                )
                result.error = f"{PARTIAL_SUBMISSION_FAILURE}: attempts line item {attempts_ref.id}: {e}"
            else:
                result.line_item_ids.append(attempts_ref.id)

        return result
