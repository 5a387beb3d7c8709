"""
Grade passback models.

Launch context, aggregate state, line item references and the
request/response shapes of the update endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_SCOPE_ID = "default"


class LineItemRole(str, Enum):
    """Which gradebook column a payload is written to."""

    SCORE = "score"
    ATTEMPTS = "attempts"


class ActivityProgress(str, Enum):
    """AGS activityProgress values the tool reports."""

    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"


class GradingProgress(str, Enum):
    """AGS gradingProgress values the tool reports."""

    FULLY_GRADED = "FullyGraded"
    PENDING = "Pending"


@dataclass(frozen=True)
class RoleSpec:
    """Fixed properties of one line item role."""

    role: LineItemRole
    tag: str
    score_maximum: float
    label: str
    accepts_hint: bool

    def matches_tag(self, tag: Optional[str]) -> bool:
        """Whether a platform line item with *tag* belongs to this role."""
        if self.role is LineItemRole.SCORE:
            return not tag or tag == self.tag
        return tag == self.tag


def role_table(
    score_maximum: float = 100.0,
    attempts_maximum: float = 1000.0,
    score_label: str = "Game Score",
    attempts_label: str = "Game Attempts",
) -> dict[LineItemRole, RoleSpec]:
    """Build the role table; only the score role may use the launch hint."""
    return {
        LineItemRole.SCORE: RoleSpec(
            role=LineItemRole.SCORE,
            tag="score",
            score_maximum=score_maximum,
            label=score_label,
            accepts_hint=True,
        ),
        LineItemRole.ATTEMPTS: RoleSpec(
            role=LineItemRole.ATTEMPTS,
            tag="attempts",
            score_maximum=attempts_maximum,
            label=attempts_label,
            accepts_hint=False,
        ),
    }


class AggregateKey(NamedTuple):
    """One learner's progress on one activity on one platform."""

    platform_issuer: str
    course_id: str
    activity_id: str
    learner_id: str

    def __str__(self) -> str:
        return "|".join(self)


class LaunchContext(BaseModel):
    """Grading context captured from a validated LTI launch. Never mutated."""

    model_config = ConfigDict(frozen=True)

    session_key: str = Field(..., min_length=1)
    learner_id: str = Field(..., min_length=1)
    platform_issuer: str = Field(..., min_length=1)
    course_id: str = DEFAULT_SCOPE_ID
    activity_id: str = DEFAULT_SCOPE_ID
    line_item_hint: Optional[str] = None
    line_items_url: Optional[str] = None
    scopes: tuple[str, ...] = ()
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def aggregate_key(self) -> AggregateKey:
        return AggregateKey(
            self.platform_issuer,
            self.course_id or DEFAULT_SCOPE_ID,
            self.activity_id or DEFAULT_SCOPE_ID,
            self.learner_id,
        )


class AggregateState(BaseModel):
    """Read-only snapshot of a key's cumulative score and attempts."""

    model_config = ConfigDict(frozen=True)

    cumulative_score: float = 0.0
    cumulative_attempts: int = 0


class LineItemRef(BaseModel):
    """A resolved gradebook column for one (AggregateKey, role)."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: LineItemRole
    score_maximum: float


class UpdateEvent(BaseModel):
    """Input to one reconcile cycle.

    Deltas are ignored when ``is_exit`` is set: exit only re-posts the
    current snapshot.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    score_delta: float = 0.0
    attempts_delta: float = 0.0
    is_exit: bool = False


class SubmissionResult(BaseModel):
    """Outcome of submitting one snapshot to the gradebook."""

    ok: bool
    cumulative_score: float
    cumulative_attempts: int
    line_item_ids: list[str] = Field(default_factory=list)
    activity_progress: ActivityProgress = ActivityProgress.IN_PROGRESS
    error: Optional[str] = None


# ============================================================================
# HTTP shapes
# ============================================================================


class UpdateRequest(BaseModel):
    """JSON body posted by the embedded exercise."""

    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    score: Optional[float] = None
    attempts: Optional[float] = None
    is_exit: bool = Field(default=False, alias="isExit")

    def to_event(self) -> UpdateEvent:
        return UpdateEvent(
            score_delta=self.score or 0.0,
            attempts_delta=self.attempts or 0.0,
            is_exit=self.is_exit,
        )


class ResetRequest(BaseModel):
    """Identifies the aggregate an administrator wants to reset."""

    platform_issuer: str
    learner_id: str
    course_id: str = DEFAULT_SCOPE_ID
    activity_id: str = DEFAULT_SCOPE_ID

    def to_key(self) -> AggregateKey:
        return AggregateKey(self.platform_issuer, self.course_id, self.activity_id, self.learner_id)
