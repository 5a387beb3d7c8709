"""
Grading collaborator interface.

The core never talks HTTP or signs tokens itself; it asks a GradingClient
to list, create and score line items on the platform.  All three calls
are remote and may fail with GradingServiceError.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from passback.models import LaunchContext


class LineItemDescriptor(BaseModel):
    """A line item as reported by the platform's line items container."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    label: Optional[str] = None
    tag: Optional[str] = None
    score_maximum: Optional[float] = Field(default=None, alias="scoreMaximum")
    resource_link_id: Optional[str] = Field(default=None, alias="resourceLinkId")
    resource_id: Optional[str] = Field(default=None, alias="resourceId")


class LineItemRequest(BaseModel):
    """Properties of a line item the tool asks the platform to create."""

    label: str
    tag: str
    score_maximum: float
    resource_link_id: Optional[str] = None


class ScorePayload(BaseModel):
    """AGS score publish body (application/vnd.ims.lis.v1.score+json)."""

    model_config = ConfigDict(populate_by_name=True)

    score_given: float = Field(alias="scoreGiven")
    score_maximum: float = Field(alias="scoreMaximum")
    activity_progress: str = Field(alias="activityProgress")
    grading_progress: str = Field(alias="gradingProgress")
    timestamp: str
    comment: Optional[str] = None
    user_id: Optional[str] = Field(default=None, alias="userId")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SubmissionAck(BaseModel):
    """Platform acknowledgement of a score post."""

    line_item_id: str
    status_code: Optional[int] = None
    body: Any = None


class GradingClient(ABC):
    """
    Base class for AGS clients.

    Implementations restore whatever platform credentials they need from
    the launch context (typically via its session key).
    """

    @abstractmethod
    async def query_line_items(self, context: LaunchContext) -> list[LineItemDescriptor]:
        """Return every line item visible to the launch's context."""

    @abstractmethod
    async def create_line_item(
        self, context: LaunchContext, request: LineItemRequest
    ) -> LineItemDescriptor:
        """Create a line item and return it with its platform-assigned id."""

    @abstractmethod
    async def submit_score(
        self, context: LaunchContext, line_item_id: str, payload: ScorePayload
    ) -> SubmissionAck:
        """Publish a score to a line item. Replaces any earlier score."""
