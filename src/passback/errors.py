"""
Error kinds raised by the grade passback core.

Each error carries a stable ``kind`` (reported to the exercise in the
response body) and the HTTP status the update endpoint answers with.
"""

from __future__ import annotations


class PassbackError(Exception):
    """Base exception for grade passback operations."""

    kind = "PassbackError"
    status_code = 500


# ============================================================================
# Session errors (caller must re-launch)
# ============================================================================


class MissingSession(PassbackError):
    """Request carried no session key."""

    kind = "MissingSession"
    status_code = 401


class SessionExpired(PassbackError):
    """Session TTL elapsed or the session was invalidated."""

    kind = "SessionExpired"
    status_code = 401


class SessionNotFound(SessionExpired):
    """Session key was never stored in this process."""

    kind = "SessionNotFound"


# ============================================================================
# Gradebook errors
# ============================================================================


class LineItemUnavailable(PassbackError):
    """No gradebook column could be queried or created."""

    kind = "LineItemUnavailable"
    status_code = 424


class NoGradableLineItem(LineItemUnavailable):
    """Submission attempted without a score-role line item."""

    kind = "NoGradableLineItem"


class SubmissionFailure(PassbackError):
    """The platform rejected the primary score or could not be reached."""

    kind = "SubmissionFailure"
    status_code = 502


class InternalError(PassbackError):
    """Unexpected failure inside the reconcile cycle."""

    kind = "InternalError"
    status_code = 500


class GradingServiceError(Exception):
    """A remote AGS call (line item query/create, score post) failed."""


# Kind reported alongside ok=true when only the attempts column failed.
PARTIAL_SUBMISSION_FAILURE = "PartialSubmissionFailure"
