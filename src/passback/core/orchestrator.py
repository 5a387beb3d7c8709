"""
Request orchestration for grade updates.

One update request runs the reconcile cycle exactly once:

    RECEIVE_REQUEST -> RESOLVE_SESSION -> AGGREGATE_EVENT
        -> RESOLVE_LINE_ITEMS -> SUBMIT -> RESPONDED

The aggregate, resolve and submit steps run under the learner's
AggregateKey lock, so rapid clicks from one exercise are posted to the
platform in arrival order while other learners proceed in parallel.
Failures are reported to the caller, never retried here: the next event
for the same key re-posts the latest cumulative snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from passback.core.aggregator import ScoreAggregator
from passback.core.locks import KeyedLock
from passback.core.pipeline import SubmissionPipeline
from passback.core.resolver import LineItemResolver
from passback.core.sessions import SessionStore
from passback.errors import (
    InternalError,
    LineItemUnavailable,
    MissingSession,
    PassbackError,
    SubmissionFailure,
)
from passback.models import (
    AggregateKey,
    AggregateState,
    LaunchContext,
    LineItemRef,
    LineItemRole,
    SubmissionResult,
    UpdateEvent,
)

logger = logging.getLogger(__name__)


class ReconcileState(str, Enum):
    RECEIVE_REQUEST = "ReceiveRequest"
    RESOLVE_SESSION = "ResolveSession"
    AGGREGATE_EVENT = "AggregateEvent"
    RESOLVE_LINE_ITEMS = "ResolveLineItems"
    SUBMIT = "Submit"
    RESPONDED = "Responded"


@dataclass
class ReconcileOutcome:
    """Terminal state of one request, ready to be rendered as HTTP."""

    ok: bool
    status_code: int
    failed_at: Optional[ReconcileState] = None
    result: Optional[SubmissionResult] = None
    snapshot: Optional[AggregateState] = None
    error_kind: Optional[str] = None
    detail: Optional[str] = None

    def to_body(self) -> dict[str, Any]:
        if self.ok and self.result is not None:
            body: dict[str, Any] = {
                "ok": True,
                "score": self.result.cumulative_score,
                "attempts": self.result.cumulative_attempts,
                "lineItemIds": list(self.result.line_item_ids),
                "activityProgress": self.result.activity_progress.value,
            }
            if self.result.error:
                body["warning"] = self.result.error
            return body

        body = {"ok": False, "error": self.error_kind, "detail": self.detail}
        if self.snapshot is not None:
            body["score"] = self.snapshot.cumulative_score
            body["attempts"] = self.snapshot.cumulative_attempts
        return body


class RequestOrchestrator:
    """Sequences session lookup, aggregation, resolution and submission."""

    def __init__(
        self,
        sessions: SessionStore,
        aggregator: ScoreAggregator,
        resolver: LineItemResolver,
        pipeline: SubmissionPipeline,
        track_attempts: bool = True,
    ) -> None:
        self.sessions = sessions
        self.aggregator = aggregator
        self.resolver = resolver
        self.pipeline = pipeline
        self._track_attempts = track_attempts
        self._locks = KeyedLock()
        self._inflight: set[asyncio.Task] = set()

    @property
    def score_maximum(self) -> float:
        return self.resolver.roles[LineItemRole.SCORE].score_maximum

    async def handle(self, session_key: Optional[str], event: UpdateEvent) -> ReconcileOutcome:
        """
        Run one reconcile cycle for an inbound update.

        If the caller is cancelled (client disconnected), the cycle keeps
        running to completion so a partially applied update is still posted.
        """
        task = asyncio.ensure_future(self._reconcile(session_key, event))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning(
                "Caller cancelled during reconcile for session %s; finishing in background",
                session_key,
            )
            task.add_done_callback(_log_orphaned)
            raise

    async def drain(self) -> None:
        """Wait for in-flight reconciles (used at shutdown)."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def reset(self, key: AggregateKey) -> tuple[bool, int]:
        """
        Administrative reset of one aggregate and its cached line items.

        Waits for any reconcile in flight for *key*, so a pre-reset snapshot
        is never posted afterwards.
        """
        async with self._locks.hold(key):
            reset = self.aggregator.reset(key)
            forgotten = self.resolver.forget(key)
        return reset, forgotten

    def shutdown(self) -> None:
        self.sessions.shutdown()
        self.aggregator.clear()
        self.resolver.clear()

    # ── state machine ────────────────────────────────────────────────

    async def _reconcile(self, session_key: Optional[str], event: UpdateEvent) -> ReconcileOutcome:
        state = ReconcileState.RECEIVE_REQUEST
        snapshot: Optional[AggregateState] = None
        try:
            if not session_key:
                raise MissingSession("Missing session: pass ?ltik=<session> from the launch page")

            state = self._advance(session_key, state, ReconcileState.RESOLVE_SESSION)
            context = self.sessions.get(session_key)
            key = context.aggregate_key

            async with self._locks.hold(key):
                if event.is_exit and key not in self.aggregator:
                    # Nothing recorded in this process; posting zeros would
                    # overwrite the learner's existing gradebook entry.
                    logger.info("Exit for %s with no recorded score; nothing posted", key)
                    snapshot = AggregateState()
                    result = SubmissionResult(
                        ok=True, cumulative_score=0.0, cumulative_attempts=0
                    )
                    self._advance(session_key, state, ReconcileState.RESPONDED)
                    return ReconcileOutcome(
                        ok=True, status_code=200, result=result, snapshot=snapshot
                    )

                state = self._advance(session_key, state, ReconcileState.AGGREGATE_EVENT)
                snapshot = await self.aggregator.apply(key, event, self.score_maximum)

                state = self._advance(session_key, state, ReconcileState.RESOLVE_LINE_ITEMS)
                line_items, note = await self._resolve_line_items(context)

                state = self._advance(session_key, state, ReconcileState.SUBMIT)
                result = await self.pipeline.submit(context, snapshot, line_items)

            self._advance(session_key, state, ReconcileState.RESPONDED)

            if not result.ok:
                return ReconcileOutcome(
                    ok=False,
                    status_code=SubmissionFailure.status_code,
                    failed_at=ReconcileState.SUBMIT,
                    result=result,
                    snapshot=snapshot,
                    error_kind=SubmissionFailure.kind,
                    detail=result.error,
                )

            if note:
                result.error = f"{result.error}; {note}" if result.error else note
            return ReconcileOutcome(ok=True, status_code=200, result=result, snapshot=snapshot)

        except PassbackError as e:
            logger.info("Reconcile for session %s failed at %s: %s", session_key, state.value, e)
            return ReconcileOutcome(
                ok=False,
                status_code=e.status_code,
                failed_at=state,
                snapshot=snapshot,
                error_kind=e.kind,
                detail=str(e),
            )
        except Exception as e:
            logger.exception("Unexpected error reconciling session %s at %s", session_key, state.value)
            return ReconcileOutcome(
                ok=False,
                status_code=InternalError.status_code,
                failed_at=state,
                snapshot=snapshot,
                error_kind=InternalError.kind,
                detail=f"{type(e).__name__}: {e}",
            )

    async def _resolve_line_items(
        self, context: LaunchContext
    ) -> tuple[dict[LineItemRole, LineItemRef], Optional[str]]:
        """Score line item is mandatory; the attempts one is best effort."""
        line_items = {LineItemRole.SCORE: await self.resolver.resolve(context, LineItemRole.SCORE)}

        note = None
        if self._track_attempts:
            try:
                line_items[LineItemRole.ATTEMPTS] = await self.resolver.resolve(
                    context, LineItemRole.ATTEMPTS
                )
            except LineItemUnavailable as e:
                logger.warning("Attempts line item unavailable for %s: %s", context.aggregate_key, e)
                note = f"{e.kind}: {e}"
        return line_items, note

    @staticmethod
    def _advance(
        session_key: str, current: ReconcileState, target: ReconcileState
    ) -> ReconcileState:
        logger.debug("Session %s: %s -> %s", session_key, current.value, target.value)
        return target


def _log_orphaned(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    outcome = task.result()
    logger.warning(
        "Orphaned response (caller gone): ok=%s status=%s", outcome.ok, outcome.status_code
    )
