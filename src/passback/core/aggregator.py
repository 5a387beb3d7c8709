"""
Score aggregation.

Folds repeated score events from the exercise into one cumulative grade
per (platform, course, activity, learner).  Scores only move upward and
are clamped to the column maximum; exit events never touch state.
"""

from __future__ import annotations

import logging
from typing import Literal

from passback.core.locks import KeyedLock
from passback.models import AggregateKey, AggregateState, UpdateEvent

logger = logging.getLogger(__name__)

ScoreMode = Literal["cumulative", "latest"]


class ScoreAggregator:
    """
    Holds AggregateState per key.

    ``mode="cumulative"`` adds each event's deltas to the running totals.
    ``mode="latest"`` replaces the totals with the event's values, for
    exercises that already report their own running total.
    """

    def __init__(self, mode: ScoreMode = "cumulative") -> None:
        if mode not in ("cumulative", "latest"):
            raise ValueError(f"Unknown score mode: {mode!r}")
        self._mode = mode
        self._states: dict[AggregateKey, AggregateState] = {}
        self._locks = KeyedLock()

    @property
    def mode(self) -> ScoreMode:
        return self._mode

    async def apply(
        self, key: AggregateKey, event: UpdateEvent, score_maximum: float
    ) -> AggregateState:
        """Apply *event* to *key* and return the post-update snapshot."""
        async with self._locks.hold(key):
            current = self._states.get(key, AggregateState())
            if event.is_exit:
                return current

            score_delta = max(0.0, float(event.score_delta))
            attempts_delta = max(0, int(event.attempts_delta))

            if self._mode == "latest":
                updated = AggregateState(
                    cumulative_score=min(score_maximum, score_delta),
                    cumulative_attempts=attempts_delta,
                )
            else:
                updated = AggregateState(
                    cumulative_score=min(score_maximum, current.cumulative_score + score_delta),
                    cumulative_attempts=current.cumulative_attempts + attempts_delta,
                )

            self._states[key] = updated
            logger.debug(
                "Aggregate %s: score %s -> %s, attempts %s -> %s",
                key,
                current.cumulative_score, updated.cumulative_score,
                current.cumulative_attempts, updated.cumulative_attempts,
            )
            return updated

    def snapshot(self, key: AggregateKey) -> AggregateState:
        return self._states.get(key, AggregateState())

    def snapshots(self) -> dict[AggregateKey, AggregateState]:
        return dict(self._states)

    def reset(self, key: AggregateKey) -> bool:
        """Administrative reset. Returns False if the key had no state."""
        existed = self._states.pop(key, None) is not None
        if existed:
            logger.info("Aggregate reset: %s", key)
        return existed

    def clear(self) -> None:
        self._states.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._states

    def __len__(self) -> int:
        return len(self._states)
