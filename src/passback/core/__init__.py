"""
Grade passback reconciliation core.

Exports the stores and services the app wires together at startup.
"""

from .aggregator import ScoreAggregator
from .grading import (
    GradingClient,
    LineItemDescriptor,
    LineItemRequest,
    ScorePayload,
    SubmissionAck,
)
from .locks import KeyedLock
from .orchestrator import ReconcileOutcome, ReconcileState, RequestOrchestrator
from .pipeline import SubmissionPipeline
from .resolver import LineItemResolver
from .sessions import SessionStore

__all__ = [
    "GradingClient",
    "KeyedLock",
    "LineItemDescriptor",
    "LineItemRequest",
    "LineItemResolver",
    "ReconcileOutcome",
    "ReconcileState",
    "RequestOrchestrator",
    "ScoreAggregator",
    "ScorePayload",
    "SessionStore",
    "SubmissionAck",
    "SubmissionPipeline",
]
