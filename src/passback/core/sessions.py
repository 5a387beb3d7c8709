"""
Session store for validated launch contexts.

Holds one LaunchContext per session key with a fixed TTL (2 hours by
default).  Expiry is enforced twice: a cancellable ``call_later`` timer
evicts the entry in the background, and every read re-checks the deadline
so a session is never returned after its TTL even if the timer has not
fired yet (or no event loop was running when it was stored).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

from passback.errors import SessionExpired, SessionNotFound
from passback.models import LaunchContext

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 7200.0

# How many evicted keys are remembered to tell "expired" from "never seen".
_EXPIRED_MEMORY = 10_000


@dataclass
class _Entry:
    context: LaunchContext
    deadline: float
    timer: Optional[asyncio.TimerHandle]


class SessionStore:
    """In-process store of launch contexts keyed by session token."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._expired: OrderedDict[str, None] = OrderedDict()
        self._closed = False

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def start(self) -> None:
        self._closed = False

    def put(self, session_key: str, context: LaunchContext) -> None:
        """Store *context*, (re)starting its TTL and replacing any prior timer."""
        if self._closed:
            raise RuntimeError("Session store is shut down")

        previous = self._entries.pop(session_key, None)
        if previous is not None:
            self._cancel(previous)

        self._expired.pop(session_key, None)
        self._entries[session_key] = _Entry(
            context=context,
            deadline=self._clock() + self._ttl,
            timer=self._schedule(session_key),
        )
        logger.debug("Session stored: %s (ttl=%ss)", session_key, self._ttl)

    def get(self, session_key: str) -> LaunchContext:
        """
        Return the launch context for *session_key*.

        Raises:
            SessionExpired: TTL elapsed or session invalidated
            SessionNotFound: key was never stored (or forgotten long ago)
        """
        entry = self._entries.get(session_key)
        if entry is None:
            if session_key in self._expired:
                raise SessionExpired(f"Session {session_key} has expired, re-launch from the LMS")
            raise SessionNotFound(f"Session {session_key} not found, launch from the LMS first")

        if self._clock() >= entry.deadline:
            self._evict(session_key)
            raise SessionExpired(f"Session {session_key} has expired, re-launch from the LMS")

        return entry.context

    def invalidate(self, session_key: str) -> bool:
        """Drop a session before its TTL. Returns False if it was not stored."""
        if session_key not in self._entries:
            return False
        self._evict(session_key)
        return True

    def shutdown(self) -> None:
        """Cancel every pending timer and clear all entries."""
        for entry in self._entries.values():
            self._cancel(entry)
        self._entries.clear()
        self._expired.clear()
        self._closed = True

    def __contains__(self, session_key: object) -> bool:
        return session_key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ── internals ────────────────────────────────────────────────────

    def _schedule(self, session_key: str) -> Optional[asyncio.TimerHandle]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller): the read-time deadline check still applies.
            return None
        return loop.call_later(self._ttl, self._on_timer, session_key)

    def _on_timer(self, session_key: str) -> None:
        entry = self._entries.get(session_key)
        if entry is not None:
            entry.timer = None
            self._evict(session_key)

    def _evict(self, session_key: str) -> None:
        entry = self._entries.pop(session_key, None)
        if entry is None:
            return
        self._cancel(entry)
        self._expired[session_key] = None
        while len(self._expired) > _EXPIRED_MEMORY:
            self._expired.popitem(last=False)
        logger.info("Session evicted: %s", session_key)

    @staticmethod
    def _cancel(entry: _Entry) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
