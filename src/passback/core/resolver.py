"""
Line item resolution.

Finds or creates the gradebook column(s) a learner's score is written to.
Resolved references are cached per (activity, role) for the process
lifetime.  Concurrent resolutions of the same column collapse into a
single query/create round-trip, even across learners, so the platform
never sees duplicate columns from one tool.
"""

from __future__ import annotations

import logging
from typing import Optional

from passback.core.grading import GradingClient, LineItemDescriptor, LineItemRequest
from passback.core.locks import KeyedLock
from passback.errors import GradingServiceError, LineItemUnavailable
from passback.models import (
    DEFAULT_SCOPE_ID,
    AggregateKey,
    LaunchContext,
    LineItemRef,
    LineItemRole,
    RoleSpec,
    role_table,
)

logger = logging.getLogger(__name__)


class LineItemResolver:
    """
    Resolves a LineItemRef for an AggregateKey and role.

    Gradebook columns belong to the activity, not the learner, so the cache
    and the single-flight lock are shared by every learner of one activity.
    """

    def __init__(
        self,
        client: GradingClient,
        roles: Optional[dict[LineItemRole, RoleSpec]] = None,
    ) -> None:
        self._client = client
        self._roles = roles or role_table()
        self._cache: dict[tuple[str, str, str, LineItemRole], LineItemRef] = {}
        self._locks = KeyedLock()

    @property
    def roles(self) -> dict[LineItemRole, RoleSpec]:
        return self._roles

    async def resolve(self, context: LaunchContext, role: LineItemRole) -> LineItemRef:
        """
        Return the line item for *role*, creating it on the platform if needed.

        Raises:
            LineItemUnavailable: query failed (and no hint applies) or create failed
        """
        spec = self._roles[role]

        if spec.accepts_hint and context.line_item_hint:
            return LineItemRef(
                id=context.line_item_hint, role=role, score_maximum=spec.score_maximum
            )

        cache_key = _column_key(context.aggregate_key, role)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        async with self._locks.hold(cache_key):
            # Another request may have resolved it while we waited.
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached

            ref = await self._find_or_create(context, spec)
            self._cache[cache_key] = ref
            return ref

    def cached(self, key: AggregateKey, role: LineItemRole) -> Optional[LineItemRef]:
        return self._cache.get(_column_key(key, role))

    def forget(self, key: AggregateKey) -> int:
        """Drop cached references for *key*'s activity. Returns how many were dropped."""
        activity = _column_key(key, None)[:3]
        stale = [cache_key for cache_key in self._cache if cache_key[:3] == activity]
        for cache_key in stale:
            del self._cache[cache_key]
        return len(stale)

    def clear(self) -> None:
        self._cache.clear()

    async def _find_or_create(self, context: LaunchContext, spec: RoleSpec) -> LineItemRef:
        try:
            items = await self._client.query_line_items(context)
        except GradingServiceError as e:
            logger.warning(
                "Line item query failed for %s role=%s: %s",
                context.aggregate_key, spec.role.value, e,
            )
            raise LineItemUnavailable(
                f"Cannot list gradebook line items for role '{spec.role.value}' "
                f"(AGS line item read scope unavailable?): {e}"
            ) from e

        existing = _match(items, context.activity_id, spec)
        if existing is not None:
            logger.info(
                "Reusing line item %s for %s role=%s",
                existing.id, context.aggregate_key, spec.role.value,
            )
            return LineItemRef(id=existing.id, role=spec.role, score_maximum=spec.score_maximum)

        request = LineItemRequest(
            label=spec.label,
            tag=spec.tag,
            score_maximum=spec.score_maximum,
            resource_link_id=_scoped_activity(context.activity_id),
        )
        try:
            created = await self._client.create_line_item(context, request)
        except GradingServiceError as e:
            logger.warning(
                "Line item create failed for %s role=%s: %s",
                context.aggregate_key, spec.role.value, e,
            )
            raise LineItemUnavailable(
                f"Cannot create a '{spec.role.value}' gradebook line item "
                f"(AGS line item write scope unavailable?): {e}"
            ) from e

        logger.info(
            "Created line item %s for %s role=%s max=%s",
            created.id, context.aggregate_key, spec.role.value, spec.score_maximum,
        )
        return LineItemRef(id=created.id, role=spec.role, score_maximum=spec.score_maximum)


def _column_key(key: AggregateKey, role: Optional[LineItemRole]) -> tuple:
    return (key.platform_issuer, key.course_id, key.activity_id, role)


def _scoped_activity(activity_id: str) -> Optional[str]:
    if not activity_id or activity_id == DEFAULT_SCOPE_ID:
        return None
    return activity_id


def _match(
    items: list[LineItemDescriptor], activity_id: str, spec: RoleSpec
) -> Optional[LineItemDescriptor]:
    """First item in the activity's scope whose tag belongs to the role."""
    scope = _scoped_activity(activity_id)
    for item in items:
        if scope and item.resource_link_id and item.resource_link_id != scope:
            continue
        if spec.matches_tag(item.tag):
            return item
    return None
