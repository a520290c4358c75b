"""
Handler router.

Picks the recipient of a submission from a handler group. Strategies that
mutate routing state (round robin, least loaded) do their read, selection
and save under a per-group lock, so concurrent submissions to one group
never compute the same cursor twice.
"""

from __future__ import annotations

import logging

from ..locks import KeyedLock
from .store import RoutingStore
from .types import HandlerGroup, HandlerRef, RouteKind, RouteResult, RoutingStrategy

logger = logging.getLogger(__name__)


class HandlerRouter:
    def __init__(self, store: RoutingStore) -> None:
        self._store = store
        self._locks = KeyedLock()

    @property
    def store(self) -> RoutingStore:
        return self._store

    async def route(self, tenant_id: str, group_id: str | None) -> RouteResult:
        if not group_id:
            return RouteResult.unassigned()

        async with self._locks.hold((tenant_id, group_id)):
            group = await self._store.get(tenant_id, group_id)
            if group is None:
                logger.warning("Handler group %s not found for tenant %s", group_id, tenant_id)
                return RouteResult.unassigned(group_id)

            result, updated = self._select(group)
            if updated is not None:
                await self._store.save(updated)

        logger.debug(
            "Routed in group %s via %s: %s",
            group_id,
            group.strategy.value,
            result.kind.value,
        )
        return result

    def _select(self, group: HandlerGroup) -> tuple[RouteResult, HandlerGroup | None]:
        """Pick handlers; return the group with new routing state if it changed."""
        active = group.active_members
        if not active:
            return self._fallback(group), None

        strategy = group.strategy

        if strategy == RoutingStrategy.PRINCIPAL:
            principal = group.principal
            if principal is None or not principal.active:
                return self._fallback(group), None
            return RouteResult(RouteKind.ASSIGNED, (principal.ref,), group.group_id), None

        if strategy == RoutingStrategy.ROUND_ROBIN:
            cursor = (group.cursor + 1) % len(active)
            chosen = active[cursor]
            return (
                RouteResult(RouteKind.ASSIGNED, (chosen.ref,), group.group_id),
                group.with_state(cursor=cursor),
            )

        if strategy == RoutingStrategy.LEAST_LOADED:
            # min() keeps list order on ties.
            chosen = min(active, key=lambda m: group.load_of(m.member_id))
            loads = dict(group.loads)
            loads[chosen.member_id] = group.load_of(chosen.member_id) + 1
            return (
                RouteResult(RouteKind.ASSIGNED, (chosen.ref,), group.group_id),
                group.with_state(loads=loads),
            )

        return (
            RouteResult(RouteKind.BROADCAST, tuple(m.ref for m in active), group.group_id),
            None,
        )

    @staticmethod
    def _fallback(group: HandlerGroup) -> RouteResult:
        if group.fallback is None:
            return RouteResult.unassigned(group.group_id)
        return RouteResult(RouteKind.FALLBACK, (group.fallback,), group.group_id)

    async def fallback_for(self, tenant_id: str, group_id: str | None) -> HandlerRef | None:
        """The group's fallback handler, used for escalations."""
        if not group_id:
            return None
        group = await self._store.get(tenant_id, group_id)
        return group.fallback if group else None


__all__ = ["HandlerRouter"]
