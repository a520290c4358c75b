"""
Handler group storage.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from .types import HandlerGroup


class RoutingStore(ABC):
    """Abstract interface for handler groups and their routing state."""

    @abstractmethod
    async def get(self, tenant_id: str, group_id: str) -> HandlerGroup | None:
        ...

    @abstractmethod
    async def save(self, group: HandlerGroup) -> None:
        """Persist a group, including its cursor and load counters."""
        ...


class InMemoryRoutingStore(RoutingStore):
    def __init__(self, groups: list[HandlerGroup] | None = None) -> None:
        self._groups: dict[tuple[str, str], HandlerGroup] = {
            (g.tenant_id, g.group_id): g for g in groups or ()
        }
        self._lock = asyncio.Lock()

    async def get(self, tenant_id: str, group_id: str) -> HandlerGroup | None:
        async with self._lock:
            return self._groups.get((tenant_id, group_id))

    async def save(self, group: HandlerGroup) -> None:
        async with self._lock:
            self._groups[(group.tenant_id, group.group_id)] = group


__all__ = [
    "RoutingStore",
    "InMemoryRoutingStore",
]
