"""
Handler groups and the router that assigns submissions to them.
"""

from .types import (
    HandlerGroup,
    HandlerMember,
    HandlerRef,
    MemberKind,
    RouteKind,
    RouteResult,
    RoutingStrategy,
)
from .store import InMemoryRoutingStore, RoutingStore
from .router import HandlerRouter

__all__ = [
    "HandlerGroup",
    "HandlerMember",
    "HandlerRef",
    "MemberKind",
    "RouteKind",
    "RouteResult",
    "RoutingStrategy",
    "RoutingStore",
    "InMemoryRoutingStore",
    "HandlerRouter",
]
