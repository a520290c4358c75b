"""
Handler group types.

A HandlerGroup is a named set of members plus the routing state the
strategies mutate: a rotation cursor and a per-member load counter.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from ..errors import GroupConfigError


class MemberKind(str, Enum):
    AGENT = "agent"
    HUMAN = "human"


class RoutingStrategy(str, Enum):
    PRINCIPAL = "principal"
    ROUND_ROBIN = "round_robin"
    LEAST_LOADED = "least_loaded"
    BROADCAST = "broadcast"


class RouteKind(str, Enum):
    ASSIGNED = "assigned"
    BROADCAST = "broadcast"
    FALLBACK = "fallback"
    UNASSIGNED = "unassigned"


@dataclass(frozen=True)
class HandlerRef:
    """Reference to whoever handles a submission."""

    handler_id: str
    kind: MemberKind = MemberKind.HUMAN
    name: str = ""
    email: str | None = None

    @property
    def is_agent(self) -> bool:
        return self.kind == MemberKind.AGENT

    def to_dict(self) -> dict[str, Any]:
        return {
            "handler_id": self.handler_id,
            "kind": self.kind.value,
            "name": self.name,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HandlerRef:
        try:
            kind = MemberKind(data.get("kind", "human"))
        except ValueError:
            raise GroupConfigError(f"Unknown handler kind {data.get('kind')!r}") from None
        return cls(
            handler_id=data["handler_id"],
            kind=kind,
            name=data.get("name", ""),
            email=data.get("email"),
        )


@dataclass(frozen=True)
class HandlerMember:
    member_id: str
    kind: MemberKind = MemberKind.HUMAN
    name: str = ""
    active: bool = True
    principal: bool = False
    email: str | None = None

    @property
    def ref(self) -> HandlerRef:
        return HandlerRef(handler_id=self.member_id, kind=self.kind, name=self.name, email=self.email)

    def to_dict(self) -> dict[str, Any]:
        return {
            "member_id": self.member_id,
            "kind": self.kind.value,
            "name": self.name,
            "active": self.active,
            "principal": self.principal,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HandlerMember:
        member_id = data.get("member_id")
        if not member_id:
            raise GroupConfigError("Handler member is missing member_id")
        try:
            kind = MemberKind(data.get("kind", "human"))
        except ValueError:
            raise GroupConfigError(f"Unknown kind {data.get('kind')!r} for member {member_id!r}") from None
        return cls(
            member_id=member_id,
            kind=kind,
            name=data.get("name", ""),
            active=bool(data.get("active", True)),
            principal=bool(data.get("principal", False)),
            email=data.get("email"),
        )


@dataclass(frozen=True)
class HandlerGroup:
    """A routable set of handlers.

    ``cursor`` and ``loads`` are routing state. They are only ever changed
    through ``with_state`` by the router while it holds the group's lock.
    """

    group_id: str
    tenant_id: str
    name: str = ""
    members: tuple[HandlerMember, ...] = ()
    strategy: RoutingStrategy = RoutingStrategy.ROUND_ROBIN
    fallback: HandlerRef | None = None
    cursor: int = -1
    loads: dict[str, int] = field(default_factory=dict)

    @property
    def active_members(self) -> list[HandlerMember]:
        return [m for m in self.members if m.active]

    @property
    def principal(self) -> HandlerMember | None:
        for member in self.members:
            if member.principal:
                return member
        return None

    def load_of(self, member_id: str) -> int:
        return self.loads.get(member_id, 0)

    def with_state(self, *, cursor: int | None = None, loads: dict[str, int] | None = None) -> HandlerGroup:
        return replace(
            self,
            cursor=self.cursor if cursor is None else cursor,
            loads=dict(self.loads if loads is None else loads),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "members": [m.to_dict() for m in self.members],
            "strategy": self.strategy.value,
            "fallback": self.fallback.to_dict() if self.fallback else None,
            "cursor": self.cursor,
            "loads": dict(self.loads),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HandlerGroup:
        group_id = data.get("group_id")
        tenant_id = data.get("tenant_id")
        if not group_id or not tenant_id:
            raise GroupConfigError("Handler group needs group_id and tenant_id")

        members = tuple(HandlerMember.from_dict(m) for m in data.get("members") or ())
        ids = [m.member_id for m in members]
        if len(ids) != len(set(ids)):
            raise GroupConfigError(f"Group {group_id!r} has duplicate member ids")
        if sum(1 for m in members if m.principal) > 1:
            raise GroupConfigError(f"Group {group_id!r} has more than one principal")

        try:
            strategy = RoutingStrategy(data.get("strategy", "round_robin"))
        except ValueError:
            raise GroupConfigError(f"Unknown routing strategy {data.get('strategy')!r}") from None

        fallback = data.get("fallback")
        return cls(
            group_id=group_id,
            tenant_id=tenant_id,
            name=data.get("name", ""),
            members=members,
            strategy=strategy,
            fallback=HandlerRef.from_dict(fallback) if fallback else None,
            cursor=int(data.get("cursor", -1)),
            loads={str(k): int(v) for k, v in (data.get("loads") or {}).items()},
        )


@dataclass(frozen=True)
class RouteResult:
    kind: RouteKind
    handlers: tuple[HandlerRef, ...] = ()
    group_id: str | None = None

    @classmethod
    def unassigned(cls, group_id: str | None = None) -> RouteResult:
        return cls(kind=RouteKind.UNASSIGNED, group_id=group_id)

    @property
    def is_unassigned(self) -> bool:
        return self.kind == RouteKind.UNASSIGNED

    @property
    def primary(self) -> HandlerRef | None:
        """The handler recorded on the submission."""
        return self.handlers[0] if self.handlers else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "handlers": [h.to_dict() for h in self.handlers],
            "group_id": self.group_id,
        }


__all__ = [
    "MemberKind",
    "RoutingStrategy",
    "RouteKind",
    "HandlerRef",
    "HandlerMember",
    "HandlerGroup",
    "RouteResult",
]
