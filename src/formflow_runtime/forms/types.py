"""
Form configuration types.

Form definitions arrive as JSON-like dicts. They are turned into closed,
typed records here so that an unknown field type, trust level, action or
flow is rejected when the form is loaded, not when a submission runs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from ..errors import FormConfigError
from .experiments import Experiment


class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    PHONE = "phone"
    NUMBER = "number"
    URL = "url"
    SELECT = "select"
    MULTISELECT = "multiselect"
    CHECKBOX = "checkbox"
    DATE = "date"
    HIDDEN = "hidden"


class TrustLevel(str, Enum):
    """Degree of autonomy granted to the agent loop for a form."""

    OBSERVE_ONLY = "observe_only"
    DRAFT = "draft"
    EXECUTE_WITH_WINDOW = "execute_with_window"
    AUTONOMOUS = "autonomous"


class ActionName(str, Enum):
    """Action types the agent loop may propose."""

    SCORE_LEAD = "score_lead"
    SEND_MESSAGE = "send_message"
    CREATE_DEAL = "create_deal"
    CREATE_TICKET = "create_ticket"
    CREATE_BOOKING = "create_booking"
    ENROLL_SEQUENCE = "enroll_sequence"
    ESCALATE = "escalate"
    RESPOND_DIRECTLY = "respond_directly"


class FlowId(str, Enum):
    """Named processing pipelines."""

    NOTIFY_ONLY = "notify_only"
    LEAD_NURTURE = "lead_nurture"
    SUPPORT_TICKET = "support_ticket"
    TASK_REQUEST = "task_request"
    AGENT_SALES = "agent_sales"
    AGENT_SUPPORT = "agent_support"

    @property
    def agent_guided(self) -> bool:
        return self in {FlowId.AGENT_SALES, FlowId.AGENT_SUPPORT}


# Contact attributes a field may feed during identity resolution.
CONTACT_ATTRIBUTES = frozenset(
    {
        "email",
        "first_name",
        "last_name",
        "phone",
        "job_title",
        "website",
        "company_name",
    }
)


def _enum(enum_cls: type[Enum], value: Any, what: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)  # type: ignore[attr-defined]
        raise FormConfigError(f"Unknown {what} {value!r}; expected one of: {allowed}") from None


@dataclass(frozen=True)
class FieldSpec:
    """One field of a form schema."""

    name: str
    type: FieldType = FieldType.TEXT
    label: str | None = None
    required: bool = False
    min_length: int | None = None
    max_length: int | None = None
    min_value: float | None = None
    max_value: float | None = None
    pattern: str | None = None
    options: tuple[str, ...] = ()
    maps_to: str | None = None

    @property
    def contact_attribute(self) -> str | None:
        """Contact attribute fed by this field, if any."""
        if self.maps_to:
            return self.maps_to
        if self.type == FieldType.EMAIL:
            return "email"
        if self.name in CONTACT_ATTRIBUTES:
            return self.name
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "label": self.label,
            "required": self.required,
            "min_length": self.min_length,
            "max_length": self.max_length,
            "min_value": self.min_value,
            "max_value": self.max_value,
            "pattern": self.pattern,
            "options": list(self.options),
            "maps_to": self.maps_to,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldSpec:
        name = data.get("name")
        if not name or not isinstance(name, str):
            raise FormConfigError("Field spec is missing a name")

        field_type = _enum(FieldType, data.get("type", "text"), f"field type for {name!r}")

        pattern = data.get("pattern")
        if pattern is not None:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise FormConfigError(f"Invalid pattern for field {name!r}: {exc}") from exc

        options = tuple(str(o) for o in data.get("options") or ())
        if field_type in {FieldType.SELECT, FieldType.MULTISELECT} and not options:
            raise FormConfigError(f"Field {name!r} of type {field_type.value} needs options")

        maps_to = data.get("maps_to")
        if maps_to is not None and maps_to not in CONTACT_ATTRIBUTES:
            raise FormConfigError(f"Field {name!r} maps to unknown contact attribute {maps_to!r}")

        return cls(
            name=name,
            type=field_type,
            label=data.get("label"),
            required=bool(data.get("required", False)),
            min_length=data.get("min_length"),
            max_length=data.get("max_length"),
            min_value=data.get("min_value"),
            max_value=data.get("max_value"),
            pattern=pattern,
            options=options,
            maps_to=maps_to,
        )


@dataclass(frozen=True)
class FormDefinition:
    """A tenant's form: schema, guards, routing and agent configuration."""

    form_id: str
    tenant_id: str
    name: str = ""
    purpose: str = ""
    active: bool = True
    fields: tuple[FieldSpec, ...] = ()

    # Guards
    allowed_origins: tuple[str, ...] = ()
    honeypot_field: str = "_hp"
    max_submissions_per_ip: int = 10
    max_submissions_per_email: int = 5
    rate_window_seconds: int = 3600
    duplicate_window_seconds: int = 300

    # Processing
    flow: FlowId = FlowId.NOTIFY_ONLY
    handler_group_id: str | None = None
    trust_level: TrustLevel = TrustLevel.OBSERVE_ONLY
    allowed_actions: frozenset[ActionName] = frozenset()
    sequence_id: str | None = None
    send_confirmation: bool = True

    # Response
    success_message: str = "Thanks! We received your submission."
    redirect_url: str | None = None

    experiment: Experiment | None = None

    def get_field(self, name: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def with_fields(self, fields: tuple[FieldSpec, ...]) -> FormDefinition:
        return replace(self, fields=fields)

    def to_dict(self) -> dict[str, Any]:
        return {
            "form_id": self.form_id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "purpose": self.purpose,
            "active": self.active,
            "fields": [f.to_dict() for f in self.fields],
            "allowed_origins": list(self.allowed_origins),
            "honeypot_field": self.honeypot_field,
            "max_submissions_per_ip": self.max_submissions_per_ip,
            "max_submissions_per_email": self.max_submissions_per_email,
            "rate_window_seconds": self.rate_window_seconds,
            "duplicate_window_seconds": self.duplicate_window_seconds,
            "flow": self.flow.value,
            "handler_group_id": self.handler_group_id,
            "trust_level": self.trust_level.value,
            "allowed_actions": sorted(a.value for a in self.allowed_actions),
            "sequence_id": self.sequence_id,
            "send_confirmation": self.send_confirmation,
            "success_message": self.success_message,
            "redirect_url": self.redirect_url,
            "experiment": self.experiment.to_dict() if self.experiment else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FormDefinition:
        """Build a form from configuration, rejecting invalid values."""
        form_id = data.get("form_id")
        tenant_id = data.get("tenant_id")
        if not form_id or not tenant_id:
            raise FormConfigError("Form definition needs form_id and tenant_id")

        fields = tuple(FieldSpec.from_dict(f) for f in data.get("fields") or ())
        names = [f.name for f in fields]
        if len(names) != len(set(names)):
            raise FormConfigError(f"Form {form_id!r} has duplicate field names")

        honeypot = data.get("honeypot_field", "_hp")
        if honeypot in names:
            raise FormConfigError(f"Honeypot field {honeypot!r} collides with a form field")

        allowed_actions = frozenset(
            _enum(ActionName, a, "action") for a in data.get("allowed_actions") or ()
        )

        experiment = None
        if data.get("experiment"):
            experiment = Experiment.from_dict(data["experiment"])
            for variant in experiment.variants:
                for override in variant.field_overrides:
                    FieldSpec.from_dict(override)

        for key in (
            "max_submissions_per_ip",
            "max_submissions_per_email",
            "rate_window_seconds",
            "duplicate_window_seconds",
        ):
            if key in data and int(data[key]) < 0:
                raise FormConfigError(f"{key} must be >= 0")

        return cls(
            form_id=form_id,
            tenant_id=tenant_id,
            name=data.get("name", ""),
            purpose=data.get("purpose", ""),
            active=bool(data.get("active", True)),
            fields=fields,
            allowed_origins=tuple(data.get("allowed_origins") or ()),
            honeypot_field=honeypot,
            max_submissions_per_ip=int(data.get("max_submissions_per_ip", 10)),
            max_submissions_per_email=int(data.get("max_submissions_per_email", 5)),
            rate_window_seconds=int(data.get("rate_window_seconds", 3600)),
            duplicate_window_seconds=int(data.get("duplicate_window_seconds", 300)),
            flow=_enum(FlowId, data.get("flow", "notify_only"), "flow"),
            handler_group_id=data.get("handler_group_id"),
            trust_level=_enum(TrustLevel, data.get("trust_level", "observe_only"), "trust level"),
            allowed_actions=allowed_actions,
            sequence_id=data.get("sequence_id"),
            send_confirmation=bool(data.get("send_confirmation", True)),
            success_message=data.get("success_message", "Thanks! We received your submission."),
            redirect_url=data.get("redirect_url"),
            experiment=experiment,
        )


__all__ = [
    "FieldType",
    "TrustLevel",
    "ActionName",
    "FlowId",
    "CONTACT_ATTRIBUTES",
    "FieldSpec",
    "FormDefinition",
]
