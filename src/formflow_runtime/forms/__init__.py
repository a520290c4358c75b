"""
Form definitions, field validation and A/B experiments.
"""

from .types import (
    CONTACT_ATTRIBUTES,
    ActionName,
    FieldSpec,
    FieldType,
    FlowId,
    FormDefinition,
    TrustLevel,
)
from .experiments import Experiment, ExperimentResult, ExperimentTally, Variant, VariantCounts
from .schema import ResolvedSchema, apply_variant, resolve_schema, resolve_variant
from .store import FormStore, InMemoryFormStore
from .validation import contact_values, normalize_email, validate_fields

__all__ = [
    "CONTACT_ATTRIBUTES",
    "ActionName",
    "FieldSpec",
    "FieldType",
    "FlowId",
    "FormDefinition",
    "TrustLevel",
    "Experiment",
    "ExperimentResult",
    "ExperimentTally",
    "Variant",
    "VariantCounts",
    "ResolvedSchema",
    "apply_variant",
    "resolve_schema",
    "resolve_variant",
    "FormStore",
    "InMemoryFormStore",
    "contact_values",
    "normalize_email",
    "validate_fields",
]
