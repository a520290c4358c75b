"""
Schema resolution for a form, with A/B variant overrides applied.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any

from .experiments import Variant
from .types import FieldSpec, FormDefinition


def apply_variant(form: FormDefinition, variant: Variant | None) -> FormDefinition:
    """Merge a variant's field overrides onto the base schema.

    An override whose name matches a base field replaces that field in
    place; any other override is appended after the base fields.
    """
    if variant is None or not variant.field_overrides:
        return form

    overrides = [FieldSpec.from_dict(o) for o in variant.field_overrides]
    by_name = {o.name: o for o in overrides}

    merged = [by_name.pop(f.name, f) for f in form.fields]
    merged.extend(o for o in overrides if o.name in by_name)
    return form.with_fields(tuple(merged))


@dataclass(frozen=True)
class ResolvedSchema:
    """The schema a client renders, and the variant it must echo back."""

    form: FormDefinition
    variant_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "form_id": self.form.form_id,
            "name": self.form.name,
            "fields": [f.to_dict() for f in self.form.fields],
            "honeypot_field": self.form.honeypot_field,
            "success_message": self.form.success_message,
            "redirect_url": self.form.redirect_url,
            "variant_id": self.variant_id,
        }


def resolve_variant(
    form: FormDefinition,
    variant_id: str | None = None,
    rng: random.Random | None = None,
) -> Variant | None:
    """Pick the variant for a request.

    An echoed ``variant_id`` naming a known variant wins; otherwise a
    weighted-random draw is made. Forms without an active experiment
    have no variant.
    """
    experiment = form.experiment
    if experiment is None or not experiment.active:
        return None
    echoed = experiment.get_variant(variant_id)
    if echoed is not None:
        return echoed
    return experiment.choose(rng)


def resolve_schema(
    form: FormDefinition,
    variant_id: str | None = None,
    rng: random.Random | None = None,
) -> ResolvedSchema:
    variant = resolve_variant(form, variant_id, rng)
    return ResolvedSchema(
        form=apply_variant(form, variant),
        variant_id=variant.variant_id if variant else None,
    )


__all__ = [
    "apply_variant",
    "resolve_variant",
    "resolve_schema",
    "ResolvedSchema",
]
