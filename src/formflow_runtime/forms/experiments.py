"""
A/B experiments on form schemas.

An experiment splits traffic between weighted variants. Each variant can
replace or add fields of the base schema. The variant is chosen when the
schema is fetched and echoed back on submission; counters of views and
submissions per variant drive the evaluation.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any

from ..errors import FormConfigError


@dataclass(frozen=True)
class Variant:
    variant_id: str
    weight: float = 1.0
    field_overrides: tuple[dict[str, Any], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant_id": self.variant_id,
            "weight": self.weight,
            "field_overrides": [dict(o) for o in self.field_overrides],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Variant:
        variant_id = data.get("variant_id")
        if not variant_id:
            raise FormConfigError("Experiment variant is missing variant_id")
        weight = float(data.get("weight", 1.0))
        if weight < 0:
            raise FormConfigError(f"Variant {variant_id!r} has a negative weight")
        return cls(
            variant_id=variant_id,
            weight=weight,
            field_overrides=tuple(dict(o) for o in data.get("field_overrides") or ()),
        )


@dataclass(frozen=True)
class VariantCounts:
    views: int = 0
    submissions: int = 0

    @property
    def conversion_rate(self) -> float:
        if self.views <= 0:
            return float(self.submissions)
        return self.submissions / self.views


@dataclass(frozen=True)
class ExperimentResult:
    """Outcome of evaluating an experiment.

    ``status`` is ``waiting`` until every variant has reached the minimum
    sample size, then ``optimized`` with the best-converting variant.
    """

    status: str
    counts: dict[str, int]
    min_sample_size: int
    winner: str | None = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "counts": dict(self.counts),
            "min_sample_size": self.min_sample_size,
            "winner": self.winner,
            "message": self.message,
        }


@dataclass(frozen=True)
class Experiment:
    experiment_id: str
    variants: tuple[Variant, ...] = ()
    min_sample_size: int = 30
    active: bool = True

    def get_variant(self, variant_id: str | None) -> Variant | None:
        if not variant_id:
            return None
        for variant in self.variants:
            if variant.variant_id == variant_id:
                return variant
        return None

    def choose(self, rng: random.Random | None = None) -> Variant:
        """Draw a variant with probability proportional to its weight."""
        rng = rng or random
        weights = [v.weight for v in self.variants]
        if sum(weights) <= 0:
            weights = [1.0] * len(self.variants)
        return rng.choices(self.variants, weights=weights, k=1)[0]

    def evaluate(self, counts: dict[str, VariantCounts]) -> ExperimentResult:
        submissions = {
            v.variant_id: counts.get(v.variant_id, VariantCounts()).submissions
            for v in self.variants
        }
        progress = ", ".join(
            f"{vid} {n}/{self.min_sample_size}" for vid, n in submissions.items()
        )

        if any(n < self.min_sample_size for n in submissions.values()):
            return ExperimentResult(
                status="waiting",
                counts=submissions,
                min_sample_size=self.min_sample_size,
                message=f"Waiting for minimum sample size: {progress}",
            )

        # max() keeps the first of equally converting variants.
        winner = max(
            self.variants,
            key=lambda v: counts.get(v.variant_id, VariantCounts()).conversion_rate,
        )
        return ExperimentResult(
            status="optimized",
            counts=submissions,
            min_sample_size=self.min_sample_size,
            winner=winner.variant_id,
            message=f"Variant {winner.variant_id} converts best: {progress}",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "experiment_id": self.experiment_id,
            "variants": [v.to_dict() for v in self.variants],
            "min_sample_size": self.min_sample_size,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Experiment:
        experiment_id = data.get("experiment_id")
        if not experiment_id:
            raise FormConfigError("Experiment is missing experiment_id")
        variants = tuple(Variant.from_dict(v) for v in data.get("variants") or ())
        if len(variants) < 2:
            raise FormConfigError(f"Experiment {experiment_id!r} needs at least two variants")
        ids = [v.variant_id for v in variants]
        if len(ids) != len(set(ids)):
            raise FormConfigError(f"Experiment {experiment_id!r} has duplicate variant ids")
        min_sample_size = int(data.get("min_sample_size", 30))
        if min_sample_size < 1:
            raise FormConfigError("min_sample_size must be >= 1")
        return cls(
            experiment_id=experiment_id,
            variants=variants,
            min_sample_size=min_sample_size,
            active=bool(data.get("active", True)),
        )


@dataclass
class ExperimentTally:
    """Mutable view/submission counters for one form's experiment."""

    counts: dict[str, VariantCounts] = field(default_factory=dict)

    def record_view(self, variant_id: str) -> None:
        current = self.counts.get(variant_id, VariantCounts())
        self.counts[variant_id] = VariantCounts(current.views + 1, current.submissions)

    def record_submission(self, variant_id: str) -> None:
        current = self.counts.get(variant_id, VariantCounts())
        self.counts[variant_id] = VariantCounts(current.views, current.submissions + 1)


__all__ = [
    "Variant",
    "VariantCounts",
    "ExperimentResult",
    "Experiment",
    "ExperimentTally",
]
