"""
Tests for form configuration, field validation and experiments.
"""

import random

import pytest

from formflow_runtime.errors import FormConfigError
from formflow_runtime.forms import (
    ActionName,
    Experiment,
    FieldSpec,
    FieldType,
    FlowId,
    TrustLevel,
    VariantCounts,
    apply_variant,
    contact_values,
    resolve_schema,
    resolve_variant,
    validate_fields,
)

from _testkit import make_form

EXPERIMENT = {
    "experiment_id": "exp-1",
    "min_sample_size": 30,
    "variants": [
        {"variant_id": "control", "weight": 1},
        {
            "variant_id": "variant_b",
            "weight": 1,
            "field_overrides": [
                {"name": "message", "type": "textarea", "required": True},
                {"name": "budget", "type": "number", "min_value": 0},
            ],
        },
    ],
}


class TestFormDefinition:
    """Config is rejected at load time, never at submission time."""

    def test_defaults(self):
        form = make_form()
        assert form.flow == FlowId.NOTIFY_ONLY
        assert form.trust_level == TrustLevel.OBSERVE_ONLY
        assert form.get_field("email").type == FieldType.EMAIL
        assert form.get_field("nope") is None

    def test_enums_parsed(self):
        form = make_form(
            flow="agent_sales",
            trust_level="draft",
            allowed_actions=["score_lead", "create_deal"],
        )
        assert form.flow.agent_guided
        assert form.allowed_actions == {ActionName.SCORE_LEAD, ActionName.CREATE_DEAL}

    @pytest.mark.parametrize(
        "overrides",
        [
            {"fields": [{"name": "x", "type": "colour"}]},
            {"trust_level": "yolo"},
            {"allowed_actions": ["launch_rocket"]},
            {"flow": "carrier_pigeon"},
            {"fields": [{"name": "a"}, {"name": "a"}]},
            {"fields": [{"name": "_hp"}]},
            {"fields": [{"name": "plan", "type": "select"}]},
            {"fields": [{"name": "code", "pattern": "("}]},
            {"fields": [{"name": "who", "maps_to": "shoe_size"}]},
            {"max_submissions_per_ip": -1},
            {"experiment": {"experiment_id": "e", "variants": [{"variant_id": "only"}]}},
        ],
    )
    def test_invalid_config_rejected(self, overrides):
        with pytest.raises(FormConfigError):
            make_form(**overrides)

    def test_missing_ids(self):
        from formflow_runtime.forms import FormDefinition

        with pytest.raises(FormConfigError):
            FormDefinition.from_dict({"form_id": "f"})

    def test_round_trip(self):
        from formflow_runtime.forms import FormDefinition

        form = make_form(experiment=EXPERIMENT, allowed_actions=["escalate"])
        again = FormDefinition.from_dict(form.to_dict())
        assert again == form


class TestValidateFields:
    FIELDS = (
        FieldSpec("email", FieldType.EMAIL, required=True),
        FieldSpec("age", FieldType.NUMBER, min_value=18, max_value=120),
        FieldSpec("plan", FieldType.SELECT, options=("basic", "pro")),
        FieldSpec("topics", FieldType.MULTISELECT, options=("a", "b", "c"), max_length=2),
        FieldSpec("code", FieldType.TEXT, pattern=r"[A-Z]{3}"),
        FieldSpec("terms", FieldType.CHECKBOX, required=True),
        FieldSpec("site", FieldType.URL),
        FieldSpec("when", FieldType.DATE),
    )

    def test_clean_values_coerced(self):
        clean, errors = validate_fields(
            self.FIELDS,
            {
                "email": "  Ana@Example.COM ",
                "age": "42",
                "plan": "pro",
                "topics": "a, c",
                "code": "ABC",
                "terms": "on",
                "site": "https://example.com",
                "when": "2024-05-01",
                "extra": "ignored",
            },
        )
        assert errors == {}
        assert clean == {
            "email": "ana@example.com",
            "age": 42,
            "plan": "pro",
            "topics": ["a", "c"],
            "code": "ABC",
            "terms": True,
            "site": "https://example.com",
            "when": "2024-05-01",
        }

    def test_errors_per_field(self):
        _, errors = validate_fields(
            self.FIELDS,
            {
                "email": "not-an-email",
                "age": "12",
                "plan": "enterprise",
                "topics": ["a", "b", "c"],
                "code": "abc",
                "terms": False,
                "site": "ftp://example.com",
                "when": "yesterday",
            },
        )
        assert errors == {
            "email": "invalid email address",
            "age": "must be >= 18",
            "plan": "not one of the allowed options",
            "topics": "select at most 2",
            "code": "does not match the expected format",
            "terms": "required",
            "site": "invalid URL",
            "when": "must be a date (YYYY-MM-DD)",
        }

    def test_missing_required(self):
        _, errors = validate_fields(self.FIELDS, {"terms": True})
        assert errors == {"email": "required"}

    def test_optional_empty_skipped(self):
        clean, errors = validate_fields(self.FIELDS, {"email": "a@b.io", "terms": True, "age": ""})
        assert errors == {}
        assert "age" not in clean

    def test_contact_values_first_field_wins(self):
        fields = (
            FieldSpec("work_email", FieldType.EMAIL),
            FieldSpec("email", FieldType.EMAIL),
            FieldSpec("org", FieldType.TEXT, maps_to="company_name"),
        )
        values = contact_values(fields, {"work_email": "W@x.io", "email": "p@x.io", "org": "Acme"})
        assert values == {"email": "w@x.io", "company_name": "Acme"}


class TestExperiments:
    def test_apply_variant_replaces_and_appends(self):
        form = make_form(experiment=EXPERIMENT)
        variant = form.experiment.get_variant("variant_b")
        merged = apply_variant(form, variant)
        names = [f.name for f in merged.fields]
        assert names == ["email", "first_name", "company_name", "message", "budget"]
        assert merged.get_field("message").required is True
        assert form.get_field("message").required is False

    def test_no_variant_keeps_form(self):
        form = make_form()
        assert apply_variant(form, None) is form

    def test_echoed_variant_wins(self):
        form = make_form(experiment=EXPERIMENT)
        for _ in range(5):
            assert resolve_variant(form, "variant_b", random.Random()).variant_id == "variant_b"

    def test_unknown_echo_draws(self):
        form = make_form(experiment=EXPERIMENT)
        variant = resolve_variant(form, "bogus", random.Random(1))
        assert variant.variant_id in {"control", "variant_b"}

    def test_no_experiment_no_variant(self):
        schema = resolve_schema(make_form(), "variant_b")
        assert schema.variant_id is None
        assert schema.to_dict()["variant_id"] is None

    def test_weights_respected(self):
        experiment = Experiment.from_dict(
            {
                "experiment_id": "e",
                "variants": [
                    {"variant_id": "never", "weight": 0},
                    {"variant_id": "always", "weight": 5},
                ],
            }
        )
        rng = random.Random(3)
        assert {experiment.choose(rng).variant_id for _ in range(50)} == {"always"}

    def test_waiting_until_min_sample(self):
        experiment = make_form(experiment=EXPERIMENT).experiment
        result = experiment.evaluate(
            {
                "control": VariantCounts(views=100, submissions=22),
                "variant_b": VariantCounts(views=90, submissions=18),
            }
        )
        assert result.status == "waiting"
        assert result.winner is None
        assert "control 22/30, variant_b 18/30" in result.message

    def test_optimized_picks_best_rate(self):
        experiment = make_form(experiment=EXPERIMENT).experiment
        result = experiment.evaluate(
            {
                "control": VariantCounts(views=300, submissions=30),
                "variant_b": VariantCounts(views=200, submissions=40),
            }
        )
        assert result.status == "optimized"
        assert result.winner == "variant_b"
        assert result.counts == {"control": 30, "variant_b": 40}
