"""
Shared fixtures for formflow tests. Builders live in ``_testkit``.
"""

from __future__ import annotations

import random
from dataclasses import replace
from typing import Any

import pytest

from formflow_runtime import (
    FormDefinition,
    HandlerGroup,
    InMemoryFormStore,
    InMemoryRoutingStore,
    Integrations,
    Settings,
    SubmissionEngine,
)

from _testkit import FakeClock, RecordingSleep, ScriptedDecisionService, make_form, make_group, make_plan


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def decision() -> ScriptedDecisionService:
    return ScriptedDecisionService(make_plan())


@pytest.fixture
def integrations() -> Integrations:
    return Integrations()


@pytest.fixture
def make_engine(clock, sleep, decision, integrations):
    """Factory: ``make_engine(forms=[...], groups=[...], **settings)``."""

    def factory(
        forms: list[FormDefinition] | None = None,
        groups: list[HandlerGroup] | None = None,
        **settings: Any,
    ) -> SubmissionEngine:
        base = Settings(
            worker_concurrency=4,
            per_tenant_concurrency=2,
            decision_attempts=3,
            decision_backoff_seconds=(2.0, 4.0, 8.0),
            action_retries=1,
            review_window_seconds=3600,
            stale_after_seconds=900,
        )
        return SubmissionEngine(
            settings=replace(base, **settings),
            forms=InMemoryFormStore(forms if forms is not None else [make_form()]),
            routing_store=InMemoryRoutingStore(groups if groups is not None else [make_group()]),
            integrations=integrations,
            decision=decision,
            clock=clock,
            sleep=sleep,
            rng=random.Random(7),
        )

    return factory
