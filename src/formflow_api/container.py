from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from formflow_runtime import (
    FormDefinition,
    HandlerGroup,
    InMemoryEventStore,
    InMemoryFormStore,
    InMemoryRoutingStore,
    Settings,
    SubmissionEngine,
)
from formflow_runtime.agent.openai_decision import OpenAIDecisionService
from formflow_runtime.storage import PostgresEventStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineContainer:
    engine: SubmissionEngine
    decision: OpenAIDecisionService | None = None
    event_store: PostgresEventStore | None = None

    async def close(self) -> None:
        await self.engine.stop()
        if self.decision is not None:
            await self.decision.close()
        if self.event_store is not None:
            await self.event_store.close()


def load_config(path: str | Path) -> tuple[list[FormDefinition], list[HandlerGroup]]:
    """Read forms and handler groups from a JSON file.

    Invalid definitions raise FormConfigError / GroupConfigError here, at
    load time, never while a submission runs.
    """
    raw: dict[str, Any] = json.loads(Path(path).read_text(encoding="utf-8"))
    forms = [FormDefinition.from_dict(item) for item in raw.get("forms", [])]
    groups = [HandlerGroup.from_dict(item) for item in raw.get("groups", [])]
    return forms, groups


def _build_decision(settings: Settings) -> OpenAIDecisionService | None:
    if not settings.openai_api_key:
        logger.warning("No OpenAI API key configured; agent-guided submissions will be escalated")
        return None
    return OpenAIDecisionService(
        settings.openai_model,
        timeout=settings.decision_timeout_ms / 1000.0,
        api_key=settings.openai_api_key,
    )


async def build_engine(settings: Settings) -> EngineContainer:
    forms: list[FormDefinition] = []
    groups: list[HandlerGroup] = []
    if settings.config_path:
        forms, groups = load_config(settings.config_path)
        logger.info("Loaded %d form(s) and %d handler group(s) from %s", len(forms), len(groups), settings.config_path)

    event_store: PostgresEventStore | None = None
    if settings.pg_dsn:
        event_store = await PostgresEventStore.connect(settings.pg_dsn)

    decision = _build_decision(settings)
    engine = SubmissionEngine(
        settings=settings,
        forms=InMemoryFormStore(forms),
        routing_store=InMemoryRoutingStore(groups),
        event_store=event_store or InMemoryEventStore(),
        decision=decision,
    )
    return EngineContainer(engine=engine, decision=decision, event_store=event_store)


__all__ = ["EngineContainer", "build_engine", "load_config"]
