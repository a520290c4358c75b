"""
Formflow Runtime - execution engine for inbound form submissions.

A submission passes through a fixed pipeline:
- Intake gate: form lookup, origin check, validation, abuse screening
- Identity resolution against the tenant's contact and company memory
- Routing to a handler group and a deterministic or agent-guided flow
- For agent-guided flows, a decision loop that proposes and executes a
  bounded set of actions under the form's trust level
- Recovery: retry with backoff, escalation, stale-work sweeping

Every transition is recorded as an immutable PipelineEvent.

Example:
    ```python
    from formflow_runtime import SubmissionEngine, ClientMetadata

    engine = SubmissionEngine(decision=my_decision_service)
    await engine.register_form(form_config)
    await engine.start()

    result = await engine.submit(
        "contact-us",
        {"email": "ana@example.com", "message": "Hi"},
        ClientMetadata(ip="203.0.113.7", origin="https://example.com"),
    )
    print(result.to_response())
    ```

PostgreSQL storage lives in ``formflow_runtime.storage`` and is imported
on demand. Environment variables are read from the nearest ``.env`` on
import, before ``Settings`` captures its defaults.
"""

from dotenv import find_dotenv, load_dotenv

_ = load_dotenv(find_dotenv(usecwd=True))

from .errors import (
    ErrorCode,
    FormflowError,
    IntakeRejection,
    FormNotFoundError,
    OriginForbiddenError,
    InvalidSubmissionError,
    RateLimitedError,
    DuplicateSubmissionError,
    FormConfigError,
    GroupConfigError,
    DecisionServiceError,
    DecisionTimeoutError,
    PlanParseError,
    NotFoundError,
    InvalidTransitionError,
    DraftStateError,
    StaleWriteError,
)
from .settings import Settings, get_settings
from .logging import configure_logging, get_logger
from .events import (
    EventType,
    PipelineEvent,
    EventBus,
    InMemoryEventBus,
    EventSubscription,
    EventFilter,
    EventStore,
    InMemoryEventStore,
    EventEmitter,
)
from .forms import (
    ActionName,
    FieldSpec,
    FieldType,
    FlowId,
    FormDefinition,
    TrustLevel,
    Experiment,
    ExperimentResult,
    Variant,
    FormStore,
    InMemoryFormStore,
    validate_fields,
)
from .submissions import (
    ClientMetadata,
    ErrorRecord,
    ErrorType,
    StepLogEntry,
    StepOutcome,
    Submission,
    SubmissionStatus,
    SubmissionStore,
    InMemorySubmissionStore,
)
from .identity import Company, Contact, IdentityResolver, IdentityStore, InMemoryIdentityStore
from .routing import (
    HandlerGroup,
    HandlerMember,
    HandlerRef,
    HandlerRouter,
    RouteResult,
    RoutingStore,
    InMemoryRoutingStore,
)
from .intake import AbuseReason, IntakeGate, IntakeResult
from .flows import FLOWS, FlowDispatcher, FlowOutcome
from .integrations import CrmGateway, Integrations, Notifier, SequenceEnroller
from .agent import (
    AgentExecutionLoop,
    AgentOutcome,
    DecisionRequest,
    DecisionService,
    Draft,
    DraftStatus,
    Plan,
)
from .recovery import RecoveryManager, RetryPolicy, StaleWorkSweeper
from .workers import WorkerPool
from .engine import SubmissionEngine

__version__ = "0.1.0"

__all__ = [
    # Errors
    "ErrorCode",
    "FormflowError",
    "IntakeRejection",
    "FormNotFoundError",
    "OriginForbiddenError",
    "InvalidSubmissionError",
    "RateLimitedError",
    "DuplicateSubmissionError",
    "FormConfigError",
    "GroupConfigError",
    "DecisionServiceError",
    "DecisionTimeoutError",
    "PlanParseError",
    "NotFoundError",
    "InvalidTransitionError",
    "DraftStateError",
    "StaleWriteError",
    # Config / logging
    "Settings",
    "get_settings",
    "configure_logging",
    "get_logger",
    # Events
    "EventType",
    "PipelineEvent",
    "EventBus",
    "InMemoryEventBus",
    "EventSubscription",
    "EventFilter",
    "EventStore",
    "InMemoryEventStore",
    "EventEmitter",
    # Forms
    "ActionName",
    "FieldSpec",
    "FieldType",
    "FlowId",
    "FormDefinition",
    "TrustLevel",
    "Experiment",
    "ExperimentResult",
    "Variant",
    "FormStore",
    "InMemoryFormStore",
    "validate_fields",
    # Submissions
    "ClientMetadata",
    "ErrorRecord",
    "ErrorType",
    "StepLogEntry",
    "StepOutcome",
    "Submission",
    "SubmissionStatus",
    "SubmissionStore",
    "InMemorySubmissionStore",
    # Identity
    "Company",
    "Contact",
    "IdentityResolver",
    "IdentityStore",
    "InMemoryIdentityStore",
    # Routing
    "HandlerGroup",
    "HandlerMember",
    "HandlerRef",
    "HandlerRouter",
    "RouteResult",
    "RoutingStore",
    "InMemoryRoutingStore",
    # Intake / flows
    "AbuseReason",
    "IntakeGate",
    "IntakeResult",
    "FLOWS",
    "FlowDispatcher",
    "FlowOutcome",
    # Integrations
    "CrmGateway",
    "Integrations",
    "Notifier",
    "SequenceEnroller",
    # Agent
    "AgentExecutionLoop",
    "AgentOutcome",
    "DecisionRequest",
    "DecisionService",
    "Draft",
    "DraftStatus",
    "Plan",
    # Recovery / execution
    "RecoveryManager",
    "RetryPolicy",
    "StaleWorkSweeper",
    "WorkerPool",
    "SubmissionEngine",
]
