"""
Tests for the agent execution loop, drafts and action execution.
"""

import pytest

from formflow_runtime import EventType, SubmissionStatus
from formflow_runtime.agent import DraftStatus, PromptBuilder, parse_plan
from formflow_runtime.errors import DraftStateError, NotFoundError, PlanParseError
from formflow_runtime.integrations import InMemoryCrm
from formflow_runtime.submissions import ErrorType, Submission

from _testkit import TENANT, agent_group, make_form, make_plan, metadata

ACTIONS = [
    {"name": "score_lead", "details": {"score": 80, "reason": "budget confirmed"}},
    {"name": "send_message", "details": {"body": "Hi there"}},
    {"name": "create_deal", "details": {"amount": 12000}},
]


def agent_form(trust_level="autonomous", allowed=("score_lead", "create_deal"), **overrides):
    return make_form(flow="agent_sales", trust_level=trust_level, allowed_actions=list(allowed), **overrides)


async def run_one(engine, email="ana@example.com"):
    result = await engine.submit(
        "contact-us",
        {"email": email, "first_name": "Ana", "company_name": "Acme"},
        metadata(),
    )
    await engine.drain()
    return await engine.submissions.get(result.submission_id)


async def events_of(engine, event_type):
    return [e for e in await engine.emitter.store.list() if e.type == event_type]


class FlakyCrm(InMemoryCrm):
    """Fails ``create_deal`` a set number of times before succeeding."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    async def create_deal(self, submission, contact, details):
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("CRM timeout")
        return await super().create_deal(submission, contact, details)


class TestParsePlan:
    def test_fenced_json(self):
        plan = parse_plan('```json\n{"rationale": "ok", "actions": [{"name": "escalate"}]}\n```')
        assert plan.rationale == "ok"
        assert [a.name for a in plan.actions] == ["escalate"]
        assert plan.contact_updates.empty

    def test_contact_updates(self):
        plan = parse_plan(make_plan(tags=["hot"], note="Call back"))
        assert plan.contact_updates.tags_to_add == ("hot",)
        assert plan.contact_updates.note == "Call back"

    @pytest.mark.parametrize(
        "raw",
        [
            "I think we should call them",
            '{"actions": []}',
            '{"rationale": "x", "actions": [{"details": {}}]}',
            '{"rationale": 3, "actions": []}',
        ],
    )
    def test_rejected(self, raw):
        with pytest.raises(PlanParseError):
            parse_plan(raw)


class TestPromptBuilder:
    def test_history_is_bounded(self):
        from formflow_runtime.identity import Contact, Touchpoint

        contact = Contact(tenant_id=TENANT, email="ana@example.com")
        for i in range(8):
            contact = contact.record_submission(Touchpoint(submission_id=f"s{i}", form_id="contact-us"))
        submission = Submission(tenant_id=TENANT, form_id="contact-us", fields={"email": "ana@example.com"})

        request = PromptBuilder(history_touchpoints=3).build(submission, contact, None, agent_form())

        assert '"s7"' in request.user_prompt
        assert '"s4"' not in request.user_prompt
        assert "Allowed actions: create_deal, score_lead" in request.system_prompt
        assert not request.strict

    def test_strict_suffix(self):
        submission = Submission(tenant_id=TENANT, form_id="contact-us")
        request = PromptBuilder().build(submission, None, None, agent_form(), strict=True)
        assert request.strict
        assert "ONLY the JSON" in request.system_prompt


class TestTrustLevels:
    @pytest.mark.asyncio
    async def test_autonomous_executes_allowed_and_blocks_rest(self, make_engine, decision, integrations):
        decision.script = [make_plan(ACTIONS, tags=["hot"], note="Wants a demo")]
        engine = make_engine(forms=[agent_form()], groups=[agent_group()])

        stored = await run_one(engine)

        assert stored.status == SubmissionStatus.PROCESSED
        assert stored.agent_summary == "Qualified lead from a mid-size company"
        assert stored.review_due_at is None
        assert [c.operation for c in integrations.crm.calls] == [
            "log_activity",
            "score_contact",
            "create_deal",
        ]
        assert integrations.notifier.calls_for("send_message") == []

        blocked = await events_of(engine, EventType.AGENT_ACTION_BLOCKED)
        assert [e.data["action"] for e in blocked] == ["send_message"]
        assert blocked[0].data["allowed"] == ["create_deal", "score_lead"]
        completed = await events_of(engine, EventType.AGENT_COMPLETED)
        assert completed[0].data["action_count"] == 2
        assert completed[0].data["blocked"] == ["send_message"]

        contact = await engine.identity.store.get_contact(TENANT, stored.contact_id)
        assert contact.tags == frozenset({"hot"})
        assert contact.notes == ("Wants a demo",)
        await engine.stop()

    @pytest.mark.asyncio
    async def test_execute_with_window_sets_review_due(self, make_engine, decision, clock):
        decision.script = [make_plan(ACTIONS[:1])]
        engine = make_engine(forms=[agent_form("execute_with_window")], groups=[agent_group()])

        stored = await run_one(engine)

        assert stored.status == SubmissionStatus.PROCESSED
        assert stored.review_due_at == clock.now + 3600
        await engine.stop()

    @pytest.mark.asyncio
    async def test_observe_only_executes_nothing(self, make_engine, decision, integrations):
        decision.script = [make_plan(ACTIONS, tags=["hot"], rationale="Looks like a partner enquiry")]
        engine = make_engine(forms=[agent_form("observe_only")], groups=[agent_group()])

        stored = await run_one(engine)

        assert stored.status == SubmissionStatus.PROCESSED
        assert stored.agent_summary == "Looks like a partner enquiry"
        assert [c.operation for c in integrations.crm.calls] == ["log_activity"]
        assert await events_of(engine, EventType.AGENT_ACTION) == []
        summary = integrations.notifier.calls_for("notify_handler")
        assert summary[-1].args["message"] == "Looks like a partner enquiry"
        contact = await engine.identity.store.get_contact(TENANT, stored.contact_id)
        assert contact.tags == frozenset()
        await engine.stop()

    @pytest.mark.asyncio
    async def test_prompt_carries_submission_and_contact(self, make_engine, decision):
        engine = make_engine(forms=[agent_form()], groups=[agent_group()])
        stored = await run_one(engine)

        request = decision.requests[0]
        assert request.tenant_id == TENANT
        assert request.submission_id == stored.submission_id
        assert '"company": "Acme"' in request.user_prompt
        assert "executed immediately without review" in request.system_prompt
        await engine.stop()


class TestDrafts:
    async def _draft(self, engine):
        stored = await run_one(engine)
        drafts = await engine.drafts.store.for_submission(stored.submission_id)
        assert len(drafts) == 1
        return stored, drafts[0]

    @pytest.mark.asyncio
    async def test_draft_waits_for_approval(self, make_engine, decision, integrations):
        decision.script = [make_plan(ACTIONS)]
        engine = make_engine(forms=[agent_form("draft")], groups=[agent_group()])

        stored, draft = await self._draft(engine)

        assert stored.status == SubmissionStatus.PENDING_APPROVAL
        assert draft.status == DraftStatus.PENDING
        assert [a.name for a in draft.actions] == ["score_lead", "create_deal"]
        assert [c.operation for c in integrations.crm.calls] == ["log_activity"]
        assert len(await events_of(engine, EventType.AGENT_DRAFT)) == 1
        await engine.stop()

    @pytest.mark.asyncio
    async def test_approve_executes_once(self, make_engine, decision, integrations, clock):
        decision.script = [make_plan(ACTIONS, tags=["hot"])]
        engine = make_engine(forms=[agent_form("draft")], groups=[agent_group()])
        stored, draft = await self._draft(engine)

        approved = await engine.approve_draft(TENANT, draft.draft_id, "maria")

        assert approved.status == DraftStatus.APPROVED
        assert approved.decided_by == "maria"
        assert approved.decided_at == clock.now
        after = await engine.submissions.get(stored.submission_id)
        assert after.status == SubmissionStatus.PROCESSED
        assert [c.operation for c in integrations.crm.calls] == [
            "log_activity",
            "score_contact",
            "create_deal",
        ]
        contact = await engine.identity.store.get_contact(TENANT, stored.contact_id)
        assert contact.tags == frozenset({"hot"})

        with pytest.raises(DraftStateError):
            await engine.approve_draft(TENANT, draft.draft_id, "maria")
        with pytest.raises(DraftStateError):
            await engine.reject_draft(TENANT, draft.draft_id, "maria")
        assert len(integrations.crm.calls) == 3
        approvals = await events_of(engine, EventType.HUMAN_APPROVED)
        assert len(approvals) == 1
        assert approvals[0].data["action_count"] == 2
        await engine.stop()

    @pytest.mark.asyncio
    async def test_reject_executes_nothing(self, make_engine, decision, integrations):
        decision.script = [make_plan(ACTIONS)]
        engine = make_engine(forms=[agent_form("draft")], groups=[agent_group()])
        stored, draft = await self._draft(engine)

        rejected = await engine.reject_draft(TENANT, draft.draft_id, "maria", "Not a fit")

        assert rejected.status == DraftStatus.REJECTED
        assert rejected.decision_note == "Not a fit"
        assert (await engine.submissions.get(stored.submission_id)).status == SubmissionStatus.PROCESSED
        assert [c.operation for c in integrations.crm.calls] == ["log_activity"]
        rejections = await events_of(engine, EventType.HUMAN_REJECTED)
        assert rejections[0].data == {"draft_id": draft.draft_id, "actor": "maria", "reason": "Not a fit"}
        await engine.stop()

    @pytest.mark.asyncio
    async def test_other_tenant_cannot_see_draft(self, make_engine, decision):
        engine = make_engine(forms=[agent_form("draft")], groups=[agent_group()])
        _, draft = await self._draft(engine)
        with pytest.raises(NotFoundError):
            await engine.approve_draft("t-other", draft.draft_id, "mallory")
        with pytest.raises(NotFoundError):
            await engine.approve_draft(TENANT, "missing", "maria")
        await engine.stop()


class TestUnparsablePlans:
    @pytest.mark.asyncio
    async def test_two_bad_answers_need_review(self, make_engine, decision, integrations):
        decision.script = ["Sure! I'd call them tomorrow."]
        engine = make_engine(forms=[agent_form()], groups=[agent_group()])

        stored = await run_one(engine)

        assert stored.status == SubmissionStatus.NEEDS_HUMAN_REVIEW
        assert [r.strict for r in decision.requests] == [False, True]
        assert [e.error_type for e in stored.errors] == [ErrorType.UNPARSABLE_PLAN]
        assert stored.errors[0].resolution == "needs_human_review"
        assert [c.operation for c in integrations.crm.calls] == ["log_activity"]
        errors = await events_of(engine, EventType.AGENT_ERROR)
        assert errors[-1].data["error_type"] == "unparsable_plan"
        await engine.stop()

    @pytest.mark.asyncio
    async def test_strict_retry_recovers(self, make_engine, decision):
        decision.script = ["not json", make_plan(ACTIONS[:1])]
        engine = make_engine(forms=[agent_form()], groups=[agent_group()])

        stored = await run_one(engine)

        assert stored.status == SubmissionStatus.PROCESSED
        assert len(decision.requests) == 2
        assert decision.requests[1].strict
        assert stored.errors == ()
        await engine.stop()


class TestActionRetries:
    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, make_engine, decision, integrations):
        integrations.crm = FlakyCrm(failures=1)
        decision.script = [make_plan(ACTIONS[2:])]
        engine = make_engine(forms=[agent_form()], groups=[agent_group()])

        stored = await run_one(engine)

        actions = await events_of(engine, EventType.AGENT_ACTION)
        assert actions[0].data["success"] is True
        assert actions[0].data["attempts"] == 2
        assert stored.errors == ()
        await engine.stop()

    @pytest.mark.asyncio
    async def test_persistent_failure_recorded_and_loop_continues(self, make_engine, decision, integrations):
        integrations.crm = FlakyCrm(failures=10)
        decision.script = [make_plan([ACTIONS[2], ACTIONS[0]])]
        engine = make_engine(forms=[agent_form()], groups=[agent_group()])

        stored = await run_one(engine)

        assert stored.status == SubmissionStatus.PROCESSED
        assert len(stored.errors) == 1
        error = stored.errors[0]
        assert error.error_type == ErrorType.ACTION_FAILED
        assert error.attempt == 2
        assert error.resolution == "continued"
        assert "CRM timeout" in error.detail
        assert integrations.crm.calls_for("score_contact")
        completed = await events_of(engine, EventType.AGENT_COMPLETED)
        assert completed[0].data["action_count"] == 2
        await engine.stop()

    @pytest.mark.asyncio
    async def test_retries_configurable(self, make_engine, decision, integrations):
        integrations.crm = FlakyCrm(failures=2)
        decision.script = [make_plan(ACTIONS[2:])]
        engine = make_engine(forms=[agent_form()], groups=[agent_group()], action_retries=2)

        await run_one(engine)

        actions = await events_of(engine, EventType.AGENT_ACTION)
        assert actions[0].data["attempts"] == 3
        assert actions[0].data["success"] is True
        await engine.stop()
