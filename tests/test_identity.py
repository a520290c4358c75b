"""
Tests for contact and company resolution.
"""

import asyncio

import pytest

from formflow_runtime.events import EventEmitter, EventType, InMemoryEventStore
from formflow_runtime.identity import IdentityResolver, InMemoryIdentityStore
from formflow_runtime.locks import KeyedLock
from formflow_runtime.submissions import ClientMetadata, Submission

from _testkit import TENANT, FakeClock, event_types, make_form


def submission(email="ana@example.com", **fields) -> Submission:
    return Submission(
        tenant_id=TENANT,
        form_id="contact-us",
        fields={"email": email, **fields},
        metadata=ClientMetadata(utm_source="ads", referrer="https://search.test"),
        email=email,
    )


@pytest.fixture
def events():
    return InMemoryEventStore()


@pytest.fixture
def resolver(events):
    return IdentityResolver(InMemoryIdentityStore(), EventEmitter(events), clock=FakeClock())


class TestContactResolution:
    @pytest.mark.asyncio
    async def test_new_contact_created(self, resolver, events):
        result = await resolver.resolve(submission(first_name="Ana"), make_form())

        assert result.resolved
        assert result.is_new_contact
        assert result.contact.first_name == "Ana"
        assert result.contact.submission_count == 1
        touchpoint = result.contact.touchpoints[0]
        assert touchpoint.campaign == {"utm_source": "ads"}
        assert touchpoint.referrer == "https://search.test"
        assert event_types(await events.list()) == [EventType.CONTACT_CREATED]

    @pytest.mark.asyncio
    async def test_second_submission_merges_fill_if_empty(self, resolver, events):
        form = make_form()
        first = await resolver.resolve(submission(first_name="Ana"), form)
        second = await resolver.resolve(submission(first_name="Anastasia", company_name="Acme"), form)

        assert not second.is_new_contact
        assert second.contact.contact_id == first.contact.contact_id
        assert second.contact.first_name == "Ana"
        assert second.contact.company_name == "Acme"
        assert second.contact.submission_count == 2
        assert len(second.contact.touchpoints) == 2
        assert len(await resolver.store.list_contacts(TENANT)) == 1
        assert event_types(await events.list()) == [EventType.CONTACT_CREATED, EventType.CONTACT_MATCHED]

    @pytest.mark.asyncio
    async def test_concurrent_submissions_one_contact(self, resolver):
        form = make_form()
        results = await asyncio.gather(*(resolver.resolve(submission(), form) for _ in range(5)))

        assert len({r.contact.contact_id for r in results}) == 1
        contacts = await resolver.store.list_contacts(TENANT)
        assert len(contacts) == 1
        assert contacts[0].submission_count == 5
        assert sum(r.is_new_contact for r in results) == 1

    @pytest.mark.asyncio
    async def test_no_email_is_empty(self, resolver, events):
        result = await resolver.resolve(submission(email=None), make_form())
        assert not result.resolved
        assert await events.list() == []

    @pytest.mark.asyncio
    async def test_contacts_are_tenant_scoped(self, resolver):
        form = make_form()
        await resolver.resolve(submission(), form)
        other = Submission(
            tenant_id="t-other",
            form_id="contact-us",
            fields={"email": "ana@example.com"},
            email="ana@example.com",
        )
        result = await resolver.resolve(other, form)
        assert result.is_new_contact


class TestCompanyResolution:
    @pytest.mark.asyncio
    async def test_company_matched_case_insensitively(self, resolver):
        form = make_form()
        first = await resolver.resolve(submission(company_name="Acme  Corp"), form)
        second = await resolver.resolve(submission(email="bo@acme.test", company_name="acme corp"), form)

        assert first.company.company_id == second.company.company_id
        assert first.company.name == "Acme  Corp"
        assert second.contact.company_id == first.company.company_id

    @pytest.mark.asyncio
    async def test_company_link_is_sticky(self, resolver):
        form = make_form()
        first = await resolver.resolve(submission(company_name="Acme"), form)
        second = await resolver.resolve(submission(company_name="Globex"), form)
        assert second.contact.company_id == first.company.company_id


class TestContactUpdates:
    @pytest.mark.asyncio
    async def test_tags_and_notes(self, resolver):
        result = await resolver.resolve(submission(), make_form())
        contact = await resolver.update_contact(TENANT, result.contact.contact_id, tags=["hot", " "], note="Asked for pricing")
        contact = await resolver.update_contact(TENANT, contact.contact_id, tags=["hot", "enterprise"], note=None)

        assert contact.tags == frozenset({"hot", "enterprise"})
        assert contact.notes == ("Asked for pricing",)

    @pytest.mark.asyncio
    async def test_unknown_contact(self, resolver):
        assert await resolver.update_contact(TENANT, "missing", tags=["x"]) is None


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_locks_released_when_idle(self):
        locks = KeyedLock()
        async with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0
