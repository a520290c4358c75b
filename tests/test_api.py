"""
HTTP surface tests. The engine is injected and the container set by hand,
so app and engine share the test's event loop.
"""

import json

import httpx
import pytest

from formflow_api import EngineContainer, create_app, load_config
from formflow_runtime.errors import DecisionServiceError, FormConfigError

from _testkit import TENANT, agent_group, make_form, make_group, make_plan

LEAD = {"email": "ana@example.com", "first_name": "Ana"}
HEADERS = {"X-Tenant-Id": TENANT}


def client_for(engine) -> httpx.AsyncClient:
    app = create_app(engine)
    app.state.container = EngineContainer(engine=engine)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://formflow.test")


class TestPublicEndpoints:
    @pytest.mark.asyncio
    async def test_healthz(self, make_engine):
        async with client_for(make_engine()) as client:
            resp = await client.get("/healthz")
        assert resp.json() == {"ok": "true"}

    @pytest.mark.asyncio
    async def test_schema(self, make_engine):
        async with client_for(make_engine()) as client:
            resp = await client.get("/v1/forms/contact-us/schema")
            missing = await client.get("/v1/forms/nope/schema")

        assert resp.status_code == 200
        body = resp.json()
        assert [f["name"] for f in body["fields"]] == ["email", "first_name", "company_name", "message"]
        assert body["honeypot_field"] == "_hp"
        assert missing.status_code == 404
        assert missing.json()["error"] == "ERR_1000"

    @pytest.mark.asyncio
    async def test_submit_captures_metadata(self, make_engine):
        engine = make_engine(trusted_proxies=("127.0.0.1", "10.0.0.0/8"))
        async with client_for(engine) as client:
            resp = await client.post(
                "/v1/forms/contact-us/submissions",
                json={"data": LEAD, "utm": {"source": "ads", "campaign": "spring"}, "telemetry": {"ms": 900}},
                headers={
                    "X-Forwarded-For": "203.0.113.9, 10.0.0.1",
                    "User-Agent": "pytest",
                    "Referer": "https://acme.test/pricing",
                },
            )
            assert resp.status_code == 200
            body = resp.json()
            assert body["message"] == "Thanks! We received your submission."

            await engine.drain()
            detail = await client.get(f"/v1/submissions/{body['submission_id']}", headers=HEADERS)

        stored = detail.json()
        assert stored["status"] == "processed"
        assert stored["metadata"]["ip"] == "203.0.113.9"
        assert stored["metadata"]["user_agent"] == "pytest"
        assert stored["metadata"]["referrer"] == "https://acme.test/pricing"
        assert stored["metadata"]["utm_source"] == "ads"
        assert stored["metadata"]["utm_campaign"] == "spring"
        assert stored["telemetry"] == {"ms": 900}
        await engine.stop()

    @pytest.mark.asyncio
    async def test_rejections_map_to_statuses(self, make_engine):
        engine = make_engine(forms=[make_form(max_submissions_per_ip=1, allowed_origins=["acme.test"])])
        url = "/v1/forms/contact-us/submissions"
        origin = {"Origin": "https://acme.test"}
        async with client_for(engine) as client:
            invalid = await client.post(url, json={"data": {"email": "nope"}}, headers=origin)
            forbidden = await client.post(url, json={"data": LEAD}, headers={"Origin": "https://evil.test"})
            first = await client.post(url, json={"data": LEAD}, headers=origin)
            limited = await client.post(url, json={"data": {"email": "bo@example.com"}}, headers=origin)

        assert invalid.status_code == 422
        assert invalid.json()["error"] == "ERR_1002"
        assert invalid.json()["details"]["field_errors"] == {"email": "invalid email address"}
        assert forbidden.status_code == 403
        assert first.status_code == 200
        assert limited.status_code == 429
        assert limited.json()["error"] == "ERR_2000"
        await engine.stop()

    @pytest.mark.asyncio
    async def test_forwarded_for_ignored_without_trusted_proxy(self, make_engine):
        engine = make_engine(forms=[make_form(max_submissions_per_ip=1)])
        url = "/v1/forms/contact-us/submissions"
        async with client_for(engine) as client:
            statuses = [
                (
                    await client.post(
                        url,
                        json={"data": {"email": f"lead{i}@example.com"}},
                        headers={"X-Forwarded-For": f"203.0.113.{i}"},
                    )
                ).status_code
                for i in range(3)
            ]

        assert statuses == [200, 429, 429]
        entries = await engine.abuse_log.list()
        assert {e.ip for e in entries} == {"127.0.0.1"}
        await engine.stop()

    @pytest.mark.asyncio
    async def test_forwarded_for_read_from_the_right(self, make_engine):
        engine = make_engine(forms=[make_form(max_submissions_per_ip=1)], trusted_proxies=("127.0.0.1",))
        url = "/v1/forms/contact-us/submissions"
        async with client_for(engine) as client:
            first = await client.post(
                url,
                json={"data": {"email": "ana@example.com"}},
                headers={"X-Forwarded-For": "203.0.113.0, 198.51.100.20"},
            )
            spoofed = await client.post(
                url,
                json={"data": {"email": "bo@example.com"}},
                headers={"X-Forwarded-For": "203.0.113.1, 198.51.100.20"},
            )
            await engine.drain()
            detail = await client.get(f"/v1/submissions/{first.json()['submission_id']}", headers=HEADERS)

        assert first.status_code == 200
        assert spoofed.status_code == 429
        assert detail.json()["metadata"]["ip"] == "198.51.100.20"
        await engine.stop()

    @pytest.mark.asyncio
    async def test_honeypot_looks_accepted(self, make_engine):
        engine = make_engine()
        async with client_for(engine) as client:
            resp = await client.post(
                "/v1/forms/contact-us/submissions",
                json={"data": {**LEAD, "_hp": "http://spam.test"}},
            )
            detail = await client.get(f"/v1/submissions/{resp.json()['submission_id']}", headers=HEADERS)

        assert resp.status_code == 200
        assert detail.status_code == 404


class TestOperatorEndpoints:
    @pytest.mark.asyncio
    async def test_tenant_header_required(self, make_engine):
        async with client_for(make_engine()) as client:
            resp = await client.get("/v1/submissions/unassigned")
            events = await client.get("/v1/events")
        assert resp.status_code == 422
        assert events.status_code == 422

    @pytest.mark.asyncio
    async def test_submission_scoped_to_tenant(self, make_engine):
        engine = make_engine()
        async with client_for(engine) as client:
            created = await client.post("/v1/forms/contact-us/submissions", json={"data": LEAD})
            sid = created.json()["submission_id"]
            mine = await client.get(f"/v1/submissions/{sid}", headers=HEADERS)
            theirs = await client.get(f"/v1/submissions/{sid}", headers={"X-Tenant-Id": "t-other"})

        assert mine.status_code == 200
        assert theirs.status_code == 404
        assert theirs.json()["error"] == "ERR_5000"
        await engine.stop()

    @pytest.mark.asyncio
    async def test_unassigned_queue(self, make_engine):
        engine = make_engine(groups=[make_group(members=[])])
        async with client_for(engine) as client:
            await client.post("/v1/forms/contact-us/submissions", json={"data": LEAD})
            await engine.drain()
            resp = await client.get("/v1/submissions/unassigned", headers=HEADERS)

        items = resp.json()["submissions"]
        assert len(items) == 1
        assert items[0]["status"] == "received"
        await engine.stop()

    @pytest.mark.asyncio
    async def test_draft_approval_flow(self, make_engine, decision):
        decision.script = [make_plan([{"name": "score_lead", "details": {"score": 70}}])]
        form = make_form(flow="agent_sales", trust_level="draft", allowed_actions=["score_lead"])
        engine = make_engine(forms=[form], groups=[agent_group()])

        async with client_for(engine) as client:
            created = await client.post("/v1/forms/contact-us/submissions", json={"data": LEAD})
            await engine.drain()
            sid = created.json()["submission_id"]
            draft = (await engine.drafts.store.for_submission(sid))[0]

            approved = await client.post(f"/v1/drafts/{draft.draft_id}/approve", json={"actor": "maria"}, headers=HEADERS)
            again = await client.post(f"/v1/drafts/{draft.draft_id}/reject", json={"actor": "maria"}, headers=HEADERS)
            no_actor = await client.post(f"/v1/drafts/{draft.draft_id}/approve", json={"actor": ""}, headers=HEADERS)
            detail = await client.get(f"/v1/submissions/{sid}", headers=HEADERS)

        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"
        assert again.status_code == 409
        assert again.json()["error"] == "ERR_5002"
        assert no_actor.status_code == 422
        assert detail.json()["status"] == "processed"
        await engine.stop()

    @pytest.mark.asyncio
    async def test_override(self, make_engine, decision):
        decision.script = [DecisionServiceError("down")]
        form = make_form(flow="agent_sales", trust_level="autonomous")
        engine = make_engine(forms=[form], groups=[agent_group()])

        async with client_for(engine) as client:
            created = await client.post("/v1/forms/contact-us/submissions", json={"data": LEAD})
            await engine.drain()
            sid = created.json()["submission_id"]
            url = f"/v1/submissions/{sid}/override"
            closed = await client.post(url, json={"actor": "maria", "note": "handled"}, headers=HEADERS)
            twice = await client.post(url, json={"actor": "maria"}, headers=HEADERS)

        assert closed.status_code == 200
        assert closed.json()["status"] == "processed"
        assert twice.status_code == 409
        assert twice.json()["error"] == "ERR_5001"
        await engine.stop()

    @pytest.mark.asyncio
    async def test_experiment(self, make_engine):
        experiment = {"experiment_id": "exp-1", "variants": [{"variant_id": "a"}, {"variant_id": "b"}]}
        engine = make_engine(forms=[make_form(experiment=experiment), make_form(form_id="plain")])

        async with client_for(engine) as client:
            found = await client.get("/v1/forms/contact-us/experiment", headers=HEADERS)
            other_tenant = await client.get("/v1/forms/contact-us/experiment", headers={"X-Tenant-Id": "t-other"})
            none = await client.get("/v1/forms/plain/experiment", headers=HEADERS)

        assert found.status_code == 200
        assert found.json()["status"] == "waiting"
        assert other_tenant.status_code == 404
        assert none.status_code == 404


class TestLoadConfig:
    def test_loads_forms_and_groups(self, tmp_path):
        path = tmp_path / "formflow.json"
        path.write_text(
            json.dumps(
                {
                    "forms": [make_form().to_dict()],
                    "groups": [agent_group().to_dict()],
                }
            ),
            encoding="utf-8",
        )
        forms, groups = load_config(path)
        assert [f.form_id for f in forms] == ["contact-us"]
        assert groups[0].members[0].ref.is_agent

    def test_bad_form_rejected_at_load(self, tmp_path):
        path = tmp_path / "formflow.json"
        path.write_text(json.dumps({"forms": [{"form_id": "x", "tenant_id": "t", "trust_level": "yolo"}]}))
        with pytest.raises(FormConfigError):
            load_config(path)
