from __future__ import annotations

import ipaddress
from functools import lru_cache
from typing import Any, AsyncIterator

import uvicorn
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from formflow_runtime import (
    ClientMetadata,
    DraftStateError,
    FormflowError,
    IntakeRejection,
    InvalidTransitionError,
    NotFoundError,
    StaleWriteError,
    SubmissionEngine,
    configure_logging,
    get_settings,
)

from .container import EngineContainer, build_engine


class SubmissionRequest(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    variant_id: str | None = None
    utm: dict[str, str] = Field(default_factory=dict)
    telemetry: dict[str, Any] = Field(default_factory=dict)


class SubmissionResponse(BaseModel):
    submission_id: str
    message: str
    redirect_url: str | None = None


class DraftDecisionRequest(BaseModel):
    actor: str = Field(..., min_length=1)
    reason: str | None = None


class OverrideRequest(BaseModel):
    actor: str = Field(..., min_length=1)
    note: str | None = None


@lru_cache(maxsize=8)
def _networks(trusted_proxies: tuple[str, ...]) -> tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]:
    return tuple(ipaddress.ip_network(entry, strict=False) for entry in trusted_proxies)


def _is_trusted(address: str | None, trusted_proxies: tuple[str, ...]) -> bool:
    if not address or not trusted_proxies:
        return False
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return any(ip in network for network in _networks(trusted_proxies))


def _client_ip(request: Request, trusted_proxies: tuple[str, ...] = ()) -> str | None:
    """The submitter's address as far as we can vouch for it.

    X-Forwarded-For is only read when the direct peer is a trusted proxy,
    and then from the right: the first hop that is not a trusted proxy is
    the client. Entries to its left are whatever the client sent.
    """
    peer = request.client.host if request.client else None
    if not _is_trusted(peer, trusted_proxies):
        return peer
    hops = [hop.strip() for hop in request.headers.get("x-forwarded-for", "").split(",") if hop.strip()]
    for hop in reversed(hops):
        if not _is_trusted(hop, trusted_proxies):
            return hop
    return hops[0] if hops else peer


def _error_body(exc: FormflowError) -> dict[str, Any]:
    return {"error": exc.code.value, "message": exc.message, "details": exc.details}


def create_app(engine: SubmissionEngine | None = None) -> FastAPI:
    """Build the HTTP surface.

    With ``engine`` given (tests, embedding) the app uses it as is;
    otherwise one is built from settings on startup.
    """
    app = FastAPI(title="Formflow", version="0.1.0")

    @app.on_event("startup")
    async def _startup() -> None:
        settings = get_settings()
        configure_logging(settings.log_level, json_output=settings.log_json)
        if engine is not None:
            app.state.container = EngineContainer(engine=engine)
        else:
            app.state.container = await build_engine(settings)
        await app.state.container.engine.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        container: EngineContainer | None = getattr(app.state, "container", None)
        if container is not None:
            await container.close()

    def _engine() -> SubmissionEngine:
        return app.state.container.engine

    @app.exception_handler(IntakeRejection)
    async def _intake_rejection(request: Request, exc: IntakeRejection) -> JSONResponse:
        return JSONResponse(status_code=exc.http_status, content=_error_body(exc))

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content=_error_body(exc))

    @app.exception_handler(DraftStateError)
    @app.exception_handler(InvalidTransitionError)
    @app.exception_handler(StaleWriteError)
    async def _conflict(request: Request, exc: FormflowError) -> JSONResponse:
        return JSONResponse(status_code=409, content=_error_body(exc))

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"ok": "true"}

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    @app.get("/v1/forms/{form_id}/schema")
    async def form_schema(form_id: str, variant_id: str | None = None) -> dict[str, Any]:
        schema = await _engine().fetch_schema(form_id, variant_id)
        return schema.to_dict()

    @app.post("/v1/forms/{form_id}/submissions", response_model=SubmissionResponse)
    async def submit(form_id: str, req: SubmissionRequest, request: Request) -> SubmissionResponse:
        metadata = ClientMetadata(
            ip=_client_ip(request, _engine().settings.trusted_proxies),
            user_agent=request.headers.get("user-agent"),
            referrer=request.headers.get("referer"),
            origin=request.headers.get("origin"),
            utm_source=req.utm.get("source"),
            utm_medium=req.utm.get("medium"),
            utm_campaign=req.utm.get("campaign"),
            utm_term=req.utm.get("term"),
            utm_content=req.utm.get("content"),
            variant_id=req.variant_id,
        )
        result = await _engine().submit(form_id, req.data, metadata, req.telemetry)
        return SubmissionResponse(**result.to_response())

    # ------------------------------------------------------------------
    # Tenant-scoped (X-Tenant-Id is set by the upstream gateway)
    # ------------------------------------------------------------------

    @app.get("/v1/events")
    async def events(
        submission_id: str | None = None,
        x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    ) -> StreamingResponse:
        bus = _engine().emitter.bus
        if bus is None:
            raise NotFoundError("Live events are not enabled")
        subscription = bus.subscribe(tenant_id=x_tenant_id, submission_id=submission_id)

        async def gen() -> AsyncIterator[str]:
            try:
                async for event in bus.events(subscription):
                    yield event.to_sse()
            finally:
                bus.unsubscribe(subscription)

        return StreamingResponse(gen(), media_type="text/event-stream")

    @app.get("/v1/submissions/unassigned")
    async def unassigned(
        limit: int = 100,
        x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    ) -> dict[str, Any]:
        items = await _engine().unassigned(x_tenant_id, limit)
        return {"submissions": [s.to_dict() for s in items]}

    @app.get("/v1/submissions/{submission_id}")
    async def get_submission(
        submission_id: str,
        x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    ) -> dict[str, Any]:
        submission = await _engine().get_submission(x_tenant_id, submission_id)
        return submission.to_dict()

    @app.post("/v1/submissions/{submission_id}/override")
    async def override(
        submission_id: str,
        req: OverrideRequest,
        x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    ) -> dict[str, Any]:
        submission = await _engine().override(x_tenant_id, submission_id, req.actor, req.note)
        return submission.to_dict()

    @app.post("/v1/drafts/{draft_id}/approve")
    async def approve_draft(
        draft_id: str,
        req: DraftDecisionRequest,
        x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    ) -> dict[str, Any]:
        draft = await _engine().approve_draft(x_tenant_id, draft_id, req.actor)
        return draft.to_dict()

    @app.post("/v1/drafts/{draft_id}/reject")
    async def reject_draft(
        draft_id: str,
        req: DraftDecisionRequest,
        x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    ) -> dict[str, Any]:
        draft = await _engine().reject_draft(x_tenant_id, draft_id, req.actor, req.reason)
        return draft.to_dict()

    @app.get("/v1/forms/{form_id}/experiment")
    async def experiment(
        form_id: str,
        x_tenant_id: str = Header(..., alias="X-Tenant-Id"),
    ) -> dict[str, Any]:
        result = await _engine().experiment_result(x_tenant_id, form_id)
        return result.to_dict()

    return app


app = create_app()


def main() -> None:
    """Run the API server."""
    settings = get_settings()
    uvicorn.run(
        "formflow_api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )


__all__ = ["app", "create_app", "main"]


if __name__ == "__main__":
    main()
