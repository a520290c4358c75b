"""
Prompt assembly for the decision service.

The prompt is bounded: only the most recent touchpoints of a contact are
included, never the whole history.
"""

from __future__ import annotations

import json

from ..forms.types import FormDefinition, TrustLevel
from ..identity.types import Company, Contact
from ..submissions.types import Submission
from .decision import DecisionRequest

TRUST_INSTRUCTIONS: dict[TrustLevel, str] = {
    TrustLevel.OBSERVE_ONLY: (
        "You are observing only. Nothing you propose will be executed; "
        "your rationale becomes a summary for the human handler."
    ),
    TrustLevel.DRAFT: (
        "Your plan will be saved as a draft. A human approves or rejects it "
        "before anything is executed."
    ),
    TrustLevel.EXECUTE_WITH_WINDOW: (
        "Your actions are executed immediately and reviewed by a human "
        "shortly afterwards. Propose only actions you are confident in."
    ),
    TrustLevel.AUTONOMOUS: (
        "Your actions are executed immediately without review."
    ),
}

RESPONSE_FORMAT = (
    "Respond with a JSON object with keys: "
    '"rationale" (string), '
    '"actions" (array of {"name": string, "details": object}), '
    'and optionally "contactUpdates" ({"tagsToAdd": [string], "note": string}).'
)

STRICT_SUFFIX = (
    "Your previous answer could not be parsed. Reply with ONLY the JSON "
    "object, no prose and no code fences."
)


class PromptBuilder:
    def __init__(self, history_touchpoints: int = 5) -> None:
        self.history_touchpoints = history_touchpoints

    def build(
        self,
        submission: Submission,
        contact: Contact | None,
        company: Company | None,
        form: FormDefinition,
        *,
        strict: bool = False,
    ) -> DecisionRequest:
        allowed = sorted(a.value for a in form.allowed_actions)
        system = "\n\n".join(
            part
            for part in (
                f"You handle inbound submissions for the form {form.name or form.form_id!r}.",
                f"Form purpose: {form.purpose}" if form.purpose else "",
                TRUST_INSTRUCTIONS[form.trust_level],
                "Allowed actions: " + (", ".join(allowed) if allowed else "none"),
                RESPONSE_FORMAT,
                STRICT_SUFFIX if strict else "",
            )
            if part
        )

        context: dict = {
            "submission": {
                "submission_id": submission.submission_id,
                "fields": submission.fields,
                "campaign": submission.metadata.campaign,
                "referrer": submission.metadata.referrer,
            },
            "contact": None,
            "company": company.name if company else None,
        }
        if contact is not None:
            context["contact"] = {
                "name": contact.display_name,
                "email": contact.email,
                "job_title": contact.job_title,
                "tags": sorted(contact.tags),
                "submission_count": contact.submission_count,
                "recent_touchpoints": [
                    t.to_dict() for t in contact.recent_touchpoints(self.history_touchpoints)
                ],
            }

        return DecisionRequest(
            tenant_id=submission.tenant_id,
            submission_id=submission.submission_id,
            system_prompt=system,
            user_prompt=json.dumps(context, default=str, indent=2),
            strict=strict,
        )


__all__ = [
    "TRUST_INSTRUCTIONS",
    "PromptBuilder",
]
