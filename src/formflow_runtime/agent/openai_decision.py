"""
Decision service backed by the OpenAI chat completions API.
"""

from __future__ import annotations

import asyncio
from typing import Any

import openai
from openai import AsyncOpenAI

from ..errors import DecisionServiceError, DecisionTimeoutError
from .decision import DecisionRequest, DecisionService

_RETRYABLE = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


class OpenAIDecisionService(DecisionService):
    """Asks a chat model for a plan in JSON mode.

    The timeout bounds the whole call; it is the only timeout in the
    pipeline.
    """

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        *,
        timeout: float = 30.0,
        api_key: str | None = None,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
        temperature: float = 0.0,
    ) -> None:
        self.model = model
        self.timeout = timeout
        self.temperature = temperature

        if client is None:
            client_kwargs: dict[str, Any] = {"max_retries": 0}
            if api_key:
                client_kwargs["api_key"] = api_key
            if base_url:
                client_kwargs["base_url"] = base_url
            client = AsyncOpenAI(**client_kwargs)
        self.client = client

    async def decide(self, request: DecisionRequest) -> str:
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=request.messages,
                    response_format={"type": "json_object"},
                    temperature=self.temperature,
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, openai.APITimeoutError) as exc:
            raise DecisionTimeoutError(timeout=self.timeout, cause=exc) from exc
        except _RETRYABLE as exc:
            raise DecisionServiceError(str(exc), retryable=True, cause=exc) from exc
        except openai.APIError as exc:
            raise DecisionServiceError(str(exc), retryable=False, cause=exc) from exc

        if not response.choices:
            raise DecisionServiceError("Decision service returned no choices", retryable=True)
        return response.choices[0].message.content or ""

    async def close(self) -> None:
        await self.client.close()


__all__ = ["OpenAIDecisionService"]
