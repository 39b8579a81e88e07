from __future__ import annotations

import logging
from typing import Any, Protocol, cast

import openai
from openai import AsyncOpenAI

from backend.tubesummary.services.error_classifier import (
    classify_upstream_error,
    malformed_response,
    network_failure,
)
from backend.tubesummary.services.errors import SOURCE_GENERATION, UpstreamServiceError

LOGGER = logging.getLogger("tubesummary.generation")

GENERATION_ERROR_MESSAGE = "The summary service returned an error."


class GenerationClient(Protocol):
    async def complete(self, *, system_prompt: str, user_prompt: str) -> str:
        ...


class OpenAIGenerationClient:
    """Chat-completions backed text generation returning the raw reply text."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4",
        temperature: float = 0.7,
        base_url: str | None = None,
        timeout_seconds: float = 60.0,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        self._temperature = temperature
        # Retries are a user action, never automatic.
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=max(1.0, timeout_seconds),
            max_retries=0,
        )

    async def complete(self, *, system_prompt: str, user_prompt: str) -> str:
        try:
            completion = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self._temperature,
            )
        except openai.APIStatusError as exc:
            outcome = classify_upstream_error(
                exc.status_code,
                _status_error_message(exc),
                source=SOURCE_GENERATION,
                fallback_message=GENERATION_ERROR_MESSAGE,
            )
            LOGGER.warning(
                "generation request failed status=%s kind=%s",
                exc.status_code,
                outcome.kind.value,
            )
            raise UpstreamServiceError(outcome) from exc
        except openai.APIResponseValidationError as exc:
            raise UpstreamServiceError(
                malformed_response(source=SOURCE_GENERATION, status_code=exc.status_code)
            ) from exc
        except openai.APIConnectionError as exc:
            LOGGER.warning("generation request network_failure error=%s", type(exc).__name__)
            raise UpstreamServiceError(network_failure(exc, source=SOURCE_GENERATION)) from exc

        choices = completion.choices or []
        content = choices[0].message.content if choices else None
        if not isinstance(content, str) or not content.strip():
            LOGGER.warning("generation response missing_content model=%s", self._model)
            raise UpstreamServiceError(
                malformed_response(
                    source=SOURCE_GENERATION,
                    message="Invalid response structure from the generation service.",
                )
            )
        return content


def _status_error_message(exc: openai.APIStatusError) -> str | None:
    body = exc.body
    if isinstance(body, dict):
        body_dict = cast(dict[str, Any], body)
        nested = body_dict.get("error")
        if isinstance(nested, dict):
            body_dict = cast(dict[str, Any], nested)
        raw_message = body_dict.get("message")
        if isinstance(raw_message, str) and raw_message.strip():
            return raw_message.strip()
    message = exc.message
    return message if isinstance(message, str) and message.strip() else None
