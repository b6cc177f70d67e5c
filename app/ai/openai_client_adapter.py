from typing import Any

import httpx
import openai

from app.ai.client_base import BaseCompletionClient
from app.ai.exceptions import AdapterPermanentError, AdapterTransientError

_RETRYABLE_STATUSES = frozenset({408, 409, 425, 429})


class OpenAIClientAdapter(BaseCompletionClient):
    """Completion client built on the OpenAI-compatible chat API."""

    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: int,
        base_url: str | None = None,
    ) -> None:
        self._client = openai.OpenAI(
            api_key=api_key,
            timeout=timeout_seconds,
            base_url=base_url,
            max_retries=0,
        )

    def create_chat_completion(
        self,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        user_prompt: str,
        json_schema: dict[str, object] | None = None,
    ) -> str:
        request: dict[str, Any] = {
            "model": model,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if json_schema is not None:
            request["response_format"] = {
                "type": "json_schema",
                "json_schema": {
                    "name": "ai_result",
                    "strict": True,
                    "schema": json_schema,
                },
            }

        try:
            response = self._client.chat.completions.create(**request)
        except (openai.APIConnectionError, httpx.ConnectError, httpx.TimeoutException) as exc:
            raise AdapterTransientError(f"AI provider network error: {exc}") from exc
        except openai.APIStatusError as exc:
            if exc.status_code in _RETRYABLE_STATUSES or exc.status_code >= 500:
                raise AdapterTransientError(
                    f"AI provider returned retryable status {exc.status_code}: {exc}"
                ) from exc
            raise AdapterPermanentError(
                f"AI provider rejected request with status {exc.status_code}: {exc}"
            ) from exc
        except openai.APIError as exc:
            raise AdapterTransientError(f"AI provider API error: {exc}") from exc

        if not response.choices:
            raise AdapterTransientError("AI returned no choices")
        content = response.choices[0].message.content
        if content is None:
            raise AdapterTransientError("AI returned empty response")
        return content
