"""Offline completion client.

Use this module as a reference when implementing new provider adapters.
Implement BaseCompletionClient and register the provider in AIServiceFactory.
"""

import json
from typing import ClassVar

from app.ai.client_base import BaseCompletionClient


class ExampleClientAdapter(BaseCompletionClient):
    """Deterministic adapter that never touches the network.

    Classification requests get the first label of the schema's enum;
    summarization requests get a fixed digest line counting the input lines.
    Useful for local development, tests and demos without credentials.
    """

    SUMMARY_TEMPLATE: ClassVar[str] = "Example digest of {count} log lines."

    def create_chat_completion(
        self,
        *,
        model: str,
        temperature: float,
        system_prompt: str,
        user_prompt: str,
        json_schema: dict[str, object] | None = None,
    ) -> str:
        _ = model, temperature, system_prompt
        if json_schema is None:
            count = sum(1 for line in user_prompt.splitlines() if line.startswith("- "))
            return self.SUMMARY_TEMPLATE.format(count=count)
        return json.dumps({"label": self._first_label(json_schema)})

    @staticmethod
    def _first_label(json_schema: dict[str, object]) -> str | None:
        properties = json_schema.get("properties")
        if not isinstance(properties, dict):
            return None
        label = properties.get("label")
        if not isinstance(label, dict):
            return None
        enum = label.get("enum")
        if isinstance(enum, list) and enum:
            return str(enum[0])
        return None
