"""Summarization and classification over a chat completion client."""

import json
from collections.abc import Collection, Sequence
from pathlib import Path

from app.ai.base import BaseAIService
from app.ai.client_base import BaseCompletionClient
from app.ai.exceptions import AdapterPermanentError, AdapterTransientError
from app.ai.labels import UNCLASSIFIED
from app.ai.prompt_loader import load_prompt
from app.logging.logger import Log


class LLMService(BaseAIService):
    """AI service that prompts a chat model for digests and labels.

    Summaries of large batches are built map-reduce style: the input is split
    into chunks of at most ``chunk_chars`` characters, each chunk is
    summarized, and the partial summaries are summarized again until one
    remains.
    """

    def __init__(
        self,
        *,
        client: BaseCompletionClient,
        model: str,
        temperature: float = 0.0,
        chunk_chars: int = 12000,
        prompt_dir: Path | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._temperature = max(0.0, min(1.0, temperature))
        self._chunk_chars = chunk_chars
        self._summarize_system = load_prompt("summarize_system.txt", prompt_dir)
        self._summarize_template = load_prompt("summarize_prompt.txt", prompt_dir)
        self._classify_system = load_prompt("classify_system.txt", prompt_dir)
        self._classify_template = load_prompt("classify_prompt.txt", prompt_dir)

    def summarize(self, texts: Sequence[str]) -> str:
        lines = [text.strip() for text in texts if text and text.strip()]
        if not lines:
            return ""

        rounds = 0
        while True:
            chunks = chunk_lines(lines, self._chunk_chars)
            partials = [self._summarize_chunk(chunk) for chunk in chunks]
            rounds += 1
            if len(partials) == 1:
                Log.debug(f"Summary built in {rounds} rounds", lines=len(texts))
                return partials[0]
            if len(partials) >= len(lines):
                share = max(1, self._chunk_chars // len(partials) - 1)
                partials = [partial[:share] for partial in partials]
            lines = partials

    def classify(self, text: str, labels: Collection[str]) -> str:
        vocabulary = list(dict.fromkeys(label for label in labels if label))
        if not vocabulary:
            raise AdapterPermanentError("Label set must contain at least one label")

        prompt = self._classify_template.format(
            labels="\n".join(f"- {label}" for label in vocabulary),
            event_text=text,
        )
        raw = self._client.create_chat_completion(
            model=self._model,
            temperature=self._temperature,
            system_prompt=self._classify_system,
            user_prompt=prompt,
            json_schema=label_schema(vocabulary),
        )
        label = _parse_label(raw)
        if label not in vocabulary:
            Log.debug(f"Model answered outside the label set: {label!r}")
            return UNCLASSIFIED
        return label

    def _summarize_chunk(self, chunk: list[str]) -> str:
        prompt = self._summarize_template.format(
            log_lines="\n".join(f"- {line}" for line in chunk)
        )
        summary = self._client.create_chat_completion(
            model=self._model,
            temperature=self._temperature,
            system_prompt=self._summarize_system,
            user_prompt=prompt,
        ).strip()
        if not summary:
            raise AdapterTransientError("AI returned an empty summary")
        return summary


def chunk_lines(lines: Sequence[str], max_chars: int) -> list[list[str]]:
    """Greedily pack lines into chunks of at most max_chars characters.

    A single line longer than max_chars is truncated so every chunk fits and
    each reduction round strictly shrinks the input.
    """
    chunks: list[list[str]] = []
    current: list[str] = []
    size = 0
    for line in lines:
        clipped = line[:max_chars]
        cost = len(clipped) + 1
        if current and size + cost > max_chars:
            chunks.append(current)
            current, size = [], 0
        current.append(clipped)
        size += cost
    if current:
        chunks.append(current)
    return chunks


def label_schema(labels: Sequence[str]) -> dict[str, object]:
    return {
        "type": "object",
        "properties": {
            "label": {"type": "string", "enum": [*labels, UNCLASSIFIED]},
        },
        "required": ["label"],
        "additionalProperties": False,
    }


def _parse_label(raw: str) -> str:
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        lines = cleaned.splitlines()
        if lines and lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        cleaned = "\n".join(lines)

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise AdapterTransientError(f"Invalid JSON classification response: {exc}") from exc

    if not isinstance(parsed, dict):
        raise AdapterTransientError("Classification response must be a JSON object")
    label = parsed.get("label")
    if not isinstance(label, str):
        return UNCLASSIFIED
    return label.strip()
