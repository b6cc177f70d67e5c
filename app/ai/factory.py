from typing import ClassVar

from app.ai.base import BaseAIService
from app.ai.example_client_adapter import ExampleClientAdapter
from app.ai.openai_client_adapter import OpenAIClientAdapter
from app.ai.service import LLMService
from app.config.settings import Settings


class AIServiceFactory:
    """Creates the configured summarization/classification service."""

    OPENAI_COMPATIBLE_BASE_URLS: ClassVar[dict[str, str]] = {
        "openrouter": "https://openrouter.ai/api/v1",
        "groq": "https://api.groq.com/openai/v1",
        "together": "https://api.together.xyz/v1",
        "deepseek": "https://api.deepseek.com/v1",
        "ollama": "http://localhost:11434/v1",
    }

    @classmethod
    def create(cls, settings: Settings) -> BaseAIService:
        """Create a configured AI service from application settings."""
        provider = settings.ai_provider.lower()
        if provider == "example":
            return LLMService(
                client=ExampleClientAdapter(),
                model="example",
                chunk_chars=settings.ai_summary_chunk_chars,
            )
        base_url = cls._resolve_base_url(provider, settings)
        model = settings.ai_model_name.strip()
        if not model:
            raise ValueError(f"ai_model_name is required for ai_provider={provider}")
        client = OpenAIClientAdapter(
            api_key=settings.ai_api_key,
            timeout_seconds=settings.ai_timeout_seconds,
            base_url=base_url,
        )
        return LLMService(
            client=client,
            model=model,
            temperature=settings.ai_temperature,
            chunk_chars=settings.ai_summary_chunk_chars,
        )

    @classmethod
    def _resolve_base_url(cls, provider: str, settings: Settings) -> str | None:
        override = settings.ai_base_url.strip()
        if provider == "openai":
            return override or None
        if provider == "openai_compatible":
            if not override:
                raise ValueError(
                    "ai_base_url is required for ai_provider=openai_compatible"
                )
            return override
        default_base_url = cls.OPENAI_COMPATIBLE_BASE_URLS.get(provider)
        if default_base_url is not None:
            return override or default_base_url
        supported = [
            "example",
            "openai",
            "openai_compatible",
            *sorted(cls.OPENAI_COMPATIBLE_BASE_URLS),
        ]
        raise ValueError(f"Unknown AI provider '{provider}'. Choose from: {supported}")
