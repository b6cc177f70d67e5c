from app.ai.base import BaseAIService
from app.ai.factory import AIServiceFactory
from app.ai.service import LLMService

__all__ = ["AIServiceFactory", "BaseAIService", "LLMService"]
