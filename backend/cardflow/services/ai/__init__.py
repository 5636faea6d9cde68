"""
AI Service Package

Provides a multi-provider gateway for structured generation, vision and
transcription with fallback between OpenAI-compatible endpoints.
"""

from cardflow.services.ai.gateway import AIGateway, Generation, NoProviderAvailableError
from cardflow.services.ai.interface import AIProviderInterface

__all__ = [
    "AIGateway",
    "AIProviderInterface",
    "Generation",
    "NoProviderAvailableError",
]
