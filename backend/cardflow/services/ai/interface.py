"""
AI Provider Interface

Abstract base class defining the contract that all AI providers must implement.
"""

from abc import ABC, abstractmethod
from typing import TypeVar

from pydantic import BaseModel

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class AIProviderInterface(ABC):
    """Abstract interface for AI providers.

    Structured calls return an instance of the requested pydantic schema;
    a response that does not validate counts as a provider failure.
    """

    @abstractmethod
    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: type[SchemaT],
    ) -> SchemaT:
        """Generate a structured object from a text prompt."""

    @abstractmethod
    async def generate_structured_vision(
        self,
        system_prompt: str,
        user_prompt: str,
        image_url: str,
        schema: type[SchemaT],
    ) -> SchemaT:
        """Generate a structured object from a prompt plus an image URL."""

    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        mime_type: str | None = None,
    ) -> str:
        """Convert speech audio into text."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get the provider name for logging and provenance."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Get the text model name being used."""
