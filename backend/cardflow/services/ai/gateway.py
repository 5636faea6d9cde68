"""
AI Gateway

Main entry point for model calls with:
- Multi-provider support (OpenAI plus an optional OpenAI-compatible fallback)
- Fallback to the next provider on rate limits and errors
- Provenance (provider/model) returned alongside every result
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

import structlog
from openai import RateLimitError

from cardflow.core.config import Settings
from cardflow.core.exceptions import CardflowError
from cardflow.services.ai.interface import AIProviderInterface, SchemaT
from cardflow.services.ai.providers import ProviderConfig, create_provider

logger = structlog.get_logger()

T = TypeVar("T")


class NoProviderAvailableError(CardflowError):
    """Raised when no AI provider is configured or all of them failed."""

    pass


@dataclass(frozen=True)
class Generation(Generic[T]):
    """A model output plus the provider/model that produced it."""

    value: T
    provider: str
    model: str


class AIGateway:
    """Unified interface over an ordered list of providers.

    Providers are tried in order; a rate limit or error moves on to the
    next one. Only when every provider failed does the call raise.
    """

    def __init__(self, providers: list[AIProviderInterface]):
        self.providers = providers

    @classmethod
    def from_settings(cls, settings: Settings) -> "AIGateway":
        providers: list[AIProviderInterface] = []
        if settings.openai_api_key:
            providers.append(
                create_provider(
                    ProviderConfig(
                        provider_type="openai",
                        model=settings.ai_text_model,
                        api_key=settings.openai_api_key,
                        base_url=settings.openai_base_url,
                        vision_model=settings.ai_vision_model,
                        transcription_model=settings.ai_transcription_model,
                        timeout=settings.ai_timeout,
                    )
                )
            )
        if settings.ai_fallback_base_url and settings.ai_fallback_model:
            providers.append(
                create_provider(
                    ProviderConfig(
                        provider_type="custom",
                        model=settings.ai_fallback_model,
                        api_key=settings.ai_fallback_api_key,
                        base_url=settings.ai_fallback_base_url,
                        timeout=settings.ai_timeout,
                    )
                )
            )
        return cls(providers)

    async def _with_fallback(
        self,
        operation: str,
        call: Callable[[AIProviderInterface], Awaitable[T]],
        model_of: Callable[[AIProviderInterface], str],
    ) -> Generation[T]:
        if not self.providers:
            raise NoProviderAvailableError("No AI providers configured. Set OPENAI_API_KEY.")

        last_error: Exception | None = None

        for provider in self.providers:
            try:
                value = await call(provider)
                return Generation(value=value, provider=provider.provider_name, model=model_of(provider))

            except RateLimitError as e:
                logger.warning(
                    "ai_rate_limited",
                    operation=operation,
                    provider=provider.provider_name,
                    error=str(e),
                )
                last_error = e
                continue

            except Exception as e:
                logger.error(
                    "ai_provider_error",
                    operation=operation,
                    provider=provider.provider_name,
                    error=str(e),
                )
                last_error = e
                continue

        raise NoProviderAvailableError(f"All providers failed. Last error: {last_error}")

    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: type[SchemaT],
    ) -> Generation[SchemaT]:
        return await self._with_fallback(
            "generate_structured",
            lambda p: p.generate_structured(system_prompt, user_prompt, schema),
            lambda p: p.model_name,
        )

    async def generate_structured_vision(
        self,
        system_prompt: str,
        user_prompt: str,
        image_url: str,
        schema: type[SchemaT],
    ) -> Generation[SchemaT]:
        return await self._with_fallback(
            "generate_structured_vision",
            lambda p: p.generate_structured_vision(system_prompt, user_prompt, image_url, schema),
            lambda p: getattr(p, "vision_model_name", p.model_name),
        )

    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        mime_type: str | None = None,
    ) -> Generation[str]:
        return await self._with_fallback(
            "transcribe",
            lambda p: p.transcribe(audio, filename, mime_type),
            lambda p: getattr(p, "transcription_model_name", p.model_name),
        )
