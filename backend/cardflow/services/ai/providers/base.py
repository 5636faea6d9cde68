"""
Base Provider Implementation

Common functionality shared across all OpenAI-compatible provider adapters.
"""

import json
from dataclasses import dataclass
from typing import Any

import structlog
from openai import AsyncOpenAI
from pydantic import ValidationError

from cardflow.services.ai.interface import AIProviderInterface, SchemaT

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for one OpenAI-compatible endpoint."""

    provider_type: str
    model: str
    api_key: str | None = None
    base_url: str | None = None
    vision_model: str | None = None
    transcription_model: str | None = None
    timeout: float = 60.0


class InvalidModelResponseError(Exception):
    """The model answered, but not with the requested JSON shape."""

    pass


class BaseProvider(AIProviderInterface):
    """Base class for OpenAI-compatible providers.

    Requests use JSON-object response format; the expected schema is
    appended to the system prompt and the reply is validated with
    pydantic before it is handed back.
    """

    # Maximum tokens to output (prevents runaway generation)
    MAX_OUTPUT_TOKENS = 1024

    def __init__(self, config: ProviderConfig):
        self.config = config
        self._client: AsyncOpenAI | None = None

    @property
    def provider_name(self) -> str:
        return self.config.provider_type

    @property
    def model_name(self) -> str:
        return self.config.model

    @property
    def vision_model_name(self) -> str:
        return self.config.vision_model or self.config.model

    @property
    def transcription_model_name(self) -> str:
        return self.config.transcription_model or self.config.model

    def _get_client(self) -> AsyncOpenAI:
        """Get or create OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(
                base_url=self.config.base_url,
                # Local OpenAI-compatible servers accept any key
                api_key=self.config.api_key or "not-required",
                timeout=self.config.timeout,
                default_headers=self._get_default_headers(),
            )
        return self._client

    def _get_default_headers(self) -> dict[str, str]:
        """Get default headers for requests.

        Override in subclasses for provider-specific headers.
        """
        return {}

    @staticmethod
    def _schema_instructions(system_prompt: str, schema: type[SchemaT]) -> str:
        return (
            f"{system_prompt}\n\n"
            "Respond with a single JSON object that matches this JSON schema:\n"
            f"{json.dumps(schema.model_json_schema())}"
        )

    def _parse(self, content: str | None, schema: type[SchemaT]) -> SchemaT:
        if not content:
            raise InvalidModelResponseError("Model returned an empty response")
        try:
            return schema.model_validate(json.loads(content))
        except (json.JSONDecodeError, ValidationError) as e:
            raise InvalidModelResponseError(f"Model response did not match {schema.__name__}: {e}") from e

    async def _complete(self, model: str, messages: list[dict[str, Any]]) -> str | None:
        response = await self._get_client().chat.completions.create(
            model=model,
            messages=messages,
            response_format={"type": "json_object"},
            max_tokens=self.MAX_OUTPUT_TOKENS,
        )
        if response.usage:
            logger.debug(
                "ai_token_usage",
                provider=self.provider_name,
                model=model,
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
            )
        return response.choices[0].message.content

    async def generate_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: type[SchemaT],
    ) -> SchemaT:
        logger.info(
            "ai_generate_text_start",
            provider=self.provider_name,
            model=self.model_name,
            schema=schema.__name__,
            prompt_len=len(user_prompt),
        )
        content = await self._complete(
            self.model_name,
            [
                {"role": "system", "content": self._schema_instructions(system_prompt, schema)},
                {"role": "user", "content": user_prompt},
            ],
        )
        result = self._parse(content, schema)
        logger.info("ai_generate_text_success", provider=self.provider_name, schema=schema.__name__)
        return result

    async def generate_structured_vision(
        self,
        system_prompt: str,
        user_prompt: str,
        image_url: str,
        schema: type[SchemaT],
    ) -> SchemaT:
        logger.info(
            "ai_generate_vision_start",
            provider=self.provider_name,
            model=self.vision_model_name,
            schema=schema.__name__,
        )
        content = await self._complete(
            self.vision_model_name,
            [
                {"role": "system", "content": self._schema_instructions(system_prompt, schema)},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": user_prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                },
            ],
        )
        result = self._parse(content, schema)
        logger.info("ai_generate_vision_success", provider=self.provider_name, schema=schema.__name__)
        return result

    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        mime_type: str | None = None,
    ) -> str:
        if not self.config.transcription_model:
            raise NotImplementedError(f"{self.provider_name} has no transcription model configured")

        logger.info(
            "ai_transcribe_start",
            provider=self.provider_name,
            model=self.config.transcription_model,
            audio_bytes=len(audio),
        )
        file_tuple = (filename, audio, mime_type) if mime_type else (filename, audio)
        response = await self._get_client().audio.transcriptions.create(
            model=self.config.transcription_model,
            file=file_tuple,
        )
        return response.text.strip()
