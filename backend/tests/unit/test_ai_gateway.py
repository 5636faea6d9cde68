"""
Unit tests for the AI gateway's provider fallback and response parsing.
"""

import pytest

from cardflow.core.config import Settings
from cardflow.services.ai.gateway import AIGateway, NoProviderAvailableError
from cardflow.services.ai.interface import AIProviderInterface
from cardflow.services.ai.providers import (
    CustomProvider,
    OpenAIProvider,
    ProviderConfig,
    create_provider,
)
from cardflow.services.ai.providers.base import InvalidModelResponseError
from cardflow.services.ai.schemas import CardMetadataResult


class ScriptedProvider(AIProviderInterface):
    """Provider that either raises ``error`` or answers with ``result``."""

    def __init__(self, name: str, result=None, error: Exception | None = None):
        self.name = name
        self.result = result
        self.error = error
        self.calls = 0

    @property
    def provider_name(self) -> str:
        return self.name

    @property
    def model_name(self) -> str:
        return f"{self.name}-model"

    async def _answer(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result

    async def generate_structured(self, system_prompt, user_prompt, schema):
        return await self._answer()

    async def generate_structured_vision(self, system_prompt, user_prompt, image_url, schema):
        return await self._answer()

    async def transcribe(self, audio, filename, mime_type=None):
        return await self._answer()


RESULT = CardMetadataResult(tags=["a"], summary="b")


@pytest.mark.asyncio
class TestFallback:
    async def test_first_provider_answers(self):
        primary = ScriptedProvider("primary", result=RESULT)
        backup = ScriptedProvider("backup", result=RESULT)

        generation = await AIGateway([primary, backup]).generate_structured("s", "u", CardMetadataResult)

        assert generation.value == RESULT
        assert (generation.provider, generation.model) == ("primary", "primary-model")
        assert backup.calls == 0

    async def test_failing_provider_falls_back(self):
        primary = ScriptedProvider("primary", error=RuntimeError("timeout"))
        backup = ScriptedProvider("backup", result=RESULT)

        generation = await AIGateway([primary, backup]).generate_structured_vision(
            "s", "u", "https://files.test/a.png", CardMetadataResult
        )

        assert generation.provider == "backup"
        assert primary.calls == 1

    async def test_all_providers_fail(self):
        gateway = AIGateway(
            [
                ScriptedProvider("primary", error=RuntimeError("timeout")),
                ScriptedProvider("backup", error=RuntimeError("bad gateway")),
            ]
        )

        with pytest.raises(NoProviderAvailableError, match="Last error: bad gateway"):
            await gateway.transcribe(b"audio", "memo.m4a")

    async def test_no_providers(self):
        with pytest.raises(NoProviderAvailableError, match="No AI providers configured"):
            await AIGateway([]).generate_structured("s", "u", CardMetadataResult)


class TestFromSettings:
    def test_openai_with_fallback(self):
        settings = Settings(
            openai_api_key="sk-test",
            ai_fallback_base_url="http://localhost:11434/v1",
            ai_fallback_model="llama3",
        )

        providers = AIGateway.from_settings(settings).providers

        assert [type(p) for p in providers] == [OpenAIProvider, CustomProvider]
        assert providers[0].transcription_model_name == "whisper-1"
        assert providers[1].model_name == "llama3"

    def test_nothing_configured(self):
        settings = Settings(openai_api_key=None, ai_fallback_base_url=None, ai_fallback_model=None)

        assert AIGateway.from_settings(settings).providers == []


class TestProviderParsing:
    def test_unknown_provider_type(self):
        with pytest.raises(ValueError, match="Unknown provider type"):
            create_provider(ProviderConfig(provider_type="nope", model="m"))

    def test_valid_json(self):
        provider = create_provider(ProviderConfig(provider_type="custom", model="m"))

        result = provider._parse('{"tags": ["One", "one"], "summary": "s"}', CardMetadataResult)

        assert result.tags == ["one"]

    @pytest.mark.parametrize("content", [None, "", "not json", '{"tags": "oops"}'])
    def test_invalid_responses(self, content):
        provider = create_provider(ProviderConfig(provider_type="custom", model="m"))

        with pytest.raises(InvalidModelResponseError):
            provider._parse(content, CardMetadataResult)

    def test_vision_model_defaults_to_text_model(self):
        provider = create_provider(ProviderConfig(provider_type="openai", model="m"))

        assert provider.vision_model_name == "m"
        assert provider.provider_name == "openai"
