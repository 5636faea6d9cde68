"""
Custom Provider

Generic OpenAI-compatible endpoint provider, used as the fallback tier.

Use cases:
- Local Ollama instances
- Self-hosted vLLM servers
- Any OpenAI-compatible API
"""

from cardflow.services.ai.providers.base import BaseProvider


class CustomProvider(BaseProvider):
    """Generic OpenAI-compatible endpoint provider.

    No special features, just chat completions. Vision calls go to the
    same model unless a separate vision model is configured.
    """

    MAX_OUTPUT_TOKENS = 2048

    @property
    def provider_name(self) -> str:
        return "custom"
