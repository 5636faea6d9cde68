"""
OpenAI Provider

Adapter for the OpenAI API.
"""

from cardflow.services.ai.providers.base import BaseProvider


class OpenAIProvider(BaseProvider):
    """OpenAI provider adapter.

    Uses the standard OpenAI API endpoint unless ``base_url`` is set.
    Default URL: https://api.openai.com/v1
    """

    @property
    def provider_name(self) -> str:
        return "openai"
