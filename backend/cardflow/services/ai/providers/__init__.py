"""
Provider Adapters Package

Contains implementations for each supported AI provider.
To add a new provider:
1. Create a new file (e.g., myprovider.py) implementing BaseProvider
2. Import it here and add to PROVIDER_REGISTRY
"""

from cardflow.services.ai.providers.base import BaseProvider, ProviderConfig
from cardflow.services.ai.providers.custom import CustomProvider
from cardflow.services.ai.providers.openai import OpenAIProvider

# Registry mapping provider_type string -> provider class
PROVIDER_REGISTRY: dict[str, type[BaseProvider]] = {
    "openai": OpenAIProvider,
    "custom": CustomProvider,
}


def create_provider(config: ProviderConfig) -> BaseProvider:
    """Instantiate the adapter registered for ``config.provider_type``.

    Raises:
        ValueError: If provider type is unknown
    """
    provider_class = PROVIDER_REGISTRY.get(config.provider_type)
    if not provider_class:
        raise ValueError(f"Unknown provider type: {config.provider_type}")
    return provider_class(config)


__all__ = [
    "PROVIDER_REGISTRY",
    "BaseProvider",
    "CustomProvider",
    "OpenAIProvider",
    "ProviderConfig",
    "create_provider",
]
