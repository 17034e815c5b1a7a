from typing import Any

from .base import LLMProvider
from .providers import AnthropicProvider, GroqProvider, OpenAIProvider


def create_llm_provider(provider: str, **config: Any) -> LLMProvider:
    """Create an LLM provider instance.

    This factory function hides the instantiation logic for different providers.

    Args:
        provider: Provider type ('groq', 'openai', 'anthropic')
        **config: Provider-specific configuration
            For Groq:
                - api_key: str (required)
                - model: str (default: 'llama-3.1-8b-instant')
                - base_url: str (default: 'https://api.groq.com/openai/v1')
            For OpenAI:
                - api_key: str (required)
                - model: str (default: 'gpt-4o-mini')
                - base_url: str | None
                - organization: str | None
            For Anthropic (Claude):
                - api_key: str (required)
                - model: str (default: 'claude-sonnet-4-20250514')
                - base_url: str | None

    Returns:
        Initialized LLM provider instance

    Raises:
        ValueError: If provider type is not supported
        TypeError: If required configuration is missing

    Examples:
        >>> provider = create_llm_provider(
        ...     "groq",
        ...     api_key="gsk_...",
        ...     model="llama-3.1-8b-instant"
        ... )
    """
    provider_lower = provider.lower()

    if provider_lower == "groq":
        if "api_key" not in config:
            raise TypeError("Groq provider requires 'api_key' in config")
        return GroqProvider(**config)

    if provider_lower == "openai":
        if "api_key" not in config:
            raise TypeError("OpenAI provider requires 'api_key' in config")
        return OpenAIProvider(**config)

    if provider_lower in ("anthropic", "claude"):
        if "api_key" not in config:
            raise TypeError("Anthropic provider requires 'api_key' in config")
        return AnthropicProvider(**config)

    raise ValueError(
        f"Unsupported provider: {provider}. "
        f"Supported providers: 'groq', 'openai', 'anthropic'"
    )
