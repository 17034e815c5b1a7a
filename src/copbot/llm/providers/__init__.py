from .anthropic import AnthropicProvider
from .groq import GroqProvider
from .openai import OpenAIProvider

__all__ = ["AnthropicProvider", "GroqProvider", "OpenAIProvider"]
