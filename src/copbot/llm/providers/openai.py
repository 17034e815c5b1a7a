import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from ...config import DEFAULT_TEMPERATURE
from ...errors import CompletionFailureKind, CompletionRequestFailed
from ..base import LLMProvider
from ..models import ChatMessage, LLMResponse

logger = logging.getLogger(__name__)


def translate_openai_error(error: openai.OpenAIError) -> CompletionRequestFailed:
    """Map an OpenAI SDK error onto the completion failure taxonomy.

    Shared by every provider that speaks the OpenAI wire format.
    """
    if isinstance(error, openai.APITimeoutError):
        return CompletionRequestFailed(CompletionFailureKind.TIMEOUT)
    if isinstance(error, openai.APIStatusError):
        return CompletionRequestFailed(
            CompletionFailureKind.HTTP_ERROR,
            status=error.status_code
        )
    if isinstance(error, openai.APIConnectionError):
        return CompletionRequestFailed(CompletionFailureKind.TRANSPORT)
    return CompletionRequestFailed(CompletionFailureKind.TRANSPORT, str(error))


def extract_first_choice(completion: Any) -> str:
    """Return the first choice's content, raising if it is missing or blank."""
    if not completion.choices:
        raise CompletionRequestFailed(CompletionFailureKind.EMPTY_RESPONSE)
    content = completion.choices[0].message.content
    if not content or not content.strip():
        raise CompletionRequestFailed(CompletionFailureKind.EMPTY_RESPONSE)
    return content


def completion_usage(completion: Any) -> dict[str, int] | None:
    if not completion.usage:
        return None
    return {
        "prompt_tokens": completion.usage.prompt_tokens,
        "completion_tokens": completion.usage.completion_tokens,
        "total_tokens": completion.usage.total_tokens
    }


class OpenAIProvider(LLMProvider):
    """OpenAI LLM provider implementation.

    Hidden design decisions:
    - OpenAI API client initialization
    - Message format conversion
    - Error translation
    - Authentication mechanism
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        organization: str | None = None,
        **client_kwargs: Any
    ):
        """Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            model: Default model to use
            base_url: Optional custom API base URL
            organization: Optional organization ID
            **client_kwargs: Additional kwargs for AsyncOpenAI client
        """
        self._model = model
        self._client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
            **client_kwargs
        )

    @property
    def model(self) -> str:
        """Get the default model name."""
        return self._model

    async def chat_completion(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int | None = None,
        **kwargs: Any
    ) -> LLMResponse:
        """Generate a chat completion using OpenAI.

        Args:
            messages: Conversation history
            model: Model to use (overrides default)
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            **kwargs: Additional OpenAI-specific parameters

        Returns:
            LLMResponse with generated content
        """
        model_to_use = model or self._model

        openai_messages = [
            {"role": msg.role, "content": msg.content}
            for msg in messages
        ]

        # Build request params, only including max_tokens if set
        request_params: dict[str, Any] = {
            "model": model_to_use,
            "messages": openai_messages,
            "temperature": temperature,
            **kwargs
        }
        if max_tokens is not None:
            request_params["max_tokens"] = max_tokens

        logger.debug("OpenAI request: model=%s entries=%d", model_to_use, len(openai_messages))
        try:
            completion = await self._client.chat.completions.create(**request_params)
        except openai.OpenAIError as e:
            raise translate_openai_error(e) from e

        return LLMResponse(
            content=extract_first_choice(completion),
            model=completion.model,
            usage=completion_usage(completion)
        )

    async def close(self) -> None:
        """Close the OpenAI client.

        Note: Uses the OpenAI SDK's async context manager for proper cleanup.
        See: https://github.com/openai/openai-python#async-usage
        """
        await self._client.close()
