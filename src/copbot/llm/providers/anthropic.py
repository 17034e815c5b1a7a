"""Claude as the completion collaborator.

Anthropic takes the system prompt as a separate request field and returns
content as a list of blocks, so both ends of the exchange are reshaped here.
"""

import logging
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from ...config import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE
from ...errors import CompletionFailureKind, CompletionRequestFailed
from ..base import LLMProvider
from ..models import ChatMessage, LLMResponse

logger = logging.getLogger(__name__)


def translate_anthropic_error(error: anthropic.AnthropicError) -> CompletionRequestFailed:
    """Map an Anthropic SDK error onto the completion failure taxonomy."""
    if isinstance(error, anthropic.APITimeoutError):
        return CompletionRequestFailed(CompletionFailureKind.TIMEOUT)
    if isinstance(error, anthropic.APIStatusError):
        return CompletionRequestFailed(
            CompletionFailureKind.HTTP_ERROR,
            status=error.status_code
        )
    if isinstance(error, anthropic.APIConnectionError):
        return CompletionRequestFailed(CompletionFailureKind.TRANSPORT)
    return CompletionRequestFailed(CompletionFailureKind.TRANSPORT, str(error))


def split_system(messages: list[ChatMessage]) -> tuple[str | None, list[dict[str, str]]]:
    """Separate the system entry from the user/assistant turns."""
    system = None
    turns = []
    for entry in messages:
        if entry.role == "system":
            system = entry.content
        else:
            turns.append({"role": entry.role, "content": entry.content})
    return system, turns


def joined_text(response: Any) -> str:
    """Concatenate the text blocks of a Messages API response."""
    return "".join(block.text for block in response.content if hasattr(block, "text"))


class AnthropicProvider(LLMProvider):
    """Claude provider.

    Hidden design decisions:
    - System prompt travels outside the message list
    - max_tokens is mandatory for this API
    - SDK errors become CompletionRequestFailed
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        **client_kwargs: Any
    ):
        """Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key
            model: Default model
            base_url: Optional custom API base URL
            **client_kwargs: Passed through to AsyncAnthropic
        """
        self._model = model
        self._client = AsyncAnthropic(api_key=api_key, base_url=base_url, **client_kwargs)

    @property
    def model(self) -> str:
        return self._model

    async def chat_completion(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int | None = None,
        **kwargs: Any
    ) -> LLMResponse:
        """Ask Claude for the next assistant turn.

        max_tokens falls back to DEFAULT_MAX_TOKENS when not given.
        """
        system, turns = split_system(messages)
        params: dict[str, Any] = {
            "model": model or self._model,
            "messages": turns,
            "temperature": temperature,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
            **kwargs
        }
        if system:
            params["system"] = system

        logger.debug("Anthropic request: model=%s turns=%d", params["model"], len(turns))
        try:
            response = await self._client.messages.create(**params)
        except anthropic.AnthropicError as e:
            raise translate_anthropic_error(e) from e

        content = joined_text(response)
        if not content.strip():
            raise CompletionRequestFailed(CompletionFailureKind.EMPTY_RESPONSE)

        usage = None
        if response.usage:
            prompt_tokens = response.usage.input_tokens
            completion_tokens = response.usage.output_tokens
            usage = {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens
            }

        return LLMResponse(content=content, model=response.model, usage=usage)

    async def close(self) -> None:
        await self._client.close()
