"""Model-invocation client for OpenAI-compatible providers.

One call = one request/response. The client holds no conversation state;
it builds the message array, posts it and normalizes the usage counts.
Pricing is applied by the caller from the static model catalog.
"""

import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from rulearena.core import ChatTurn

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


class ProviderError(RuntimeError):
    """A provider call failed (network, rate limit, malformed response)."""

    def __init__(self, model_id: str, message: str):
        super().__init__(f"{model_id}: {message}")
        self.model_id = model_id


@dataclass(frozen=True)
class Completion:
    """Normalized provider response"""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0


def build_messages(
    system_prompt: str, history: Sequence[ChatTurn], content: str
) -> List[Dict[str, str]]:
    """System message, then prior turns oldest-first, then the new user turn."""
    messages = [{"role": "system", "content": system_prompt}]
    messages.extend(turn.to_message() for turn in history)
    messages.append({"role": "user", "content": content})
    return messages


def _usage_count(usage: Any, name: str) -> int:
    value = getattr(usage, name, None) if usage is not None else None
    return int(value) if isinstance(value, (int, float)) else 0


def parse_completion(model_id: str, response: Any) -> Completion:
    """Normalize an OpenAI chat completion; raise ProviderError if malformed."""
    try:
        choice = response.choices[0]
    except (AttributeError, IndexError, TypeError):
        raise ProviderError(model_id, "response contained no choices") from None

    message = getattr(choice, "message", None)
    if message is None:
        raise ProviderError(model_id, "response choice has no message")

    usage = getattr(response, "usage", None)
    return Completion(
        text=message.content or "",
        input_tokens=_usage_count(usage, "prompt_tokens"),
        output_tokens=_usage_count(usage, "completion_tokens"),
    )


class ModelClient:
    """Thin async wrapper around an OpenAI-compatible chat endpoint"""

    def __init__(
        self,
        client: Optional[AsyncOpenAI] = None,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 120.0,
        default_max_tokens: int = 4096,
        default_temperature: float = 0.7,
    ):
        """
        Args:
            client: Preconfigured AsyncOpenAI instance. Built from api_key and
                base_url when not given.
            api_key: Provider key. Falls back to OPENROUTER_API_KEY.
            base_url: OpenAI-compatible endpoint (OpenRouter by default).
            timeout: Per-request timeout in seconds, enforced by the SDK.
            default_max_tokens: max_tokens used when a call passes None.
            default_temperature: temperature used when a call passes None.
        """
        if client is None:
            key = api_key or os.environ.get("OPENROUTER_API_KEY") or "missing-key"
            client = AsyncOpenAI(api_key=key, base_url=base_url, timeout=timeout)
        self.llm = client
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature

    async def complete(
        self,
        model_id: str,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Completion:
        """Send one chat completion request.

        Raises:
            ProviderError: on any SDK error or malformed response.
        """
        try:
            response = await self.llm.chat.completions.create(
                model=model_id,
                messages=messages,
                max_tokens=(
                    self.default_max_tokens if max_tokens is None else max_tokens
                ),
                temperature=(
                    self.default_temperature if temperature is None else temperature
                ),
            )
        except Exception as e:
            raise ProviderError(model_id, str(e)) from e

        return parse_completion(model_id, response)
