from __future__ import annotations

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from mergemaster.messages import Message
from mergemaster.tool import Tool

TextCallback = Callable[[str], None]


@runtime_checkable
class LLMProvider(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def model(self) -> str: ...

    async def stream_chat(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[dict],
        on_text: TextCallback | None = None,
    ) -> Message:
        """Stream one assistant turn, forwarding text deltas to ``on_text``.

        Returns the complete assistant Message (text and tool-use blocks).
        Raises ProviderError once retries are exhausted.
        """
        ...

    def convert_tools(self, tools: list[Tool]) -> list[dict]:
        """Convert Tool protocol objects to the schema passed to ``stream_chat``."""
        ...


def infer_provider_name(model: str) -> str:
    return "openai" if model.strip().lower().startswith("gpt-") else "anthropic"


def create_provider(
    provider_name: str,
    api_key: str,
    *,
    model: str,
    max_tokens: int,
    temperature: float,
) -> LLMProvider:
    """Factory: create an LLMProvider by name."""
    name = provider_name.strip().lower()
    if name == "anthropic":
        from mergemaster.providers.anthropic_provider import AnthropicProvider
        return AnthropicProvider(api_key, model=model, max_tokens=max_tokens, temperature=temperature)
    if name == "openai":
        from mergemaster.providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key, model=model, max_tokens=max_tokens, temperature=temperature)
    raise ValueError(f"Unknown provider: {provider_name!r}. Supported: 'anthropic', 'openai'")
