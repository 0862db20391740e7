from __future__ import annotations

import anthropic
from loguru import logger
from tenacity import retry

from mergemaster.errors import ProviderError
from mergemaster.messages import Message, TextBlock, ToolUseBlock
from mergemaster.provider import TextCallback
from mergemaster.providers.common import default_retry_kwargs, to_tool_schemas
from mergemaster.tool import Tool


class AnthropicProvider:
    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        client: anthropic.AsyncAnthropic | None = None,
    ):
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def model(self) -> str:
        return self._model

    def convert_tools(self, tools: list[Tool]) -> list[dict]:
        return to_tool_schemas(tools)

    async def stream_chat(
        self,
        system_prompt: str,
        messages: list[Message],
        tools: list[dict],
        on_text: TextCallback | None = None,
    ) -> Message:
        try:
            return await self._stream_chat(system_prompt, [m.to_dict() for m in messages], tools, on_text)
        except anthropic.APIError as ex:
            raise ProviderError(self.name, str(ex)) from ex

    @retry(**default_retry_kwargs((
        anthropic.RateLimitError,
        anthropic.APIConnectionError,
        anthropic.APITimeoutError,
    )))
    async def _stream_chat(
        self,
        system_prompt: str,
        messages: list[dict],
        tools: list[dict],
        on_text: TextCallback | None,
    ) -> Message:
        logger.debug(
            f"API request: model={self._model}, max_tokens={self._max_tokens}, "
            f"messages={len(messages)}, tools={len(tools)}"
        )
        async with self._client.messages.stream(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            system=system_prompt,
            messages=messages,
            tools=tools,
        ) as stream:
            async for event in stream:
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    if on_text is not None:
                        on_text(event.delta.text)
            response = await stream.get_final_message()

        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )

        content: list = []
        for block in response.content:
            if block.type == "text":
                content.append(TextBlock(block.text))
            elif block.type == "tool_use":
                content.append(ToolUseBlock(id=block.id, name=block.name, input=dict(block.input or {})))
        return Message(role="assistant", content=content)
