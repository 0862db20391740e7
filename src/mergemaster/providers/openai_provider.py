from __future__ import annotations

import json

import openai
from loguru import logger
from tenacity import retry

from mergemaster.errors import ProviderError
from mergemaster.messages import Message, TextBlock, ToolUseBlock
from mergemaster.provider import TextCallback
from mergemaster.providers.common import default_retry_kwargs, to_tool_schemas
from mergemaster.tool import Tool


def _to_openai_messages(system_prompt: str, messages: list[dict]) -> list[dict]:
    """Convert internal (Anthropic-style) message dicts to OpenAI chat format."""
    out: list[dict] = []

    if system_prompt:
        out.append({"role": "system", "content": system_prompt})

    for msg in messages:
        role = msg["role"]
        content = msg.get("content", [])

        if role == "assistant":
            text_parts: list[str] = []
            tool_calls: list[dict] = []
            for block in content:
                if block.get("type") == "text":
                    text_parts.append(block["text"])
                elif block.get("type") == "tool_use":
                    tool_calls.append({
                        "id": block["id"],
                        "type": "function",
                        "function": {
                            "name": block["name"],
                            "arguments": json.dumps(block["input"]),
                        },
                    })

            oai_msg: dict = {"role": "assistant", "content": "\n".join(text_parts) if text_parts else None}
            if tool_calls:
                oai_msg["tool_calls"] = tool_calls
            out.append(oai_msg)
            continue

        # Tool results become "tool" role messages, which must directly
        # follow the assistant message holding the calls.
        text_parts_user: list[str] = []
        for block in content:
            if block.get("type") == "text":
                text_parts_user.append(block["text"])
            elif block.get("type") == "tool_result":
                out.append({
                    "role": "tool",
                    "tool_call_id": block["tool_use_id"],
                    "content": str(block.get("content", "")),
                })

        if text_parts_user:
            out.append({"role": "user", "content": "\n".join(text_parts_user)})

    return out


def _to_openai_tools(tools: list[dict]) -> list[dict]:
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t.get("description", ""),
                "parameters": t.get("input_schema", {}),
            },
        }
        for t in tools
    ]


class OpenAIProvider:
    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        client: openai.AsyncOpenAI | None = None,
    ):
        self._client = client or openai.AsyncOpenAI(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature

    @property
    def name(self) -> str:
        return "openai"

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
        except openai.OpenAIError as ex:
            raise ProviderError(self.name, str(ex)) from ex

    @retry(**default_retry_kwargs((
        openai.RateLimitError,
        openai.APIConnectionError,
        openai.APITimeoutError,
    )))
    async def _stream_chat(
        self,
        system_prompt: str,
        messages: list[dict],
        tools: list[dict],
        on_text: TextCallback | None,
    ) -> Message:
        oai_messages = _to_openai_messages(system_prompt, messages)
        oai_tools = _to_openai_tools(tools)

        text_content = ""
        # index -> {"id", "name", "arguments_parts"}
        tool_calls_acc: dict[int, dict] = {}
        finish_reason: str | None = None

        logger.debug(
            f"API request: model={self._model}, max_tokens={self._max_tokens}, "
            f"messages={len(oai_messages)}, tools={len(oai_tools)}"
        )
        kwargs: dict = dict(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            messages=oai_messages,
            stream=True,
        )
        if oai_tools:
            kwargs["tools"] = oai_tools

        stream = await self._client.chat.completions.create(**kwargs)

        async for chunk in stream:
            choice = chunk.choices[0] if chunk.choices else None
            if choice is None:
                continue

            if choice.finish_reason:
                finish_reason = choice.finish_reason

            delta = choice.delta
            if delta is None:
                continue

            if delta.content:
                if on_text is not None:
                    on_text(delta.content)
                text_content += delta.content

            if delta.tool_calls:
                for tc_delta in delta.tool_calls:
                    acc = tool_calls_acc.setdefault(tc_delta.index, {"id": "", "name": "", "arguments_parts": []})
                    if tc_delta.id:
                        acc["id"] = tc_delta.id
                    if tc_delta.function:
                        if tc_delta.function.name:
                            acc["name"] = tc_delta.function.name
                        if tc_delta.function.arguments:
                            acc["arguments_parts"].append(tc_delta.function.arguments)

        content: list = []
        if text_content:
            content.append(TextBlock(text_content))

        for idx in sorted(tool_calls_acc):
            acc = tool_calls_acc[idx]
            raw_args = "".join(acc["arguments_parts"])
            try:
                parsed_input = json.loads(raw_args) if raw_args else {}
            except json.JSONDecodeError:
                logger.warning(f"Failed to parse tool call arguments: {raw_args[:200]}")
                parsed_input = {}
            content.append(ToolUseBlock(id=acc["id"], name=acc["name"], input=parsed_input))

        logger.debug(
            f"API response: finish_reason={finish_reason}, "
            f"text_len={len(text_content)}, tool_calls={len(tool_calls_acc)}"
        )
        return Message(role="assistant", content=content)
