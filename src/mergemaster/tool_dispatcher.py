from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from mergemaster.approval import ApprovalGateway
from mergemaster.approval_types import (
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ApprovalOutcome,
    ApprovalRequest,
    CommandResult,
    NeedsApproval,
)
from mergemaster.context_manager import ContextManager
from mergemaster.errors import ApprovalProtocolError, ToolExecutionError
from mergemaster.messages import ToolResultBlock, ToolUseBlock
from mergemaster.summaries import summarize_tool_result
from mergemaster.tool import Tool

COMMAND_TOOLS = ("execute_command", "execute_server_command")

ApprovalHook = Callable[[str, ApprovalRequest], None]


@dataclass(frozen=True)
class UndoResult:
    success: bool
    message: str
    path: str | None = None


class ToolDispatcher:
    """Runs tool calls and folds their side effects into the ContextManager.

    Every call produces exactly one ToolResultBlock. Exceptions raised by a
    tool become error results; command tools are routed through the
    ApprovalGateway and suspend until a decision arrives.
    """

    def __init__(
        self,
        tools: list[Tool],
        context: ContextManager,
        gateway: ApprovalGateway,
        *,
        on_approval_request: ApprovalHook | None = None,
        default_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ):
        self._tool_map: dict[str, Tool] = {t.name: t for t in tools}
        self._context = context
        self._gateway = gateway
        self._on_approval_request = on_approval_request
        self._default_timeout_seconds = default_timeout_seconds

    @property
    def tools(self) -> list[Tool]:
        return list(self._tool_map.values())

    def set_approval_hook(self, hook: ApprovalHook | None) -> None:
        self._on_approval_request = hook

    async def execute(self, tool_use: ToolUseBlock) -> ToolResultBlock:
        tool = self._tool_map.get(tool_use.name)
        if tool is None:
            logger.warning(f"Model requested unknown tool {tool_use.name!r}")
            return ToolResultBlock(tool_use.id, f'Error: unknown tool "{tool_use.name}"', is_error=True)

        logger.debug(f"Tool {tool_use.name} ({tool_use.id}) input: {json.dumps(tool_use.input, default=str)[:500]}")
        try:
            result = await tool.execute(tool_use.input)
            if isinstance(result, NeedsApproval):
                result = await self._await_approval(tool_use.id, result)
            self._record(tool_use.name, tool_use.input, result)
            content = summarize_tool_result(tool_use.name, tool_use.input, result)
        except ApprovalProtocolError:
            raise
        except Exception as ex:
            logger.warning(f"Tool {tool_use.name} failed: {ex}")
            return ToolResultBlock(tool_use.id, f"Error: {ex}", is_error=True)

        logger.debug(f"Tool {tool_use.name} ({tool_use.id}) result: {content[:500]}")
        return ToolResultBlock(tool_use.id, content)

    async def _await_approval(self, tool_use_id: str, signal: NeedsApproval) -> ApprovalOutcome:
        request = ApprovalRequest.from_signal(signal, self._default_timeout_seconds)
        future = self._gateway.register(tool_use_id, request)
        if self._on_approval_request is not None:
            self._on_approval_request(tool_use_id, request)
        try:
            return await future
        except asyncio.CancelledError:
            self._gateway.dismiss(tool_use_id)
            raise

    def _record(self, tool_name: str, tool_input: dict[str, Any], result: Any) -> None:
        if tool_name == "read_file" and isinstance(result, str):
            self._context.record_read(tool_input["file_path"], result)
        elif tool_name == "write_file":
            self._context.record_write(tool_input["file_path"], tool_input["content"])
        elif tool_name in COMMAND_TOOLS:
            output = None
            if isinstance(result, CommandResult):
                output = "\n".join(part for part in (result.stdout, result.stderr) if part)
            self._context.record_command(tool_input["command"], output)

    async def undo(self, path: str | None = None) -> UndoResult:
        """Restore the previous version of ``path`` (default: the last changed file)."""
        target = self._context.undo_target(path)
        if target is None:
            message = f"No tracked changes for {path}" if path else "No file changes to undo"
            return UndoResult(False, message, path)
        if not target.previous_versions:
            return UndoResult(False, f"No earlier version of {target.path} to restore", target.path)

        writer = self._tool_map.get("write_file")
        if writer is None:
            return UndoResult(False, "Undo requires the write_file tool", target.path)

        try:
            await writer.execute({"file_path": target.path, "content": target.previous_versions[-1]})
        except (ToolExecutionError, OSError) as ex:
            logger.warning(f"Undo of {target.path} failed: {ex}")
            return UndoResult(False, f"Failed to restore {target.path}: {ex}", target.path)

        self._context.apply_undo(target.path)
        logger.info(f"Restored previous version of {target.path}")
        return UndoResult(True, f"Restored previous version of {target.path}", target.path)
