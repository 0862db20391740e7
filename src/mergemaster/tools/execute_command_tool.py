from typing import Any

from mergemaster.approval_types import NeedsApproval


def _command_schema(command_description: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": command_description,
            },
            "cwd": {
                "type": "string",
                "description": "Working directory for the command (defaults to the project directory)",
            },
            "timeout": {
                "type": "number",
                "description": "Seconds before the command is killed (default 900)",
            },
        },
        "required": ["command"],
    }


class ExecuteCommandTool:
    """Shell command that runs to completion once the user approves it."""

    def __init__(self, working_directory: str | None = None):
        self._working_directory = working_directory

    @property
    def name(self) -> str:
        return "execute_command"

    @property
    def description(self) -> str:
        return (
            "Run a shell command in a terminal after the user approves it. "
            "Returns the exit code and the combined output."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return _command_schema("The shell command to execute")

    def _signal(self, tool_input: dict[str, Any], is_server: bool) -> NeedsApproval:
        timeout = tool_input.get("timeout")
        return NeedsApproval(
            command=tool_input["command"],
            cwd=tool_input.get("cwd") or self._working_directory,
            timeout_seconds=float(timeout) if timeout else None,
            is_server=is_server,
        )

    async def execute(self, tool_input: dict[str, Any]) -> NeedsApproval:
        return self._signal(tool_input, is_server=False)


class ExecuteServerCommandTool(ExecuteCommandTool):
    """Long-running command (dev server, watcher) that keeps running in the background."""

    @property
    def name(self) -> str:
        return "execute_server_command"

    @property
    def description(self) -> str:
        return (
            "Start a long-running command such as a development server after the user approves it. "
            "Returns as soon as the process has started; it keeps running in its own terminal."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return _command_schema("The server command to start")

    async def execute(self, tool_input: dict[str, Any]) -> NeedsApproval:
        return self._signal(tool_input, is_server=True)
