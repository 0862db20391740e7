from __future__ import annotations

import shutil
from dataclasses import dataclass
from typing import Callable

from mergemaster.tool import Tool
from mergemaster.tools.directory_read_tool import DirectoryReadTool
from mergemaster.tools.execute_command_tool import ExecuteCommandTool, ExecuteServerCommandTool
from mergemaster.tools.read_file_tool import ReadFileTool
from mergemaster.tools.write_file_tool import WriteFileTool


@dataclass(frozen=True)
class ToolGroup:
    enabled: Callable[[dict], bool]
    build: Callable[[dict], list[Tool]]


def _always(_: dict) -> bool:
    return True


def _base_tools(ctx: dict) -> list[Tool]:
    working_directory = ctx["working_directory"]
    return [
        ReadFileTool(working_directory),
        WriteFileTool(working_directory),
        DirectoryReadTool(working_directory),
        ExecuteCommandTool(working_directory),
        ExecuteServerCommandTool(working_directory),
    ]


def _search_enabled(ctx: dict) -> bool:
    return ctx["enable_search"] and bool(ctx.get("ripgrep_path"))


def _search_tools(ctx: dict) -> list[Tool]:
    from mergemaster.tools.directory_search_tool import DirectorySearchTool

    return [DirectorySearchTool(ctx["working_directory"], executable=ctx["ripgrep_path"])]


_GROUPS = [
    ToolGroup(enabled=_always, build=_base_tools),
    ToolGroup(enabled=_search_enabled, build=_search_tools),
]


def get_all(
    working_directory: str | None = None,
    ripgrep_path: str | None = None,
    *,
    enable_search: bool = True,
) -> list[Tool]:
    ctx = {
        "enable_search": enable_search,
        "working_directory": working_directory,
        "ripgrep_path": ripgrep_path if ripgrep_path is not None else shutil.which("rg"),
    }

    tools: list[Tool] = []
    for group in _GROUPS:
        if group.enabled(ctx):
            tools.extend(group.build(ctx))
    return tools
