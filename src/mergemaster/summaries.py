"""Bounded, model-readable summaries of tool results."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from mergemaster.approval_types import CommandResult, Started

MAX_TOOL_RESULT_CHARS = 4000
MAX_TOOL_RESULT_LINES = 120
MAX_COMMAND_OUTPUT_LINES = 80
MAX_DIRECTORY_ENTRIES = 50
MAX_SEARCH_MATCHES = 20
MAX_MATCHES_PER_FILE = 3


def truncate_string(text: str, char_limit: int = MAX_TOOL_RESULT_CHARS) -> str:
    if len(text) <= char_limit:
        return text
    return f"{text[:char_limit]}\n… (truncated {len(text) - char_limit} more characters)"


def truncate_lines(text: str, line_limit: int = MAX_TOOL_RESULT_LINES) -> str:
    lines = text.split("\n")
    if len(lines) <= line_limit:
        return text
    kept = "\n".join(lines[:line_limit])
    return f"{kept}\n… (truncated {len(lines) - line_limit} more lines)"


def summarize_read_file(content: str, path: str) -> str:
    limited = truncate_string(truncate_lines(content))
    total_lines = len(content.split("\n"))
    shown_lines = len(limited.split("\n"))
    if shown_lines < total_lines:
        return f"Contents of {path} (showing first {shown_lines} of {total_lines} lines):\n{limited}"
    return f"Contents of {path}:\n{limited}"


def summarize_directory_read(entries: Sequence[dict[str, Any]], dir_path: str) -> str:
    if not entries:
        return f"Directory {dir_path} is empty."
    lines = []
    for entry in entries[:MAX_DIRECTORY_ENTRIES]:
        marker = "[dir]" if entry.get("type") == "directory" else "[file]"
        lines.append(f"{marker} {entry.get('name', '')}")
    if len(entries) > MAX_DIRECTORY_ENTRIES:
        lines.append(f"… ({len(entries) - MAX_DIRECTORY_ENTRIES} more entries)")
    body = "\n".join(lines)
    return f"Directory listing for {dir_path} ({len(entries)} entries):\n{body}"


def summarize_directory_search(results: Sequence[dict[str, Any]], pattern: str) -> str:
    if not results:
        return f'No matches found for "{pattern}".'

    top_matches = results[:MAX_SEARCH_MATCHES]
    by_file: dict[str, list[tuple[int, str]]] = {}
    for match in top_matches:
        path = match.get("path")
        if not isinstance(path, str):
            continue
        line_number = match.get("line_number")
        text = match.get("content")
        by_file.setdefault(path, []).append(
            (
                line_number if isinstance(line_number, int) else 0,
                text.strip() if isinstance(text, str) else "",
            )
        )

    lines: list[str] = []
    for path, matches in by_file.items():
        lines.append(f"• {path}")
        for line_number, text in matches[:MAX_MATCHES_PER_FILE]:
            lines.append(f"  - #{line_number}: {truncate_string(text, 200)}")
        if len(matches) > MAX_MATCHES_PER_FILE:
            lines.append(f"  - … (+{len(matches) - MAX_MATCHES_PER_FILE} more matches in this file)")

    if len(results) > len(top_matches):
        lines.append(f"… ({len(results) - len(top_matches)} additional matches truncated)")

    body = "\n".join(lines)
    return f'Found {len(results)} matches for "{pattern}" across {len(by_file)} file(s):\n{body}'


def summarize_command_result(result: Any, command: str) -> str:
    if isinstance(result, Started):
        cwd = f" in {result.cwd}" if result.cwd else ""
        return f"Server command started{cwd}: {command}\nOutput streams to a dedicated terminal."
    if not isinstance(result, CommandResult):
        text = result if isinstance(result, str) else "(no output)"
        return truncate_string(f'Output from "{command}":\n{truncate_lines(text, MAX_COMMAND_OUTPUT_LINES)}')

    combined = "\n".join(part for part in (result.stdout, result.stderr) if part).strip()
    snippet = truncate_string(truncate_lines(combined, MAX_COMMAND_OUTPUT_LINES)) if combined else "(no output)"
    return f"Exit code: {result.exit_code}\nCommand: {command}\nOutput:\n{snippet}"


def summarize_tool_result(tool_name: str, tool_input: dict[str, Any], result: Any) -> str:
    if tool_name == "read_file":
        path = tool_input.get("file_path", "(unknown file)")
        if isinstance(result, str):
            return summarize_read_file(result, path)
        return f"Read file {path}."
    if tool_name == "write_file":
        content = tool_input.get("content")
        length = len(content) if isinstance(content, str) else 0
        return f"Wrote {tool_input.get('file_path')} ({length} characters)."
    if tool_name == "directory_read" and isinstance(result, list):
        return summarize_directory_read(result, tool_input.get("dir_path", "."))
    if tool_name == "directory_search" and isinstance(result, list):
        return summarize_directory_search(result, tool_input.get("pattern", ""))
    if tool_name in ("execute_command", "execute_server_command"):
        return summarize_command_result(result, tool_input.get("command", ""))
    if isinstance(result, str):
        return truncate_string(truncate_lines(result))
    return truncate_string(json.dumps(result, indent=2, default=str))
