"""Bounded conversation memory.

The ContextManager owns the SessionState of one conversation. It prunes the
history to a message-count ceiling and a token budget before every LLM call,
archives what it drops as one-line summaries, keeps the LRU file cache with
its undo stacks and synthesizes a short context message from recent activity.
"""

from __future__ import annotations

import math
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from mergemaster.messages import Message, ToolResultBlock
from mergemaster.session_state import (
    MAX_COMMAND_OUTPUT_CHARS,
    MAX_OPEN_FILES,
    MAX_WORKING_SET,
    FileContext,
    HistoricalSummary,
    RecentCommand,
    RecentPath,
    SessionState,
)

DEFAULT_MAX_MESSAGES = 50
DEFAULT_MAX_TOKENS = 180_000
SUMMARY_PREVIEW_CHARS = 200
CONTEXT_ITEMS = 5
CONTEXT_COMMANDS = 3

_COMPILE_OUTPUT_RE = re.compile(r"-o\s+(\S+)")
_CREATED_RE = re.compile(
    r"(?:created|compiled|generated|built)\s+(?:executable|file|binary)?\s*:?\s*([^\s,]+)",
    re.IGNORECASE,
)
_BINARY_PATH_RE = re.compile(r"(?:^|\s)([/\w\-.]+\.(?:exe|out|bin|so|dylib|dll))(?:\s|$)")


@dataclass
class PruneResult:
    messages: list[Message]
    archived: list[str] = field(default_factory=list)


def _iter_strings(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_strings(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_strings(item)


def estimate_tokens(message: Message) -> int:
    total_chars = sum(len(s) for s in _iter_strings(message.to_dict()))
    return math.ceil(total_chars / 4) + 6


def _one_line(text: str) -> str:
    return " ".join(text.split())[:SUMMARY_PREVIEW_CHARS]


def summarize_message(message: Message) -> str | None:
    results = message.tool_result_blocks
    if results:
        previews = " | ".join(f"{r.tool_use_id}: {_one_line(r.content)}" for r in results)
        return f"Tool results ({len(results)}): {previews}"
    text = message.text.strip()
    if text:
        return f"{message.role}: {_one_line(text)}"
    if message.has_tool_uses:
        names = ", ".join(t.name for t in message.tool_uses)
        return f"{message.role} tool calls: {names}"
    return None


def _answers(holder: Message, answer: Message) -> bool:
    use_ids = {t.id for t in holder.tool_uses}
    return any(r.tool_use_id in use_ids for r in answer.tool_result_blocks)


def _repair_adjacency(messages: list[Message]) -> tuple[list[Message], list[str]]:
    repaired: list[Message] = []
    stripped: list[str] = []
    for message in messages:
        if message.has_tool_results:
            previous = repaired[-1] if repaired else None
            use_ids = {t.id for t in previous.tool_uses} if previous is not None else set()
            orphans = [r for r in message.tool_result_blocks if r.tool_use_id not in use_ids]
            if orphans:
                summary = summarize_message(Message.tool_results(orphans))
                if summary:
                    stripped.append(summary)
                orphan_ids = {id(r) for r in orphans}
                message.content = [b for b in message.content if id(b) not in orphan_ids]
                if not message.content:
                    continue
        repaired.append(message)
    return repaired, stripped


def prune_messages(
    messages: list[Message],
    max_messages: int = DEFAULT_MAX_MESSAGES,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> PruneResult:
    """Fit ``messages`` into the ceiling and budget, newest first.

    message[0] is always retained. A message holding the tool calls that the
    next retained message answers is retained regardless of the limits so a
    tool result is never separated from its call. The input list and its
    messages are not modified.
    """
    if not messages:
        return PruneResult(messages=[])

    first = messages[0].copy()
    used = estimate_tokens(first)
    if used > max_tokens:
        logger.warning(f"First message alone exceeds the token budget (~{used:,} > {max_tokens:,})")
        return PruneResult(messages=[first])

    kept: list[Message] = []
    archived: list[str] = []
    for message in reversed(messages[1:]):
        tokens = estimate_tokens(message)
        # The ceiling counts message[0].
        within_limits = len(kept) + 1 < max_messages and used + tokens <= max_tokens
        required = bool(kept) and kept[-1].has_tool_results and _answers(message, kept[-1])
        if within_limits or required:
            kept.append(message.copy())
            used += tokens
            continue
        summary = summarize_message(message)
        if summary:
            archived.append(summary)

    kept.reverse()
    archived.reverse()
    retained, stripped = _repair_adjacency([first, *kept])
    archived.extend(stripped)

    if archived:
        logger.debug(
            f"Pruned history: kept {len(retained)}/{len(messages)} messages (~{used:,} tokens),"
            f" archived {len(archived)}"
        )
    return PruneResult(messages=retained, archived=archived)


def extract_artifacts(command: str, output: str | None) -> list[str]:
    if not output:
        return []

    artifacts: list[str] = []
    match = _COMPILE_OUTPUT_RE.search(command)
    if match:
        artifacts.append(match.group(1))
    match = _CREATED_RE.search(output)
    if match:
        artifacts.append(match.group(1))
    match = _BINARY_PATH_RE.search(output)
    if match:
        artifacts.append(match.group(1))
    return list(dict.fromkeys(artifacts))


def _last_unique(paths: Iterable[str], limit: int) -> list[str]:
    ordered = list(dict.fromkeys(reversed(list(paths))))
    return list(reversed(ordered[:limit]))


class ContextManager:
    def __init__(
        self,
        state: SessionState | None = None,
        *,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        clock: Callable[[], float] = time.time,
    ):
        self._state = state if state is not None else SessionState()
        self._max_messages = max_messages
        self._max_tokens = max_tokens
        self._clock = clock

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def messages(self) -> list[Message]:
        return self._state.messages

    def restore(self, state: SessionState) -> None:
        self._state = state

    def _now(self, now: float | None) -> float:
        return self._clock() if now is None else now

    # -- history ---------------------------------------------------------

    def window(self) -> list[Message]:
        return prune_messages(self._state.messages, self._max_messages, self._max_tokens).messages

    def append_user(self, text: str) -> None:
        self._state.messages.append(Message.user(text))

    def append_assistant(self, message: Message, now: float | None = None) -> list[str]:
        result = prune_messages(self._state.messages, self._max_messages - 1, self._max_tokens)
        self.archive(result.archived, now)
        self._state.messages = [*result.messages, message]
        return result.archived

    def append_tool_results(self, results: list[ToolResultBlock]) -> None:
        self._state.messages.append(Message.tool_results(results))

    def archive(self, summaries: list[str], now: float | None = None) -> None:
        timestamp = self._now(now)
        for summary in summaries:
            self._state.historical_summaries.append(HistoricalSummary(timestamp, summary))

    # -- file cache ------------------------------------------------------

    def _focus(self, path: str) -> None:
        working_set = self._state.working_set
        if path in working_set:
            working_set.remove(path)
        working_set.append(path)
        del working_set[:-MAX_WORKING_SET]

    def record_read(self, path: str, content: str, now: float | None = None) -> FileContext:
        timestamp = self._now(now)
        self._state.recent_reads.append(RecentPath(path, timestamp))
        ctx = self._state.open_files.get(path)
        if ctx is None:
            ctx = FileContext(path=path)
            self._state.open_files[path] = ctx
        ctx.content = content
        ctx.last_read = timestamp
        self._focus(path)
        self.evict()
        return ctx

    def record_write(self, path: str, content: str, now: float | None = None) -> FileContext:
        timestamp = self._now(now)
        self._state.recent_changes.append(RecentPath(path, timestamp))
        ctx = self._state.open_files.get(path)
        if ctx is None:
            ctx = FileContext(path=path, last_read=timestamp)
            self._state.open_files[path] = ctx
        else:
            if ctx.content is not None:
                ctx.push_version(ctx.content)
            ctx.last_read = timestamp
        ctx.content = content
        ctx.last_modified = timestamp
        self._focus(path)
        self.evict()
        return ctx

    def evict(self) -> list[str]:
        open_files = self._state.open_files
        if len(open_files) <= MAX_OPEN_FILES:
            return []
        by_age = sorted(open_files.values(), key=lambda ctx: ctx.last_read)
        evicted = [ctx.path for ctx in by_age[: len(open_files) - MAX_OPEN_FILES]]
        for path in evicted:
            del open_files[path]
        logger.debug(f"Evicted {len(evicted)} cached file(s): {', '.join(evicted)}")
        return evicted

    def undo_target(self, path: str | None = None) -> FileContext | None:
        if path is None:
            if not self._state.recent_changes:
                return None
            path = self._state.recent_changes[-1].path
        return self._state.open_files.get(path)

    def apply_undo(self, path: str, now: float | None = None) -> str:
        ctx = self._state.open_files[path]
        previous = ctx.previous_versions.pop()
        ctx.content = previous
        ctx.last_modified = self._now(now)
        return previous

    def record_command(self, command: str, output: str | None, now: float | None = None) -> None:
        clipped = output[:MAX_COMMAND_OUTPUT_CHARS] if output else output
        self._state.recent_commands.append(RecentCommand(command, clipped, self._now(now)))

    # -- context synthesis -----------------------------------------------

    def build_context_message(self, now: float | None = None) -> Message | None:
        state = self._state
        timestamp = self._now(now)
        parts: list[str] = []

        if state.open_files:
            parts.append(f"Working with files: {', '.join(state.open_files)}")

        changed = _last_unique((r.path for r in state.recent_changes), CONTEXT_ITEMS)
        if changed:
            parts.append(f"Recent changes: {', '.join(changed)}")

        read = _last_unique((r.path for r in state.recent_reads), CONTEXT_ITEMS)
        if read:
            parts.append(f"Recently read: {', '.join(read)}")

        commands = list(state.recent_commands)[-CONTEXT_COMMANDS:]
        if commands:
            rendered = []
            for entry in commands:
                artifacts = extract_artifacts(entry.command, entry.output)
                suffix = f" (created: {', '.join(artifacts)})" if artifacts else ""
                rendered.append(f"Ran: {entry.command}{suffix}")
            parts.append(f"Recent commands: {'; '.join(rendered)}")

        if state.working_set:
            parts.append(f"Focus: {', '.join(state.working_set)}")

        summaries = list(state.historical_summaries)[-CONTEXT_ITEMS:]
        if summaries:
            rendered = []
            for entry in summaries:
                minutes = max(1, int((timestamp - entry.timestamp) / 60 + 0.5))
                rendered.append(f"{minutes}m ago: {entry.summary}")
            parts.append(f"Earlier work: {' | '.join(rendered)}")

        if not parts:
            return None
        return Message.user("[Context] " + ". ".join(parts))
