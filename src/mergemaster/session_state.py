from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

from mergemaster.messages import Message

MAX_OPEN_FILES = 15
MAX_UNDO_DEPTH = 10
MAX_RECENT_PATHS = 20
MAX_RECENT_COMMANDS = 10
MAX_COMMAND_OUTPUT_CHARS = 500
MAX_HISTORICAL_SUMMARIES = 50
MAX_WORKING_SET = 10


@dataclass
class FileContext:
    path: str
    content: str | None = None
    previous_versions: list[str] = field(default_factory=list)
    last_read: float = 0.0
    last_modified: float = 0.0

    def push_version(self, content: str) -> None:
        self.previous_versions.append(content)
        if len(self.previous_versions) > MAX_UNDO_DEPTH:
            del self.previous_versions[0]


@dataclass(frozen=True)
class RecentPath:
    path: str
    timestamp: float


@dataclass(frozen=True)
class RecentCommand:
    command: str
    output: str | None
    timestamp: float


@dataclass(frozen=True)
class HistoricalSummary:
    timestamp: float
    summary: str


def _paths_deque() -> deque[RecentPath]:
    return deque(maxlen=MAX_RECENT_PATHS)


@dataclass
class SessionState:
    messages: list[Message] = field(default_factory=list)
    iteration_count: int = 0
    open_files: dict[str, FileContext] = field(default_factory=dict)
    recent_changes: deque[RecentPath] = field(default_factory=_paths_deque)
    recent_reads: deque[RecentPath] = field(default_factory=_paths_deque)
    recent_commands: deque[RecentCommand] = field(default_factory=lambda: deque(maxlen=MAX_RECENT_COMMANDS))
    historical_summaries: deque[HistoricalSummary] = field(
        default_factory=lambda: deque(maxlen=MAX_HISTORICAL_SUMMARIES)
    )
    working_set: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for a checkpoint. File contents and undo stacks are elided."""
        return {
            "messages": [m.to_dict() for m in self.messages],
            "iteration_count": self.iteration_count,
            "open_files": list(self.open_files.keys()),
            "recent_changes": [{"path": r.path, "timestamp": r.timestamp} for r in self.recent_changes],
            "recent_reads": [{"path": r.path, "timestamp": r.timestamp} for r in self.recent_reads],
            "recent_commands": [
                {"command": c.command, "output": c.output, "timestamp": c.timestamp} for c in self.recent_commands
            ],
            "historical_summaries": [
                {"timestamp": h.timestamp, "summary": h.summary} for h in self.historical_summaries
            ],
            "working_set": list(self.working_set),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SessionState:
        state = cls(
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            iteration_count=int(data.get("iteration_count", 0)),
            working_set=[str(p) for p in data.get("working_set", [])][-MAX_WORKING_SET:],
        )
        # The file cache is rebuilt lazily by subsequent reads.
        for raw in data.get("recent_changes", []):
            state.recent_changes.append(RecentPath(str(raw["path"]), float(raw["timestamp"])))
        for raw in data.get("recent_reads", []):
            state.recent_reads.append(RecentPath(str(raw["path"]), float(raw["timestamp"])))
        for raw in data.get("recent_commands", []):
            state.recent_commands.append(
                RecentCommand(str(raw["command"]), raw.get("output"), float(raw["timestamp"]))
            )
        for raw in data.get("historical_summaries", []):
            state.historical_summaries.append(HistoricalSummary(float(raw["timestamp"]), str(raw["summary"])))
        return state

    def snapshot(self) -> SessionState:
        """Deep copy used to roll back a failed turn."""
        restored = SessionState.from_dict(self.to_dict())
        restored.open_files = {
            path: FileContext(
                path=ctx.path,
                content=ctx.content,
                previous_versions=list(ctx.previous_versions),
                last_read=ctx.last_read,
                last_modified=ctx.last_modified,
            )
            for path, ctx in self.open_files.items()
        }
        return restored
