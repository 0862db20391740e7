from __future__ import annotations

from datetime import UTC, datetime

from mergemaster.memory.checkpoints import Checkpoint


def format_ms(value: int) -> str:
    return datetime.fromtimestamp(value / 1000, UTC).isoformat(timespec="seconds")


class CheckpointService:
    def __init__(self, *, line_prefix: str, short_id_len: int = 8):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len

    def _short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def format_checkpoint_list_entry(self, checkpoint: Checkpoint) -> str:
        state = checkpoint.state
        parent = self._short_id(checkpoint.parent_checkpoint_id) if checkpoint.parent_checkpoint_id else "-"
        return (
            f"{self._line_prefix}- [{self._short_id(checkpoint.checkpoint_id)}] "
            f"(created={format_ms(checkpoint.created_at)}, messages={len(state.messages)}, "
            f"iterations={state.iteration_count}, parent={parent})"
        )

    def format_undo_outcome(self, success: bool, message: str) -> str:
        status = "Undo" if success else "Undo failed"
        return f"{self._line_prefix}{status}: {message}"
