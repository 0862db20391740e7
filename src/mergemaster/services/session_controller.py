from __future__ import annotations

from mergemaster.approval import ServerSession
from mergemaster.memory.session_manager import SessionMetadata
from mergemaster.services.checkpoint_service import format_ms


class SessionController:
    def __init__(self, *, line_prefix: str, short_id_len: int = 8):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len

    def short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def format_session_list_entry(self, session: SessionMetadata, *, active_session_id: str | None) -> str:
        marker = "*" if session.session_id == active_session_id else " "
        title = session.name or "(unnamed)"
        return (
            f"{self._line_prefix}{marker} {title} [{self.short_id(session.session_id)}] "
            f"(id={session.session_id}, created={format_ms(session.created_at)}, "
            f"last_activity={format_ms(session.last_activity)})"
        )

    def format_server_entry(self, server: ServerSession) -> str:
        if server.running:
            status = "running"
        elif server.exit is not None and server.exit.timed_out:
            status = "timed out"
        elif server.exit is not None and server.exit.exit_code is not None:
            status = f"exited {server.exit.exit_code}"
        else:
            status = "stopped"
        cwd = f", cwd={server.cwd}" if server.cwd else ""
        return f"{self._line_prefix}- [{self.short_id(server.id)}] {server.command} ({status}{cwd})"

    def format_resume_hint(self, session_id: str) -> str:
        return f"{self._line_prefix}Resume this session with: mergemaster --resume {session_id}"
