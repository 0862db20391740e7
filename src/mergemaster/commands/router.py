from __future__ import annotations

from collections.abc import Awaitable, Callable


def _is_command(trimmed: str, name: str) -> bool:
    return trimmed == name or trimmed.startswith(name + " ")


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_undo: Callable[[str], Awaitable[None]],
        on_sessions: Callable[[str], Awaitable[None]],
        on_session: Callable[[str], Awaitable[None]],
        on_checkpoints: Callable[[str], Awaitable[None]],
        on_servers: Callable[[str], Awaitable[None]],
        on_stop: Callable[[str], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._routes: list[tuple[str, Callable[[str], Awaitable[None]]]] = [
            ("/undo", on_undo),
            ("/sessions", on_sessions),
            ("/session", on_session),
            ("/checkpoints", on_checkpoints),
            ("/servers", on_servers),
            ("/stop", on_stop),
        ]
        self._on_unknown = on_unknown

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        if trimmed == "/help":
            await self._on_help()
            return True
        for name, handler in self._routes:
            if _is_command(trimmed, name):
                await handler(trimmed)
                return True

        self._on_unknown(trimmed)
        return True
