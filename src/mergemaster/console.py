"""Terminal front-end: streams model text and asks the user about commands."""

from __future__ import annotations

import asyncio
import os
import shutil
import signal
import sys
import threading
from typing import TYPE_CHECKING

from loguru import logger

from mergemaster.agent_config import AgentCallbacks
from mergemaster.approval_types import ApprovalRequest, ProcessExit
from mergemaster.errors import PersistenceError

if TYPE_CHECKING:
    from mergemaster.agent import Agent

_SPINNER_FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"
_YES = {"y", "yes"}


class Spinner:
    """Thread-based spinner that renders on the current line using \\r."""

    def __init__(self, prefix: str = "", label: str = " Thinking..."):
        self._prefix = prefix
        self._label = label
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._frame_width = 1 + len(label)

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._thread is None or self._stop.is_set():
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        clear = self._prefix + " " * self._frame_width
        sys.stdout.write("\r" + clear + "\r" + self._prefix)
        sys.stdout.flush()

    def _run(self) -> None:
        i = 0
        try:
            while not self._stop.is_set():
                frame = _SPINNER_FRAMES[i % len(_SPINNER_FRAMES)] + self._label
                sys.stdout.write("\r" + self._prefix + frame)
                sys.stdout.flush()
                self._stop.wait(0.08)
                i += 1
        except (UnicodeEncodeError, OSError):
            # Terminal can't render the frames; the spinner just stays blank.
            return


async def ask_yes_no(prompt: str) -> bool | None:
    """Prompt without blocking the event loop. ``None`` means the user bailed out."""
    try:
        answer = await asyncio.to_thread(input, prompt)
    except (EOFError, KeyboardInterrupt):
        return None
    return answer.strip().lower() in _YES


class ConsoleFrontend:
    _LINE_PREFIX = "assistant> "

    def __init__(self, stdin=None) -> None:
        self._agent: Agent | None = None
        self._spinner = Spinner(prefix=self._LINE_PREFIX)
        self._tasks: set[asyncio.Task] = set()
        self._stdin = stdin if stdin is not None else sys.stdin
        self._forward_id: str | None = None
        self._forward_fd: int | None = None

    def bind(self, agent: Agent) -> None:
        self._agent = agent

    def callbacks(self) -> AgentCallbacks:
        return AgentCallbacks(
            on_text=self._on_text,
            on_thinking=self._on_thinking,
            on_iteration_limit=self._on_iteration_limit,
            on_approval_request=self._on_approval_request,
            on_tool_started=self._on_tool_started,
            on_tool_completed=self._on_tool_completed,
            on_persist_error=self._on_persist_error,
            on_process_exit=self._on_process_exit,
            on_process_error=self._on_process_error,
        )

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- streaming -------------------------------------------------------

    def _on_text(self, text: str) -> None:
        self._spinner.stop()
        print(text, end="", flush=True)

    def _on_thinking(self, active: bool) -> None:
        if active:
            self._spinner.start()
        else:
            self._spinner.stop()

    def _on_tool_started(self, tool_use_id: str, tool_name: str) -> None:
        logger.debug(f"Tool started: {tool_name} ({tool_use_id})")

    def _on_tool_completed(self, tool_use_id: str, tool_name: str, is_error: bool) -> None:
        if is_error:
            print(f"\n{self._LINE_PREFIX}[{tool_name} failed]")

    def _on_persist_error(self, error: PersistenceError) -> None:
        print(f"\n{self._LINE_PREFIX}Warning: checkpoint not saved ({error})")

    def _on_process_exit(self, tool_use_id: str, result: ProcessExit) -> None:
        if tool_use_id == self._forward_id:
            self._stop_forwarding()
        if result.timed_out:
            print(f"\n{self._LINE_PREFIX}Command {tool_use_id[:8]} timed out")

    def _on_process_error(self, tool_use_id: str, error: Exception) -> None:
        print(f"\n{self._LINE_PREFIX}Process {tool_use_id[:8]}: {error}")

    # -- approvals -------------------------------------------------------

    def _on_approval_request(self, tool_use_id: str, request: ApprovalRequest) -> None:
        self._spinner.stop()
        self._spawn(self._prompt_approval(tool_use_id, request))

    async def _prompt_approval(self, tool_use_id: str, request: ApprovalRequest) -> None:
        assert self._agent is not None
        gateway = self._agent.gateway
        kind = "server command" if request.is_server else "command"
        print(f"\n{self._LINE_PREFIX}The assistant wants to run a {kind}:")
        print(f"    $ {request.command}")
        if request.cwd:
            print(f"    in {request.cwd}")

        # Typed lines belong to the prompt until it is answered.
        previous = self._forward_id
        self._stop_forwarding()
        answer = await ask_yes_no("Run this command? [y/N] ")
        if answer is None:
            gateway.dismiss(tool_use_id)
        elif answer:
            if await gateway.approve(tool_use_id, on_data=self._echo) and not request.is_server:
                previous = tool_use_id
        else:
            gateway.deny(tool_use_id)
        if previous is not None and gateway.attach(previous):
            self._start_forwarding(previous)

    # -- interactive input -----------------------------------------------

    def _start_forwarding(self, tool_use_id: str) -> None:
        """Send typed lines to a running command until it exits."""
        self._forward_id = tool_use_id
        if self._forward_fd is not None or os.name != "posix":
            return
        try:
            fd = self._stdin.fileno()
        except (OSError, ValueError) as ex:
            logger.debug(f"Input forwarding unavailable: {ex}")
            return
        loop = asyncio.get_running_loop()
        loop.add_reader(fd, self._forward_input)
        loop.add_signal_handler(signal.SIGWINCH, self._sync_size)
        self._forward_fd = fd
        self._sync_size()

    def _stop_forwarding(self) -> None:
        self._forward_id = None
        if self._forward_fd is None:
            return
        loop = asyncio.get_running_loop()
        loop.remove_reader(self._forward_fd)
        loop.remove_signal_handler(signal.SIGWINCH)
        self._forward_fd = None

    def _forward_input(self) -> None:
        assert self._agent is not None
        line = self._stdin.readline()
        if not line or not self._agent.gateway.send_input(line):
            self._stop_forwarding()

    def _sync_size(self) -> None:
        assert self._agent is not None
        size = shutil.get_terminal_size()
        self._agent.gateway.resize(size.columns, size.lines)

    @staticmethod
    def _echo(text: str) -> None:
        sys.stdout.write(text)
        sys.stdout.flush()

    def _on_iteration_limit(self, iteration_count: int) -> None:
        self._spinner.stop()
        self._spawn(self._prompt_continue(iteration_count))

    async def _prompt_continue(self, iteration_count: int) -> None:
        assert self._agent is not None
        print(f"\n{self._LINE_PREFIX}The assistant has run {iteration_count} rounds of tools.")
        answer = await ask_yes_no("Continue? [y/N] ")
        self._agent.gateway.resolve_continue(bool(answer))
