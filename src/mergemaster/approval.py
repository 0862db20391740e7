"""Human approval of shell commands.

Command tools never run anything themselves. The dispatcher registers the
request here under its tool-use id and awaits the returned future. A
front-end later calls ``approve`` (spawn the process), ``deny`` or
``dismiss``; whichever comes first delivers the single outcome for that id.

The gateway also owns the long-running server processes, the session that
currently receives keyboard input and the iteration-limit continue gate.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from loguru import logger

from mergemaster.approval_types import (
    TIMEOUT_EXIT_CODE,
    ApprovalOutcome,
    ApprovalRequest,
    CommandResult,
    ProcessExit,
    Started,
)
from mergemaster.errors import ApprovalProtocolError, ProcessError
from mergemaster.process_session import (
    DataCallback,
    ExitCallback,
    ProcessSession,
    spawn_process_session,
)

MAX_SERVER_OUTPUT_CHARS = 8000

NOT_APPROVED_MESSAGE = "Command not approved by user"
DISMISSED_MESSAGE = "Command approval dismissed"
TERMINATED_MESSAGE = "Command cancelled (session terminated)"

SpawnFn = Callable[..., Awaitable[ProcessSession]]


@dataclass
class _Pending:
    request: ApprovalRequest
    future: asyncio.Future[ApprovalOutcome]
    approved: bool = False
    session: ProcessSession | None = None


@dataclass
class ServerSession:
    id: str
    command: str
    cwd: str | None
    started_at: float
    session: ProcessSession | None = None
    output: str = ""
    exit: ProcessExit | None = None

    @property
    def running(self) -> bool:
        return self.exit is None and self.session is not None and not self.session.exited

    def append_output(self, text: str) -> None:
        self.output = (self.output + text)[-MAX_SERVER_OUTPUT_CHARS:]


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}"


class ApprovalGateway:
    def __init__(
        self,
        working_directory: str | None = None,
        *,
        spawn: SpawnFn = spawn_process_session,
        on_exit: Callable[[str, ProcessExit], None] | None = None,
        on_error: Callable[[str, Exception], None] | None = None,
    ):
        self._working_directory = working_directory
        self._spawn = spawn
        self._on_exit = on_exit
        self._on_error = on_error
        self._pending: dict[str, _Pending] = {}
        self._servers: dict[str, ServerSession] = {}
        self._attached_id: str | None = None
        self._continue: asyncio.Future[bool] | None = None

    # -- rendezvous ------------------------------------------------------

    def register(self, tool_use_id: str, request: ApprovalRequest) -> asyncio.Future[ApprovalOutcome]:
        if not tool_use_id:
            logger.error("Approval registered without a tool-use id")
            raise ApprovalProtocolError("Approval requires a tool-use id")
        if tool_use_id in self._pending:
            logger.error(f"Approval already pending for {tool_use_id}")
            raise ApprovalProtocolError(f"Approval already pending for {tool_use_id}")
        future: asyncio.Future[ApprovalOutcome] = asyncio.get_running_loop().create_future()
        self._pending[tool_use_id] = _Pending(request=request, future=future)
        logger.debug(f"Approval pending for {tool_use_id}: {request.command}")
        return future

    def resolve(self, tool_use_id: str, result: ApprovalOutcome) -> bool:
        pending = self._pending.pop(tool_use_id, None)
        if pending is None or pending.future.done():
            logger.warning(f"Ignoring second or unknown approval outcome for {tool_use_id}")
            return False
        pending.future.set_result(result)
        return True

    def reject(self, tool_use_id: str, error: Exception) -> bool:
        pending = self._pending.pop(tool_use_id, None)
        if pending is None or pending.future.done():
            logger.warning(f"Ignoring second or unknown approval rejection for {tool_use_id}")
            return False
        pending.future.set_exception(error)
        return True

    def pending(self, tool_use_id: str) -> ApprovalRequest | None:
        pending = self._pending.get(tool_use_id)
        return pending.request if pending is not None else None

    def pending_ids(self) -> list[str]:
        return [tool_use_id for tool_use_id, p in self._pending.items() if not p.approved]

    # -- decisions -------------------------------------------------------

    async def approve(self, tool_use_id: str, on_data: DataCallback | None = None) -> bool:
        pending = self._pending.get(tool_use_id)
        if pending is None or pending.approved:
            logger.warning(f"Nothing to approve for {tool_use_id}")
            return False
        pending.approved = True
        request = pending.request
        cwd = request.cwd or self._working_directory

        if request.is_server:
            return await self._start_server(tool_use_id, request, cwd, on_data)

        chunks: list[str] = []

        def data(text: str) -> None:
            chunks.append(text)
            if on_data is not None:
                on_data(text)

        def exited(result: ProcessExit) -> None:
            self._command_exited(tool_use_id, result, "".join(chunks))

        session = await self._spawn_or_reject(tool_use_id, request, cwd, data, exited)
        if session is None:
            return False
        if self._pending.get(tool_use_id) is not pending:
            # Denied while the process was starting.
            session.dispose()
            return False
        pending.session = session
        self._attached_id = tool_use_id
        return True

    async def _start_server(
        self,
        tool_use_id: str,
        request: ApprovalRequest,
        cwd: str | None,
        on_data: DataCallback | None,
    ) -> bool:
        server = ServerSession(id=tool_use_id, command=request.command, cwd=cwd, started_at=time.time())

        def data(text: str) -> None:
            server.append_output(text)
            if on_data is not None:
                on_data(text)

        def exited(result: ProcessExit) -> None:
            server.exit = result
            if self._attached_id == tool_use_id:
                self._attached_id = None
            logger.info(f"Server command {tool_use_id} exited: {result}")
            if self._on_exit is not None:
                self._on_exit(tool_use_id, result)

        session = await self._spawn_or_reject(tool_use_id, request, cwd, data, exited)
        if session is None:
            return False
        server.session = session
        self._servers[tool_use_id] = server
        if not self.resolve(tool_use_id, Started(command=request.command, cwd=cwd)):
            session.dispose()
            return False
        self._attached_id = tool_use_id
        return True

    async def _spawn_or_reject(
        self,
        tool_use_id: str,
        request: ApprovalRequest,
        cwd: str | None,
        on_data: DataCallback,
        on_exit: ExitCallback,
    ) -> ProcessSession | None:
        try:
            return await self._spawn(
                request.command,
                cwd,
                timeout_seconds=request.timeout_seconds,
                on_data=on_data,
                on_exit=on_exit,
            )
        except ProcessError as ex:
            logger.error(f"Failed to start approved command {tool_use_id}: {ex}")
            self.reject(tool_use_id, ex)
            return None

    def _command_exited(self, tool_use_id: str, result: ProcessExit, output: str) -> None:
        if self._attached_id == tool_use_id:
            self._attached_id = None
        pending = self._pending.get(tool_use_id)
        if pending is not None:
            stderr = ""
            if result.timed_out:
                stderr = f"Command timed out after {_format_seconds(pending.request.timeout_seconds)} seconds"
            exit_code = result.exit_code if result.exit_code is not None else TIMEOUT_EXIT_CODE
            self.resolve(tool_use_id, CommandResult(stdout=output, stderr=stderr, exit_code=exit_code))
        if self._on_exit is not None:
            self._on_exit(tool_use_id, result)

    def _refuse(self, tool_use_id: str, message: str) -> bool:
        pending = self._pending.get(tool_use_id)
        if pending is None:
            logger.warning(f"Nothing to refuse for {tool_use_id}")
            return False
        if pending.session is not None and not pending.session.exited:
            pending.session.dispose()
        request = pending.request
        if request.is_server:
            payload = {"status": "rejected", "command": request.command, "message": message}
            outcome = CommandResult(stdout=json.dumps(payload), stderr="", exit_code=-1)
        else:
            outcome = CommandResult(stdout="", stderr=message, exit_code=-1)
        return self.resolve(tool_use_id, outcome)

    def deny(self, tool_use_id: str, reason: str | None = None) -> bool:
        return self._refuse(tool_use_id, reason or NOT_APPROVED_MESSAGE)

    def dismiss(self, tool_use_id: str) -> bool:
        return self._refuse(tool_use_id, DISMISSED_MESSAGE)

    # -- server sessions -------------------------------------------------

    def server_sessions(self) -> list[ServerSession]:
        return list(self._servers.values())

    def stop_server(self, tool_use_id: str | None = None) -> bool:
        if tool_use_id is None:
            running = [s for s in self._servers.values() if s.running]
            if not running:
                return False
            server = running[-1]
        else:
            server = self._servers.get(tool_use_id)
            if server is None or not server.running:
                return False
        assert server.session is not None
        logger.info(f"Stopping server command {server.id}: {server.command}")
        server.session.dispose()
        return True

    def server_output(self, tool_use_id: str) -> str | None:
        server = self._servers.get(tool_use_id)
        return server.output if server is not None else None

    # -- interactive attachment ------------------------------------------

    def _live_session(self, tool_use_id: str | None) -> ProcessSession | None:
        if tool_use_id is None:
            return None
        server = self._servers.get(tool_use_id)
        if server is not None:
            return server.session if server.running else None
        pending = self._pending.get(tool_use_id)
        if pending is not None and pending.session is not None and not pending.session.exited:
            return pending.session
        return None

    @property
    def attached_session_id(self) -> str | None:
        return self._attached_id

    def attach(self, tool_use_id: str) -> bool:
        if self._live_session(tool_use_id) is None:
            return False
        self._attached_id = tool_use_id
        return True

    def detach(self) -> None:
        self._attached_id = None

    def _report_error(self, tool_use_id: str, error: Exception) -> None:
        logger.warning(f"Process {tool_use_id}: {error}")
        if self._on_error is not None:
            self._on_error(tool_use_id, error)

    def send_input(self, data: str) -> bool:
        session = self._live_session(self._attached_id)
        if session is None:
            return False
        try:
            session.write(data)
        except ProcessError as ex:
            self._report_error(self._attached_id or "", ex)
            return False
        return True

    def resize(self, cols: int, rows: int) -> bool:
        session = self._live_session(self._attached_id)
        if session is None:
            return False
        try:
            session.resize(cols, rows)
        except ProcessError as ex:
            self._report_error(self._attached_id or "", ex)
            return False
        return True

    # -- continue gate ---------------------------------------------------

    def wait_for_continue(self) -> asyncio.Future[bool]:
        if self._continue is not None and not self._continue.done():
            logger.error("A continue decision is already outstanding")
            raise ApprovalProtocolError("A continue decision is already outstanding")
        self._continue = asyncio.get_running_loop().create_future()
        return self._continue

    @property
    def continue_pending(self) -> bool:
        return self._continue is not None and not self._continue.done()

    def resolve_continue(self, proceed: bool) -> bool:
        gate, self._continue = self._continue, None
        if gate is None or gate.done():
            logger.warning("Ignoring continue decision with no outstanding gate")
            return False
        gate.set_result(proceed)
        return True

    def reject_continue(self, error: Exception) -> bool:
        gate, self._continue = self._continue, None
        if gate is None or gate.done():
            logger.warning("Ignoring continue rejection with no outstanding gate")
            return False
        gate.set_exception(error)
        return True

    # -- teardown --------------------------------------------------------

    def shutdown(self) -> None:
        for tool_use_id, pending in list(self._pending.items()):
            if pending.request.is_server:
                self.reject(tool_use_id, ProcessError(TERMINATED_MESSAGE))
            else:
                self._refuse(tool_use_id, TERMINATED_MESSAGE)
        for server in self._servers.values():
            if server.running and server.session is not None:
                server.session.dispose()
        self._attached_id = None
        if self.continue_pending:
            self.resolve_continue(False)
        logger.debug("Approval gateway shut down")
