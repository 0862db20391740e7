"""Live subprocess handles used by approved commands.

POSIX commands run under a pseudo-terminal so interactive programs behave as
they would in a shell. Windows has no pty in the standard library, so there
the command runs with plain pipes in its own process group.
"""

from __future__ import annotations

import asyncio
import codecs
import os
import platform
import signal
import struct
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from loguru import logger

from mergemaster.approval_types import ProcessExit
from mergemaster.errors import ProcessError

_IS_WINDOWS = platform.system() == "Windows"

if not _IS_WINDOWS:
    import fcntl
    import pty
    import termios

DEFAULT_COLS = 120
DEFAULT_ROWS = 30
_READ_CHUNK = 4096

DataCallback = Callable[[str], None]
ExitCallback = Callable[[ProcessExit], None]


@runtime_checkable
class ProcessSession(Protocol):
    @property
    def pid(self) -> int | None: ...

    @property
    def exited(self) -> bool: ...

    def write(self, data: str) -> None: ...

    def resize(self, cols: int, rows: int) -> None: ...

    def dispose(self) -> None: ...

    async def wait(self) -> ProcessExit: ...


class _TimedSession(ABC):
    """Exit bookkeeping shared by both implementations.

    Owns the single-shot timeout handle and guarantees ``on_exit`` fires once.
    """

    def __init__(self, timeout_seconds: float | None, on_data: DataCallback, on_exit: ExitCallback | None):
        self._loop = asyncio.get_running_loop()
        self._on_data = on_data
        self._on_exit = on_exit
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._timed_out = False
        self._exit: asyncio.Future[ProcessExit] = self._loop.create_future()
        self._timer: asyncio.TimerHandle | None = None
        if timeout_seconds and timeout_seconds > 0:
            self._timer = self._loop.call_later(timeout_seconds, self._on_timeout)

    @property
    def exited(self) -> bool:
        return self._exit.done()

    async def wait(self) -> ProcessExit:
        return await asyncio.shield(self._exit)

    def _emit(self, chunk: bytes, final: bool = False) -> None:
        text = self._decoder.decode(chunk, final=final)
        if text:
            self._on_data(text)

    def _on_timeout(self) -> None:
        self._timer = None
        if self.exited:
            return
        logger.warning(f"Process {self.pid} timed out, killing it")
        self._timed_out = True
        self._kill()

    def _finish(self, returncode: int | None) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._exit.done():
            return
        if returncode is not None and returncode < 0:
            result = ProcessExit(exit_code=None, signal=-returncode, timed_out=self._timed_out)
        else:
            result = ProcessExit(exit_code=returncode, timed_out=self._timed_out)
        self._exit.set_result(result)
        logger.debug(f"Process {self.pid} exited: {result}")
        if self._on_exit is not None:
            self._on_exit(result)

    def dispose(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self.exited:
            self._kill()

    @property
    @abstractmethod
    def pid(self) -> int | None: ...

    @abstractmethod
    def _kill(self) -> None: ...


class PtyProcessSession(_TimedSession):
    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        master_fd: int,
        timeout_seconds: float | None,
        on_data: DataCallback,
        on_exit: ExitCallback | None,
    ):
        super().__init__(timeout_seconds, on_data, on_exit)
        self._proc = proc
        self._master_fd: int | None = master_fd
        os.set_blocking(master_fd, False)
        self._loop.add_reader(master_fd, self._on_readable)
        self._waiter = asyncio.ensure_future(self._wait_for_exit())

    @classmethod
    async def spawn(
        cls,
        command: str,
        cwd: str | None,
        timeout_seconds: float | None,
        on_data: DataCallback,
        on_exit: ExitCallback | None = None,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
    ) -> PtyProcessSession:
        shell = os.environ.get("SHELL") or "/bin/sh"
        master_fd, slave_fd = pty.openpty()
        try:
            _set_winsize(slave_fd, cols, rows)
            proc = await asyncio.create_subprocess_exec(
                shell,
                "-lc",
                command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env={**os.environ, "TERM": os.environ.get("TERM", "xterm-256color")},
                start_new_session=True,
            )
        except OSError as ex:
            os.close(master_fd)
            raise ProcessError(f"Failed to start command: {ex}") from ex
        finally:
            os.close(slave_fd)
        logger.debug(f"Spawned pty process {proc.pid}: {command}")
        return cls(proc, master_fd, timeout_seconds, on_data, on_exit)

    @property
    def pid(self) -> int | None:
        return self._proc.pid

    def _on_readable(self) -> None:
        if self._master_fd is None:
            return
        try:
            chunk = os.read(self._master_fd, _READ_CHUNK)
        except BlockingIOError:
            return
        except OSError:
            # EIO once the child side of the pty is gone.
            chunk = b""
        if not chunk:
            self._loop.remove_reader(self._master_fd)
            return
        self._emit(chunk)

    def _drain_and_close(self) -> None:
        fd = self._master_fd
        if fd is None:
            return
        self._master_fd = None
        self._loop.remove_reader(fd)
        while True:
            try:
                chunk = os.read(fd, _READ_CHUNK)
            except OSError:
                break
            if not chunk:
                break
            self._emit(chunk)
        self._emit(b"", final=True)
        os.close(fd)

    async def _wait_for_exit(self) -> None:
        returncode = await self._proc.wait()
        self._drain_and_close()
        self._finish(returncode)

    def write(self, data: str) -> None:
        if self._master_fd is None:
            raise ProcessError("Process has exited")
        try:
            os.write(self._master_fd, data.encode())
        except OSError as ex:
            raise ProcessError(f"Failed to write to process {self.pid}: {ex}") from ex

    def resize(self, cols: int, rows: int) -> None:
        if self._master_fd is None:
            raise ProcessError("Process has exited")
        try:
            _set_winsize(self._master_fd, cols, rows)
        except OSError as ex:
            raise ProcessError(f"Failed to resize process {self.pid}: {ex}") from ex

    def _kill(self) -> None:
        try:
            os.killpg(self._proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            self._proc.kill()


class PipeProcessSession(_TimedSession):
    def __init__(
        self,
        proc: asyncio.subprocess.Process,
        timeout_seconds: float | None,
        on_data: DataCallback,
        on_exit: ExitCallback | None,
    ):
        super().__init__(timeout_seconds, on_data, on_exit)
        self._proc = proc
        self._waiter = asyncio.ensure_future(self._pump())

    @classmethod
    async def spawn(
        cls,
        command: str,
        cwd: str | None,
        timeout_seconds: float | None,
        on_data: DataCallback,
        on_exit: ExitCallback | None = None,
        cols: int = DEFAULT_COLS,
        rows: int = DEFAULT_ROWS,
    ) -> PipeProcessSession:
        try:
            proc = await asyncio.create_subprocess_exec(
                os.environ.get("COMSPEC", "cmd.exe"),
                "/d",
                "/s",
                "/c",
                command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=cwd,
                creationflags=subprocess.CREATE_NEW_PROCESS_GROUP,
            )
        except OSError as ex:
            raise ProcessError(f"Failed to start command: {ex}") from ex
        logger.debug(f"Spawned process {proc.pid}: {command}")
        return cls(proc, timeout_seconds, on_data, on_exit)

    @property
    def pid(self) -> int | None:
        return self._proc.pid

    async def _pump(self) -> None:
        assert self._proc.stdout is not None
        while True:
            chunk = await self._proc.stdout.read(_READ_CHUNK)
            if not chunk:
                break
            self._emit(chunk)
        self._emit(b"", final=True)
        returncode = await self._proc.wait()
        self._finish(returncode)

    def write(self, data: str) -> None:
        if self._proc.stdin is None or self.exited:
            raise ProcessError("Process has exited")
        try:
            self._proc.stdin.write(data.encode())
        except (OSError, RuntimeError) as ex:
            raise ProcessError(f"Failed to write to process {self.pid}: {ex}") from ex

    def resize(self, cols: int, rows: int) -> None:
        # Pipes have no window size.
        return None

    def _kill(self) -> None:
        try:
            self._proc.kill()
        except ProcessLookupError:
            pass


def _set_winsize(fd: int, cols: int, rows: int) -> None:
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))


async def spawn_process_session(
    command: str,
    cwd: str | None,
    *,
    timeout_seconds: float | None,
    on_data: DataCallback,
    on_exit: ExitCallback | None = None,
    cols: int = DEFAULT_COLS,
    rows: int = DEFAULT_ROWS,
) -> ProcessSession:
    factory = PipeProcessSession if _IS_WINDOWS else PtyProcessSession
    return await factory.spawn(command, cwd, timeout_seconds, on_data, on_exit, cols, rows)
