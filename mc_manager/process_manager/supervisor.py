"""Server Supervisor — spawns and manages the single game server process."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from mc_manager.broadcaster import Broadcaster, LoggingBroadcaster
from mc_manager.models import CommandResult, ServerState

from .capture import CaptureWindow
from .classifier import extract_chat, strip_metadata
from .decoder import LineDecoder
from .errors import (
    AlreadyRunning,
    EmptyCommand,
    NotRunning,
    SpawnFailed,
    SupervisorError,
    WriteFailed,
)

log = logging.getLogger(__name__)

# Raw server output is logged here, stdout at INFO and stderr at WARNING.
console_log = logging.getLogger("mc_manager.console")

DEFAULT_CAPTURE_WINDOW = 1.0  # seconds
STOP_LINE = "stop"
READ_CHUNK = 4096
HISTORY_LINES = 500
# How long to wait for the output readers to hit EOF once the process has
# exited.  A descendant that inherited the pipes can hold them open.
EOF_GRACE = 5.0  # seconds

# (stream name, line), or None once the process has exited
_LineItem = tuple[str, str] | None


@dataclass
class ServerProcess:
    """State for the one supervised server process."""

    launch_command: str
    cwd: str
    pid: int | None = None
    exit_code: int | None = None
    exited: bool = False
    start_time: float = field(default_factory=time.time)
    decoders: dict[str, LineDecoder] = field(default_factory=dict)
    _process: asyncio.subprocess.Process | None = field(default=None, repr=False)
    _lines: asyncio.Queue[_LineItem] = field(default_factory=asyncio.Queue, repr=False)
    _readers: list[asyncio.Task[None]] = field(default_factory=list, repr=False)
    _tasks: list[asyncio.Task[None]] = field(default_factory=list, repr=False)


def _spawn_kwargs() -> dict[str, Any]:
    # Put the server in its own process group so kill() can take down the
    # launch script together with the JVM it starts.
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _kill_tree(pid: int) -> None:
    if os.name == "nt":
        # taskkill runs detached; the exit waiter reports the outcome.
        subprocess.Popen(
            ["taskkill", "/PID", str(pid), "/T", "/F"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
        return
    os.killpg(os.getpgid(pid), signal.SIGKILL)


class ServerSupervisor:
    """Owns the server process, its output decoding and command capture.

    All methods must be called from the event loop the server was started
    on.  ``stop``, ``kill`` and ``send_raw`` never suspend; their effects
    show up later as output lines or as the ``server_exited`` event.
    """

    def __init__(
        self,
        broadcaster: Broadcaster | None = None,
        encoding: str = "utf-8",
        history_lines: int = HISTORY_LINES,
    ) -> None:
        self.broadcaster = broadcaster or LoggingBroadcaster()
        self.encoding = encoding
        self._state = ServerState.STOPPED
        self._server: ServerProcess | None = None
        self._capture = CaptureWindow()
        self._command_lock = asyncio.Lock()
        self._history: deque[str] = deque(maxlen=history_lines)
        self._stopped = asyncio.Event()
        self._stopped.set()
        # wait() tasks for processes abandoned by a cancelled start()
        self._reapers: set[asyncio.Future[int]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def pid(self) -> int | None:
        return self._server.pid if self._server else None

    @property
    def is_running(self) -> bool:
        return self._state == ServerState.RUNNING

    @property
    def capture_active(self) -> bool:
        return self._capture.active

    async def start(
        self,
        working_directory: str | Path,
        launch_command: str,
    ) -> ServerProcess:
        """Launch the server through the shell and return without waiting for it.

        Readiness is not tracked; callers watch the console output.
        """
        if self._server is not None:
            raise AlreadyRunning(self._server.pid)

        server = ServerProcess(
            launch_command=launch_command,
            cwd=str(working_directory),
        )
        # Claim the slot before the first await so a concurrent start() fails.
        self._server = server
        self._state = ServerState.STARTING
        self._stopped.clear()
        self._history.clear()

        log.info("Starting server: %s (cwd=%s)", launch_command, server.cwd)
        try:
            if not os.path.isdir(server.cwd):
                raise FileNotFoundError(f"Working directory does not exist: {server.cwd}")
            spawn = asyncio.ensure_future(asyncio.create_subprocess_shell(
                launch_command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=server.cwd,
                **_spawn_kwargs(),
            ))
            # Shielded so a cancelled start() can still reach the process it spawned.
            process = await asyncio.shield(spawn)
        except asyncio.CancelledError:
            log.warning("Server start cancelled")
            self._release_slot()
            spawn.add_done_callback(self._discard_spawn)
            raise
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            log.error("Failed to start server: %s", reason)
            self._release_slot()
            self._notify(self.broadcaster.server_start_failed, reason)
            raise SpawnFailed(reason) from exc

        server._process = process
        server.pid = process.pid
        self._state = ServerState.RUNNING

        # One reader per stream, one dispatcher for both
        for name, stream in (("stdout", process.stdout), ("stderr", process.stderr)):
            decoder = LineDecoder(self.encoding)
            server.decoders[name] = decoder
            server._readers.append(asyncio.create_task(
                self._read_stream(stream, decoder, name, server._lines),  # type: ignore[arg-type]
                name=f"server-{name}",
            ))
        server._tasks = [
            asyncio.create_task(self._dispatch(server), name="server-dispatch"),
            asyncio.create_task(self._wait_for_exit(server), name="server-waiter"),
        ]

        log.info("Server started (pid=%s)", process.pid)
        return server

    def stop(self) -> None:
        """Ask the server to shut down by typing ``stop`` into its console."""
        server = self._require_running()
        log.info("Sending stop to server (pid=%s)", server.pid)
        self._write_line(server, STOP_LINE)

    def kill(self) -> None:
        """Forcibly terminate the server and everything it spawned."""
        server = self._require_running()
        log.warning("Killing server process tree (pid=%s)", server.pid)
        try:
            _kill_tree(server.pid)  # type: ignore[arg-type]
        except ProcessLookupError as exc:
            raise NotRunning() from exc
        except OSError as exc:
            raise SupervisorError(f"Failed to kill server: {exc}") from exc

    async def run_command(
        self,
        text: str,
        window: float = DEFAULT_CAPTURE_WINDOW,
    ) -> CommandResult:
        """Type a console command and collect what the server prints for ``window`` seconds.

        Calls are served one at a time; a second caller waits until the
        first window has closed.
        """
        self._require_running()
        if not text.strip():
            raise EmptyCommand()

        async with self._command_lock:
            # The server may have exited while we were queued.
            server = self._require_running()
            self._capture.open()
            try:
                self._write_line(server, text)
                await asyncio.sleep(window)
            finally:
                lines = self._capture.close()

        log.debug("Command %r captured %d line(s)", text, len(lines))
        return CommandResult(command=text.strip(), lines=lines)

    def send_raw(self, text: str) -> None:
        """Write a console line without capturing any reply."""
        server = self._require_running()
        if not text.strip():
            raise EmptyCommand()
        self._write_line(server, text)

    async def wait_stopped(self, timeout: float | None = None) -> bool:
        """Wait until no server is running. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def recent_output(self, tail: int = 50) -> list[str]:
        """Return the last ``tail`` console lines of the current (or last) server."""
        if tail <= 0:
            return []
        return list(self._history)[-tail:]

    def status(self) -> dict[str, Any]:
        server = self._server
        result: dict[str, Any] = {
            "state": self._state.value,
            "pid": None,
            "launch_command": None,
            "cwd": None,
            "uptime_seconds": None,
            "capture_active": self._capture.active,
        }
        if server is not None:
            result.update(
                pid=server.pid,
                launch_command=server.launch_command,
                cwd=server.cwd,
                uptime_seconds=round(time.time() - server.start_time, 1),
            )
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _release_slot(self) -> None:
        self._server = None
        self._state = ServerState.STOPPED
        self._stopped.set()

    def _discard_spawn(self, spawn: asyncio.Future[asyncio.subprocess.Process]) -> None:
        """Kill a process whose start() was cancelled before it could be tracked."""
        if spawn.cancelled() or spawn.exception() is not None:
            return
        process = spawn.result()
        log.warning("Killing server left by cancelled start (pid=%s)", process.pid)
        try:
            _kill_tree(process.pid)
        except ProcessLookupError:
            log.debug("Process %s already gone", process.pid)
        except OSError:
            log.exception("Failed to kill server left by cancelled start (pid=%s)", process.pid)
        reaper = asyncio.ensure_future(process.wait())
        self._reapers.add(reaper)
        reaper.add_done_callback(self._reapers.discard)

    def _require_running(self) -> ServerProcess:
        server = self._server
        if server is None or server._process is None or server.exited:
            raise NotRunning()
        return server

    def _write_line(self, server: ServerProcess, text: str) -> None:
        # One console line per call: embedded line breaks would smuggle in
        # extra commands.
        line = " ".join(text.splitlines()).strip()
        stdin = server._process.stdin if server._process else None
        if stdin is None or stdin.is_closing():
            raise WriteFailed("console input is closed")
        try:
            stdin.write((line + "\n").encode(self.encoding, errors="replace"))
        except (OSError, RuntimeError) as exc:
            raise WriteFailed(str(exc)) from exc

    def _notify(self, callback: Callable[..., None], *args: Any) -> None:
        try:
            callback(*args)
        except Exception:
            log.exception("Broadcaster failed in %s", getattr(callback, "__name__", callback))

    @staticmethod
    async def _read_stream(
        stream: asyncio.StreamReader,
        decoder: LineDecoder,
        name: str,
        lines: asyncio.Queue[_LineItem],
    ) -> None:
        """Decode an output stream and forward complete lines to the dispatcher."""
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            for line in decoder.feed(chunk):
                lines.put_nowait((name, line))

    async def _wait_for_exit(self, server: ServerProcess) -> None:
        """Wait for the process to exit, let the readers drain, then mark the end of output."""
        proc = server._process
        if proc is None:
            return
        server.exit_code = await proc.wait()
        server.exited = True

        done, pending = await asyncio.wait(server._readers, timeout=EOF_GRACE)
        for task in pending:
            log.warning("Output reader %s still open after exit, cancelling", task.get_name())
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                log.error("Output reader %s failed: %r", task.get_name(), task.exception())

        server._lines.put_nowait(None)

    async def _dispatch(self, server: ServerProcess) -> None:
        """Classify lines in arrival order, then run the exit path."""
        while True:
            item = await server._lines.get()
            if item is None:
                break
            stream, line = item
            self._handle_line(stream, line)
        self._on_exit(server)

    def _handle_line(self, stream: str, line: str) -> None:
        if not line.strip():
            return
        if stream == "stderr":
            console_log.warning("%s", line)
        else:
            console_log.info("%s", line)
        self._history.append(line)

        if self._capture.feed(strip_metadata(line)):
            return

        chat = extract_chat(line)
        if chat is not None:
            self._notify(self.broadcaster.chat_message, chat)

    def _on_exit(self, server: ServerProcess) -> None:
        if self._server is not server:
            return
        for decoder in server.decoders.values():
            decoder.reset()
        self._server = None
        self._state = ServerState.STOPPED
        self._stopped.set()

        log.info("Server exited (pid=%s, code=%s)", server.pid, server.exit_code)
        self._notify(self.broadcaster.server_exited, server.exit_code)


async def shutdown(supervisor: ServerSupervisor, timeout: float = 60.0) -> None:
    """Stop the server, escalating to kill if it has not exited within ``timeout``."""
    if not supervisor.is_running:
        return
    try:
        supervisor.stop()
    except SupervisorError as exc:
        log.warning("Graceful stop failed: %s", exc)
    else:
        if await supervisor.wait_stopped(timeout):
            return
        log.warning("Server did not stop within %.0fs", timeout)

    try:
        supervisor.kill()
    except NotRunning:
        return
    await supervisor.wait_stopped(EOF_GRACE * 2)
