"""Tests for the server supervisor against a real child process."""

from __future__ import annotations

import asyncio
import os
import sys
import tempfile
import unittest
from pathlib import Path

from mc_manager.broadcaster import Broadcaster, QueueBroadcaster
from mc_manager.models import ChatEvent, ServerEvent, ServerEventType, ServerState
from mc_manager.process_manager import (
    AlreadyRunning,
    EmptyCommand,
    NotRunning,
    ServerSupervisor,
    SpawnFailed,
)
from mc_manager.process_manager.supervisor import shutdown

FAKE_SERVER = Path(__file__).with_name("fake_server.py")
LAUNCH_COMMAND = f'"{sys.executable}" -u "{FAKE_SERVER}"'

LIST_OUTPUT = [
    "There are 2 of a max of 20 players online:",
    "Alice, Bob",
    "End of player list",
]


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    # An unreaped zombie still answers signal 0
    try:
        with open(f"/proc/{pid}/stat") as f:
            return f.read().rsplit(")", 1)[1].split()[0] != "Z"
    except OSError:
        return True


class _RecordingBroadcaster(Broadcaster):
    def __init__(self) -> None:
        self.chats: list[ChatEvent] = []
        self.exits: list[int | None] = []
        self.failures: list[str] = []

    def chat_message(self, event: ChatEvent) -> None:
        self.chats.append(event)

    def server_exited(self, code: int | None) -> None:
        self.exits.append(code)

    def server_start_failed(self, reason: str) -> None:
        self.failures.append(reason)


class ServerSupervisorTests(unittest.IsolatedAsyncioTestCase):
    """Lifecycle, command capture and event dispatch."""

    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.workdir = self._tmp.name
        self.broadcaster = _RecordingBroadcaster()
        self.supervisor = ServerSupervisor(broadcaster=self.broadcaster)

    async def asyncTearDown(self) -> None:
        await shutdown(self.supervisor, timeout=5.0)
        self._tmp.cleanup()

    async def _wait_until(self, predicate, timeout: float = 10.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                self.fail("condition not met before timeout")
            await asyncio.sleep(0.02)

    async def _start_ready(self):
        server = await self.supervisor.start(self.workdir, LAUNCH_COMMAND)
        await self._wait_until(
            lambda: any("Done" in line for line in self.supervisor.recent_output())
        )
        return server

    async def test_second_start_is_rejected(self) -> None:
        server = await self.supervisor.start(self.workdir, LAUNCH_COMMAND)
        with self.assertRaises(AlreadyRunning) as ctx:
            await self.supervisor.start(self.workdir, LAUNCH_COMMAND)
        self.assertEqual(ctx.exception.pid, server.pid)
        self.assertEqual(self.supervisor.state, ServerState.RUNNING)
        self.assertEqual(self.supervisor.pid, server.pid)

    async def test_operations_require_a_running_server(self) -> None:
        with self.assertRaises(NotRunning):
            self.supervisor.stop()
        with self.assertRaises(NotRunning):
            self.supervisor.kill()
        with self.assertRaises(NotRunning):
            self.supervisor.send_raw("say hi")
        with self.assertRaises(NotRunning):
            await self.supervisor.run_command("list", 0.1)
        self.assertEqual(self.supervisor.state, ServerState.STOPPED)

    async def test_spawn_failure_leaves_supervisor_stopped(self) -> None:
        missing = str(Path(self.workdir) / "does-not-exist")
        with self.assertRaises(SpawnFailed):
            await self.supervisor.start(missing, LAUNCH_COMMAND)
        self.assertEqual(self.supervisor.state, ServerState.STOPPED)
        self.assertEqual(len(self.broadcaster.failures), 1)

        # Still usable afterwards
        await self._start_ready()
        self.assertTrue(self.supervisor.is_running)

    async def test_run_command_captures_output_without_broadcasting(self) -> None:
        await self._start_ready()
        result = await self.supervisor.run_command("list", 0.5)

        self.assertEqual(result.command, "list")
        self.assertEqual(result.lines, LIST_OUTPUT)
        self.assertEqual(result.text, "\n".join(LIST_OUTPUT))
        self.assertEqual(result.line_count, 3)
        self.assertEqual(self.broadcaster.chats, [])
        self.assertFalse(self.supervisor.capture_active)

    async def test_chat_is_broadcast_outside_a_capture_window(self) -> None:
        await self._start_ready()
        self.supervisor.send_raw("chat Alice hello")
        await self._wait_until(lambda: self.broadcaster.chats)
        self.assertEqual(self.broadcaster.chats, [ChatEvent(speaker="Alice", message="hello")])

    async def test_chat_during_capture_window_is_captured_not_broadcast(self) -> None:
        await self._start_ready()
        result = await self.supervisor.run_command("chat Alice hi", 0.5)
        self.assertEqual(result.lines, ["<Alice> hi"])
        self.assertEqual(self.broadcaster.chats, [])

    async def test_say_echo_is_not_treated_as_chat(self) -> None:
        await self._start_ready()
        self.supervisor.send_raw("say <Bob> from discord")
        await self._wait_until(
            lambda: any("[Server]" in line for line in self.supervisor.recent_output())
        )
        self.assertEqual(self.broadcaster.chats, [])

    async def test_blank_commands_are_rejected(self) -> None:
        await self._start_ready()
        with self.assertRaises(EmptyCommand):
            await self.supervisor.run_command("   ")
        with self.assertRaises(EmptyCommand):
            self.supervisor.send_raw("")
        self.assertTrue(self.supervisor.is_running)

    async def test_embedded_newlines_are_sent_as_one_line(self) -> None:
        await self._start_ready()
        result = await self.supervisor.run_command("chat Alice hi\nstop", 0.5)
        self.assertEqual(result.lines, ["<Alice> hi stop"])
        self.assertTrue(self.supervisor.is_running)

    async def test_overlapping_commands_are_served_in_order(self) -> None:
        await self._start_ready()
        first, second = await asyncio.gather(
            self.supervisor.run_command("list", 0.4),
            self.supervisor.run_command("chat Bob yo", 0.4),
        )
        self.assertEqual(first.lines, LIST_OUTPUT)
        self.assertEqual(second.lines, ["<Bob> yo"])

    async def test_stop_reports_exit_and_allows_restart(self) -> None:
        await self._start_ready()
        self.supervisor.stop()
        self.assertTrue(await self.supervisor.wait_stopped(10.0))

        self.assertEqual(self.broadcaster.exits, [0])
        self.assertEqual(self.supervisor.state, ServerState.STOPPED)
        self.assertIsNone(self.supervisor.pid)

        await self._start_ready()
        self.assertTrue(self.supervisor.is_running)

    async def test_kill_reports_exit_and_cannot_repeat(self) -> None:
        await self._start_ready()
        self.supervisor.kill()
        self.assertTrue(await self.supervisor.wait_stopped(10.0))

        self.assertEqual(len(self.broadcaster.exits), 1)
        self.assertNotEqual(self.broadcaster.exits[0], 0)
        with self.assertRaises(NotRunning):
            self.supervisor.kill()

    @unittest.skipIf(os.name == "nt", "uses a POSIX shell background job")
    async def test_kill_takes_down_descendants(self) -> None:
        pid_file = Path(self.workdir) / "child.pid"
        launch = f"sleep 300 & echo $! > child.pid; {LAUNCH_COMMAND}"
        await self.supervisor.start(self.workdir, launch)
        await self._wait_until(
            lambda: any("Done" in line for line in self.supervisor.recent_output())
        )
        grandchild = int(pid_file.read_text().strip())
        self.assertTrue(_process_alive(grandchild))

        self.supervisor.kill()
        self.assertTrue(await self.supervisor.wait_stopped(10.0))
        await self._wait_until(lambda: not _process_alive(grandchild), timeout=5.0)

    async def test_cancelled_start_releases_the_slot(self) -> None:
        task = asyncio.create_task(self.supervisor.start(self.workdir, LAUNCH_COMMAND))
        await asyncio.sleep(0)
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task

        self.assertEqual(self.supervisor.state, ServerState.STOPPED)
        self.assertIsNone(self.supervisor.pid)
        with self.assertRaises(NotRunning):
            self.supervisor.stop()

        await self._start_ready()
        self.assertTrue(self.supervisor.is_running)
        # The process spawned by the cancelled start is killed and reaped
        await self._wait_until(lambda: not self.supervisor._reapers)

    async def test_failed_start_is_not_relayed_once_a_relay_attaches(self) -> None:
        broadcaster = QueueBroadcaster()
        supervisor = ServerSupervisor(broadcaster=broadcaster)
        with self.assertRaises(SpawnFailed):
            await supervisor.start(str(Path(self.workdir) / "missing"), LAUNCH_COMMAND)

        # The bot attaches its relay after the first successful start
        await supervisor.start(self.workdir, LAUNCH_COMMAND)
        queue = broadcaster.attach()
        supervisor.stop()
        self.assertTrue(await supervisor.wait_stopped(10.0))

        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        self.assertEqual(events, [ServerEvent(type=ServerEventType.EXITED, exit_code=0)])

    async def test_crash_is_reported_like_any_exit(self) -> None:
        await self._start_ready()
        self.supervisor.send_raw("crash")
        self.assertTrue(await self.supervisor.wait_stopped(10.0))

        self.assertEqual(self.broadcaster.exits, [1])
        self.assertIn("Exception in server tick loop", self.supervisor.recent_output())

    async def test_partial_line_does_not_leak_into_next_process(self) -> None:
        server = await self._start_ready()
        self.supervisor.send_raw("partial")
        self.assertTrue(await self.supervisor.wait_stopped(10.0))
        self.assertEqual(self.broadcaster.exits, [3])
        self.assertFalse(any(d.pending for d in server.decoders.values()))

        await self._start_ready()
        result = await self.supervisor.run_command("list", 0.5)
        self.assertEqual(result.lines, LIST_OUTPUT)

    async def test_status_reflects_running_server(self) -> None:
        self.assertEqual(self.supervisor.status()["state"], "stopped")
        server = await self._start_ready()
        status = self.supervisor.status()
        self.assertEqual(status["state"], "running")
        self.assertEqual(status["pid"], server.pid)
        self.assertEqual(status["cwd"], self.workdir)
        self.assertFalse(status["capture_active"])


if __name__ == "__main__":
    unittest.main()
