import asyncio
import os
import unittest
from unittest.mock import patch

from rambly_agent.application.daemon.connection_supervisor import ConnectionSupervisor
from rambly_agent.application.daemon.schema.commands import MoveCommand, SpeakCommand, StatusCommand
from rambly_agent.domain.errors import AlreadyRunning, SendFailure, SpawnFailure, SpawnTimeout
from tests.support import fake_daemon_command


async def wait_until(predicate, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class ConnectionSupervisorTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.supervisor = ConnectionSupervisor(fake_daemon_command(), join_timeout=5.0, stop_grace_period=0.05)
        self.events = []
        self.errors = []
        self.exits = []
        self.stderr = []
        self.supervisor.on_event = self.events.append
        self.supervisor.on_error = self.errors.append
        self.supervisor.on_exit = self.exits.append
        self.supervisor.on_stderr = self.stderr.append

    async def asyncTearDown(self):
        await self.supervisor.stop()

    def event_types(self):
        return [e.event for e in self.events]

    def test_build_args(self):
        supervisor = ConnectionSupervisor("npx tsx 'my client.ts'")
        self.assertEqual(
            supervisor.build_args("lobby", "Agent", "nova"),
            ["npx", "tsx", "my client.ts", "daemon", "lobby", "--name", "Agent", "--json", "--voice", "nova"],
        )
        self.assertNotIn("--voice", supervisor.build_args("lobby", "Agent"))

    async def test_start_resolves_on_joined(self):
        await self.supervisor.start("lobby", "Agent", voice="nova")
        self.assertTrue(self.supervisor.ready)
        self.assertTrue(self.supervisor.running)
        self.assertEqual(self.event_types(), ["joined"])
        self.assertEqual(self.events[0].room, "lobby")

    async def test_second_start_is_rejected(self):
        await self.supervisor.start("lobby", "Agent")
        with self.assertRaises(AlreadyRunning):
            await self.supervisor.start("lobby", "Agent")

    async def test_commands_round_trip_in_order(self):
        await self.supervisor.start("lobby", "Agent")
        self.supervisor.send(MoveCommand(x=10, y=20))
        self.supervisor.send(StatusCommand())
        await wait_until(lambda: "status" in self.event_types())
        self.assertEqual(self.event_types(), ["joined", "moved", "status"])
        self.assertEqual((self.events[1].x, self.events[1].y), (10, 20))

    async def test_error_events_go_to_error_callback(self):
        await self.supervisor.start("lobby", "Agent")
        self.supervisor.send(SpeakCommand(text="hi"))
        await wait_until(lambda: self.errors)
        self.assertEqual(self.errors, ["tts unavailable"])
        self.assertTrue(self.supervisor.running)

    async def test_garbage_output_is_ignored(self):
        with patch.dict(os.environ, {"FAKE_DAEMON_MODE": "garbage"}):
            await self.supervisor.start("lobby", "Agent")
        self.assertEqual(self.event_types(), ["joined"])

    async def test_oversized_line_is_dropped_and_reading_continues(self):
        with patch.dict(os.environ, {"FAKE_DAEMON_MODE": "flood"}):
            await self.supervisor.start("lobby", "Agent")
        self.supervisor.send(SpeakCommand(text="still here"))
        await wait_until(lambda: "spoke" in self.event_types())

        self.assertEqual(self.event_types(), ["joined", "spoke"])
        self.assertEqual(self.events[1].text, "still here")

    async def test_failing_callbacks_do_not_stop_reading(self):
        def explode(*args):
            raise RuntimeError("boom")

        self.supervisor.on_error = explode
        self.supervisor.on_stderr = explode
        await self.supervisor.start("lobby", "Agent")
        self.supervisor.send(SpeakCommand(text="one"))
        self.supervisor.send(SpeakCommand(text="two"))
        await wait_until(lambda: self.event_types().count("spoke") == 2)

        spoken = [e.text for e in self.events if e.event == "spoke"]
        self.assertEqual(spoken, ["one", "two"])
        self.assertTrue(self.supervisor.running)

    async def test_failing_exit_handler_still_clears_process(self):
        def explode(code):
            self.exits.append(code)
            raise RuntimeError("boom")

        self.supervisor.on_exit = explode
        with patch.dict(os.environ, {"FAKE_DAEMON_MODE": "die"}):
            await self.supervisor.start("lobby", "Agent")
        self.supervisor.send(SpeakCommand(text="hi"))
        await wait_until(lambda: self.exits)

        self.assertIsNone(self.supervisor.process)
        await self.supervisor.start("lobby", "Agent")
        self.assertTrue(self.supervisor.ready)

    async def test_stderr_is_forwarded(self):
        await self.supervisor.start("lobby", "Agent")
        await wait_until(lambda: self.stderr)
        self.assertIn("fake daemon starting as Agent", self.stderr[0])

    async def test_silent_daemon_times_out_and_is_killed(self):
        self.supervisor.join_timeout = 0.3
        with patch.dict(os.environ, {"FAKE_DAEMON_MODE": "silent"}):
            with self.assertRaises(SpawnTimeout):
                await self.supervisor.start("lobby", "Agent")
        self.assertFalse(self.supervisor.running)
        self.assertIsNone(self.supervisor.process)
        with self.assertRaises(SendFailure):
            self.supervisor.send(StatusCommand())

    async def test_daemon_exiting_before_join_is_a_spawn_failure(self):
        with patch.dict(os.environ, {"FAKE_DAEMON_MODE": "crash"}):
            with self.assertRaises(SpawnFailure):
                await self.supervisor.start("lobby", "Agent")
        self.assertIsNone(self.supervisor.process)
        self.assertEqual(self.exits, [])

    async def test_missing_binary_is_a_spawn_failure(self):
        supervisor = ConnectionSupervisor("/nonexistent/rambly-client")
        with self.assertRaises(SpawnFailure):
            await supervisor.start("lobby", "Agent")
        self.assertIsNone(supervisor.process)

    async def test_send_without_process_fails(self):
        with self.assertRaises(SendFailure):
            self.supervisor.send(StatusCommand())

    async def test_stop_sends_leave_and_clears_state(self):
        await self.supervisor.start("lobby", "Agent")
        process = self.supervisor.process
        await self.supervisor.stop()

        self.assertIsNone(self.supervisor.process)
        self.assertFalse(self.supervisor.ready)
        self.assertIsNotNone(process.returncode)
        self.assertEqual(self.exits, [])

    async def test_stop_without_process_is_noop(self):
        await self.supervisor.stop()
        self.assertIsNone(self.supervisor.process)

    async def test_unexpected_exit_is_reported_without_restart(self):
        with patch.dict(os.environ, {"FAKE_DAEMON_MODE": "die"}):
            await self.supervisor.start("lobby", "Agent")
        self.supervisor.send(SpeakCommand(text="hi"))
        await wait_until(lambda: self.exits)

        self.assertEqual(self.exits, [7])
        self.assertFalse(self.supervisor.ready)
        self.assertFalse(self.supervisor.running)
        self.assertIsNone(self.supervisor.process)

    def test_handle_line_skips_blank_and_malformed(self):
        self.supervisor.handle_line("")
        self.supervisor.handle_line("   ")
        self.supervisor.handle_line("{oops")
        self.supervisor.handle_line('{"event": "left"}')
        self.assertEqual(self.event_types(), ["left"])
        self.assertFalse(self.supervisor.ready)


if __name__ == "__main__":
    unittest.main()
