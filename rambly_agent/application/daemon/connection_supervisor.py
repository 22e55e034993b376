from typing import Callable, List, Optional
import asyncio
import os
import shlex
import structlog

from .schema.commands import BaseCommand, LeaveCommand
from .schema.events import BaseEvent, EventType, parse_event
from rambly_agent.domain.errors import (
    AlreadyRunning, ProtocolParseError, SendFailure, SpawnFailure, SpawnTimeout
)

logger = structlog.get_logger(__name__)

# Room rosters arrive as a single line
STREAM_LIMIT = 1024 * 1024


class ConnectionSupervisor:
    """Owns the room client process for one room membership.

    The process speaks newline-delimited JSON: commands on stdin, events on
    stdout. There is no automatic restart; when the process dies the exit
    callback fires and it is up to the owner to start again.
    """

    def __init__(
        self,
        command: str,
        join_timeout: float = 15.0,
        stop_grace_period: float = 0.5,
    ):
        self.command = command
        self.join_timeout = join_timeout
        self.stop_grace_period = stop_grace_period
        self.process: Optional[asyncio.subprocess.Process] = None
        self._ready = False
        self._stopping = False
        self._joined: Optional[asyncio.Future] = None
        self._reader_tasks: List[asyncio.Task] = []

        self.on_event: Optional[Callable[[BaseEvent], None]] = None
        self.on_error: Optional[Callable[[str], None]] = None
        self.on_exit: Optional[Callable[[Optional[int]], None]] = None
        self.on_stderr: Optional[Callable[[str], None]] = None

    @property
    def ready(self) -> bool:
        return self._ready

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def build_args(self, room: str, name: str, voice: Optional[str] = None) -> List[str]:
        """Command line for the room client"""
        args = shlex.split(self.command)
        args.extend(["daemon", room, "--name", name, "--json"])
        if voice:
            args.extend(["--voice", voice])
        return args

    async def start(self, room: str, name: str, voice: Optional[str] = None):
        """Launch the room client and wait until it reports that it joined"""

        if self.process is not None:
            raise AlreadyRunning("Daemon already running. Leave first.")

        args = self.build_args(room, name, voice)
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=os.environ.copy(),
                limit=STREAM_LIMIT,
            )
        except (OSError, ValueError) as e:
            logger.error("Failed to launch daemon", command=args[0] if args else None, error=str(e))
            raise SpawnFailure(f"Could not launch daemon: {e}") from e

        self.process = process
        self._joined = asyncio.get_running_loop().create_future()
        self._reader_tasks = [
            asyncio.create_task(self._read_stdout(process)),
            asyncio.create_task(self._read_stderr(process)),
        ]
        logger.info("Daemon launched", room=room, name=name, pid=process.pid)

        try:
            await asyncio.wait_for(self._joined, timeout=self.join_timeout)
        except asyncio.TimeoutError:
            logger.warning("Daemon did not join in time", room=room, timeout=self.join_timeout)
            await self._terminate()
            raise SpawnTimeout(
                f"Daemon failed to join room within {self.join_timeout:g} seconds"
            ) from None
        except SpawnFailure:
            await self._terminate()
            raise

    def send(self, command: BaseCommand):
        """Write one command line to the daemon"""

        process = self.process
        if process is None or process.stdin is None or process.stdin.is_closing():
            raise SendFailure("Daemon not running")

        process.stdin.write((command.encode() + "\n").encode("utf-8"))

    async def stop(self):
        """Ask the daemon to leave, then terminate it after a short grace period"""

        if self.process is None:
            return

        self._stopping = True
        try:
            self.send(LeaveCommand())
        except SendFailure:
            pass

        await asyncio.sleep(self.stop_grace_period)
        await self._terminate()
        logger.info("Daemon stopped")

    def handle_line(self, line: str):
        """Process one stdout line from the daemon"""

        line = line.strip()
        if not line:
            return

        try:
            event = parse_event(line)
        except ProtocolParseError as e:
            logger.debug("Discarding daemon output", line=line[:200], error=e.message)
            return

        if self.on_event is not None:
            try:
                self.on_event(event)
            except Exception:
                logger.exception("Error in daemon event handler", event_type=event.event)

        if event.event == EventType.JOINED:
            self._ready = True
            if self._joined is not None and not self._joined.done():
                self._joined.set_result(event)

        elif event.event == EventType.ERROR:
            if self.on_error is not None:
                try:
                    self.on_error(event.message)
                except Exception:
                    logger.exception("Error in daemon error handler", message=event.message)

        elif event.event == EventType.LEFT:
            self._ready = False

    async def _read_stdout(self, process: asyncio.subprocess.Process):
        while True:
            try:
                raw = await process.stdout.readline()
            except (ValueError, asyncio.LimitOverrunError) as e:
                # The reader has already dropped the buffered part; any tail
                # up to the next newline fails to parse and is discarded
                logger.warning("Discarding oversized daemon line", limit=STREAM_LIMIT, error=str(e))
                continue
            if not raw:
                break
            self.handle_line(raw.decode("utf-8", errors="replace"))

        code = await process.wait()

        if self._joined is not None and not self._joined.done():
            self._joined.set_exception(SpawnFailure(f"Daemon exited with code {code} before joining"))
            return

        if process is self.process and not self._stopping:
            # Nobody asked it to stop
            self.process = None
            self._ready = False
            logger.warning("Daemon exited unexpectedly", exit_code=code)
            if self.on_exit is not None:
                try:
                    self.on_exit(code)
                except Exception:
                    logger.exception("Error in daemon exit handler", exit_code=code)

    async def _read_stderr(self, process: asyncio.subprocess.Process):
        while True:
            try:
                raw = await process.stderr.readline()
            except (ValueError, asyncio.LimitOverrunError) as e:
                logger.debug("Discarding oversized daemon stderr line", error=str(e))
                continue
            if not raw:
                break
            line = raw.decode("utf-8", errors="replace").rstrip()
            logger.debug("Daemon stderr", line=line)
            if self.on_stderr is not None:
                try:
                    self.on_stderr(line)
                except Exception:
                    logger.exception("Error in daemon stderr handler")

    async def _terminate(self):
        process, self.process = self.process, None
        self._ready = False
        self._joined = None

        if process is not None and process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=2.0)
            except asyncio.TimeoutError:
                logger.warning("Daemon ignored SIGTERM, killing", pid=process.pid)
                process.kill()
                await process.wait()

        tasks, self._reader_tasks = self._reader_tasks, []
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._stopping = False
