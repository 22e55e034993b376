import shlex
import sys
from pathlib import Path
from typing import List, Optional

from rambly_agent.application.daemon.schema.events import JoinedEvent, PeerInfo, PeersEvent, Position
from rambly_agent.config import RamblySettings
from rambly_agent.domain.errors import AlreadyRunning, SendFailure

FAKE_DAEMON = Path(__file__).resolve().parent / "fake_daemon.py"


def fake_daemon_command() -> str:
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(FAKE_DAEMON))}"


def make_settings(**overrides) -> RamblySettings:
    values = dict(
        daemon_command=fake_daemon_command(),
        join_timeout=5.0,
        stop_grace_period=0.05,
        status_refresh_delay=0.05,
        follow_interval=0.01,
    )
    values.update(overrides)
    return RamblySettings(**values)


class RecordingSender:
    """Stands in for ConnectionSupervisor.send"""

    def __init__(self):
        self.commands = []
        self.fail = False

    def __call__(self, command):
        if self.fail:
            raise SendFailure("Daemon not running")
        self.commands.append(command)

    @property
    def moves(self):
        return [c for c in self.commands if c.action == "move"]


class FakeSupervisor:
    """In-process supervisor that joins immediately and records commands"""

    def __init__(self, peers: Optional[List[PeerInfo]] = None):
        self.sent = RecordingSender()
        self.start_calls = 0
        self.stop_calls = 0
        self.process = None
        self.peers = peers or []
        self.on_event = None
        self.on_error = None
        self.on_exit = None

    @property
    def running(self) -> bool:
        return self.process is not None

    async def start(self, room: str, name: str, voice: Optional[str] = None):
        if self.process is not None:
            raise AlreadyRunning("Daemon already running. Leave first.")
        self.start_calls += 1
        self.process = object()
        self.on_event(JoinedEvent(room=room, peer_id="self-1"))

    def send(self, command):
        if self.process is None:
            raise SendFailure("Daemon not running")
        self.sent(command)
        if command.action == "peers":
            self.on_event(PeersEvent(peers=self.peers))

    async def stop(self):
        self.stop_calls += 1
        self.process = None

    def crash(self, code: int = 1):
        self.process = None
        self.on_exit(code)


def david(x=200, y=150, peer_id="p1") -> PeerInfo:
    return PeerInfo(id=peer_id, name="David", position=Position(x=x, y=y))
