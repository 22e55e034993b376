from typing import Callable, List, Optional
import asyncio
import structlog

from rambly_agent.application.daemon.connection_supervisor import ConnectionSupervisor
from rambly_agent.application.daemon.schema.commands import (
    MoveCommand, PeersCommand, SpeakCommand, StatusCommand
)
from rambly_agent.application.daemon.schema.events import Position
from rambly_agent.config import RamblySettings
from rambly_agent.domain.errors import (
    AlreadyConnected, AlreadyRunning, CommandResult, NotConnected, RamblyError
)
from rambly_agent.domain.models.room_state import RoomState, ConnectionStatus
from rambly_agent.domain.routing.event_router import EventRouter, TranscriptHandler
from rambly_agent.domain.spatial.follow_engine import FollowEngine
from rambly_agent.domain.spatial.proximity import ProximityFilter, distance
from rambly_agent.infrastructure.observability.logging import (
    bind_room_context, clear_room_context, room_logger, metrics
)

logger = structlog.get_logger(__name__)


class RoomManager:
    """Command surface for one room membership.

    Every public operation returns a CommandResult rather than raising, so a
    calling layer can hand the message straight back to whoever asked.
    """

    def __init__(
        self,
        settings: Optional[RamblySettings] = None,
        supervisor: Optional[ConnectionSupervisor] = None,
    ):
        self.settings = settings or RamblySettings()
        self.state = RoomState.initial(
            Position(x=self.settings.initial_x, y=self.settings.initial_y)
        )
        self.supervisor = supervisor or ConnectionSupervisor(
            command=self.settings.daemon_command,
            join_timeout=self.settings.join_timeout,
            stop_grace_period=self.settings.stop_grace_period,
        )
        self.proximity_filter = ProximityFilter(self.settings.hearing_radius)
        self.follow_engine = FollowEngine(
            self.state,
            self.supervisor.send,
            follow_distance=self.settings.follow_distance,
            step_size=self.settings.follow_step_size,
            interval=self.settings.follow_interval,
        )
        self.router = EventRouter(self.state, self.follow_engine, self.proximity_filter)

        self._error_handler: Optional[Callable[[str], None]] = None
        self._exit_handler: Optional[Callable[[Optional[int]], None]] = None

        self.supervisor.on_event = self.router.route
        self.supervisor.on_error = self._handle_daemon_error
        self.supervisor.on_exit = self._handle_daemon_exit

    # --- Callbacks ---

    def set_transcript_handler(self, handler: Optional[TranscriptHandler]):
        """Register the single transcript callback (from_id, name, text, distance)"""
        self.router.set_transcript_handler(handler)

    def set_error_handler(self, handler: Optional[Callable[[str], None]]):
        self._error_handler = handler

    def set_exit_handler(self, handler: Optional[Callable[[Optional[int]], None]]):
        self._exit_handler = handler

    def _handle_daemon_error(self, message: str):
        if self._error_handler is not None:
            self._error_handler(message)

    def _handle_daemon_exit(self, code: Optional[int]):
        # No reconnect: keep the stale snapshot, drop to disconnected until re-join
        self.follow_engine.stop(reason="daemon_exit")
        self.state.status = ConnectionStatus.DISCONNECTED
        logger.warning("Room connection lost", room=self.state.room, exit_code=code)
        if self._exit_handler is not None:
            self._exit_handler(code)

    # --- Public API ---

    async def join(self, room: str, name: Optional[str] = None) -> CommandResult:
        if self.state.connected and not self.supervisor.running:
            logger.info("Discarding stale room state before re-join", room=self.state.room)
            self.state.reset()

        if self.state.status == ConnectionStatus.CONNECTING:
            return self._failed("join", AlreadyRunning("A join is already in progress."))

        if self.state.connected and self.state.room == room:
            return self._done("join", CommandResult.success(f'Already in room "{room}".'))
        if self.state.connected:
            return self._failed("join", AlreadyConnected(
                f"Already connected to {self.state.room}. Leave first."
            ))

        agent_name = name or self.settings.default_name
        self.state.reset()
        self.state.status = ConnectionStatus.CONNECTING
        self.state.self_name = agent_name
        # Reader tasks started below inherit this context
        bind_room_context(room, agent_name)

        try:
            await self.supervisor.start(room, agent_name, voice=self.settings.voice)
            self.supervisor.send(PeersCommand())
        except RamblyError as e:
            self.state.reset()
            clear_room_context()
            return self._failed("join", e, f"Failed to join: {e.message}")

        self.state.status = ConnectionStatus.CONNECTED
        self.state.room = self.state.room or room
        return self._done("join", CommandResult.success(f'Joined room "{room}" as "{agent_name}".'))

    async def leave(self) -> CommandResult:
        if not self.state.connected:
            return self._failed("leave", NotConnected("Not connected to any room."))

        self.follow_engine.stop(reason="leave")
        await self.supervisor.stop()
        self.state.reset()
        clear_room_context()
        return self._done("leave", CommandResult.success("Left the room."))

    async def speak(self, text: str) -> CommandResult:
        if not self.state.connected:
            return self._failed("speak", NotConnected("Not connected. Join a room first."))

        try:
            self.supervisor.send(SpeakCommand(text=text))
        except RamblyError as e:
            return self._failed("speak", e)
        return self._done("speak", CommandResult.success(f'Speaking: "{text}"'))

    async def move(self, x: float, y: float) -> CommandResult:
        if not self.state.connected:
            return self._failed("move", NotConnected("Not connected. Join a room first."))

        # An explicit move takes control back from the follow stepper
        self.follow_engine.stop(reason="explicit_move")
        try:
            self.supervisor.send(MoveCommand(x=x, y=y))
        except RamblyError as e:
            return self._failed("move", e)

        self.state.position = Position(x=x, y=y)
        return self._done("move", CommandResult.success(f"Moved to {self.state.position}."))

    async def follow(self, name: str) -> CommandResult:
        if not self.state.connected:
            return self._failed("follow", NotConnected("Not connected. Join a room first."))

        try:
            self.follow_engine.start(name)
        except RamblyError as e:
            return self._failed("follow", e)
        return self._done("follow", CommandResult.success(f'Now following "{name}".'))

    async def unfollow(self) -> CommandResult:
        was = self.follow_engine.stop(reason="unfollow")
        if was is None:
            return self._done("unfollow", CommandResult.success("Not following anyone."))
        return self._done("unfollow", CommandResult.success(f'Stopped following "{was}".'))

    async def status(self) -> CommandResult:
        if not self.state.connected:
            return self._failed("status", NotConnected("Not connected to any room."))

        try:
            self.supervisor.send(StatusCommand())
        except RamblyError as e:
            return self._failed("status", e)

        # Not correlated with the reply; just give the daemon a moment
        await asyncio.sleep(self.settings.status_refresh_delay)

        return self._done("status", CommandResult.success(self.render_status()))

    def render_status(self) -> str:
        """Human readable report of the current room state"""

        state = self.state
        radius = self.settings.hearing_radius

        peer_lines: List[str] = []
        for peer in state.peers.values():
            if peer.position is None:
                peer_lines.append(f"  {peer.name} (position unknown)")
                continue
            dist = distance(state.position, peer.position)
            in_range = "  [in hearing range]" if dist <= radius else ""
            peer_lines.append(
                f"  {peer.name} at {peer.position} - {round(dist)} units away{in_range}"
            )

        lines = [
            f"Room: {state.room}",
            f"Position: {state.position}",
            f"Hearing radius: {radius:g}",
            f"Following: {state.follow_target or 'nobody'}",
            f"Peers ({len(state.peers)}):",
            *peer_lines,
        ]

        if state.recent_transcripts:
            lines.append("Recent transcripts:")
            for entry in state.recent_transcripts:
                lines.append(f'  {entry.name}: "{entry.text}"')

        return "\n".join(lines)

    def clear_transcripts(self):
        self.state.recent_transcripts = []

    def get_room(self) -> Optional[str]:
        return self.state.room

    # --- Helpers ---

    def _done(self, command: str, result: CommandResult) -> CommandResult:
        metrics.increment_counter(f"commands.{command}")
        room_logger.log_command(command, self.state.room, success=True)
        return result

    def _failed(self, command: str, error: RamblyError, message: Optional[str] = None) -> CommandResult:
        metrics.increment_counter(f"commands.{command}.failed")
        room_logger.log_command(
            command, self.state.room, success=False, error_code=error.error_code, detail=error.message
        )
        return CommandResult.failure(error, message)
