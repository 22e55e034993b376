from typing import Callable, Dict, Optional
import structlog

from rambly_agent.application.daemon.schema.events import (
    BaseEvent, EventType, JoinedEvent, PeerJoinEvent, PeerMovedEvent,
    PeerLeaveEvent, PeersEvent, StatusEvent, MovedEvent, TranscriptEvent,
    SpokeEvent, ErrorEvent, PeerInfo, Position
)
from rambly_agent.domain.models.room_state import RoomState, ConnectionStatus
from rambly_agent.domain.spatial.follow_engine import FollowEngine
from rambly_agent.domain.spatial.proximity import ProximityFilter
from rambly_agent.infrastructure.observability.logging import room_logger, metrics

logger = structlog.get_logger(__name__)

TranscriptHandler = Callable[[str, str, str, int], None]


class EventRouter:
    """Applies daemon events to the room state, in the order they arrive"""

    def __init__(
        self,
        state: RoomState,
        follow_engine: FollowEngine,
        proximity_filter: ProximityFilter,
    ):
        self.state = state
        self.follow_engine = follow_engine
        self.proximity_filter = proximity_filter
        self._transcript_handler: Optional[TranscriptHandler] = None
        self._handlers: Dict[EventType, Callable[[BaseEvent], None]] = {
            EventType.JOINED: self._handle_joined,
            EventType.PEER_JOIN: self._handle_peer_join,
            EventType.PEER_MOVED: self._handle_peer_moved,
            EventType.PEER_LEAVE: self._handle_peer_leave,
            EventType.PEERS: self._handle_peers,
            EventType.STATUS: self._handle_status,
            EventType.MOVED: self._handle_moved,
            EventType.TRANSCRIPT: self._handle_transcript,
            EventType.SPOKE: self._handle_spoke,
            EventType.LEFT: self._handle_left,
            EventType.ERROR: self._handle_error,
        }

    def set_transcript_handler(self, handler: Optional[TranscriptHandler]):
        """Register the single transcript callback, replacing any previous one"""
        self._transcript_handler = handler

    def route(self, event: BaseEvent):
        """Apply one inbound event"""

        event_type = EventType(event.event)
        metrics.increment_counter(f"events.{event_type.value}")

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug("No handler for event", event_type=event_type.value)
            return

        handler(event)
        metrics.set_gauge("room.peers", len(self.state.peers))
        room_logger.log_room_event(event_type.value, self.state.room)

    def _handle_joined(self, event: JoinedEvent):
        self.state.status = ConnectionStatus.CONNECTED
        self.state.room = event.room
        self.state.self_id = event.peer_id
        logger.info("Joined room", room=event.room, peer_id=event.peer_id)

    def _handle_peer_join(self, event: PeerJoinEvent):
        self.state.peers[event.id] = PeerInfo(id=event.id, name=event.name, position=event.position)

    def _handle_peer_moved(self, event: PeerMovedEvent):
        if event.position is None:
            return

        peer = self.state.peers.get(event.id)
        if peer is not None:
            peer.position = event.position

        # Breadcrumbs only for the peer we are following
        target_name = self.state.follow_target
        if target_name:
            target = self.state.find_peer_by_name(target_name)
            if target is not None and target.id == event.id:
                self.follow_engine.record_position(event.position)

    def _handle_peer_leave(self, event: PeerLeaveEvent):
        self.state.peers.pop(event.id, None)

        target_name = self.state.follow_target
        if target_name and self.state.find_peer_by_name(target_name) is None:
            self.follow_engine.stop(reason="target_left")

    def _handle_peers(self, event: PeersEvent):
        self.state.replace_peers(event.peers)

    def _handle_status(self, event: StatusEvent):
        self.state.room = event.room
        self.state.position = event.position
        self.state.replace_peers(event.peers)

    def _handle_moved(self, event: MovedEvent):
        self.state.position = Position(x=event.x, y=event.y)

    def _handle_transcript(self, event: TranscriptEvent):
        decision = self.proximity_filter.check(
            listener=self.state.position,
            self_name=self.state.self_name,
            speaker_name=event.name,
            speaker_position=event.position,
        )
        if not decision.accepted:
            metrics.increment_counter("transcripts.rejected", tags={"reason": decision.reason or ""})
            logger.debug(
                "Transcript dropped",
                speaker=event.name,
                reason=decision.reason,
                distance=round(decision.distance)
            )
            return

        metrics.increment_counter("transcripts.accepted")
        self.state.add_transcript(event.name, event.text)
        logger.info("Heard transcript", speaker=event.name, text=event.text, distance=round(decision.distance))

        if self._transcript_handler is not None:
            try:
                self._transcript_handler(event.from_id, event.name, event.text, round(decision.distance))
            except Exception as e:
                logger.error("Error in transcript handler", speaker=event.name, error=str(e))

    def _handle_spoke(self, event: SpokeEvent):
        logger.debug("Speech finished", text=event.text)

    def _handle_left(self, event: BaseEvent):
        self.follow_engine.stop(reason="left")
        self.state.reset()
        logger.info("Left room")

    def _handle_error(self, event: ErrorEvent):
        logger.warning("Daemon reported error", message=event.message)
