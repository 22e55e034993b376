from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from enum import Enum
import json

from rambly_agent.domain.errors import ProtocolParseError


class EventType(str, Enum):
    """Daemon stdout event types"""
    JOINED = "joined"
    PEER_JOIN = "peer_join"
    PEER_MOVED = "peer_moved"
    PEER_LEAVE = "peer_leave"
    TRANSCRIPT = "transcript"
    SPOKE = "spoke"
    MOVED = "moved"
    PEERS = "peers"
    STATUS = "status"
    LEFT = "left"
    ERROR = "error"


Number = Union[int, float]


def format_coord(value: Number) -> str:
    """Whole numbers render without a trailing .0"""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


class Position(BaseModel):
    """A point on the room map, in map units"""
    model_config = ConfigDict(frozen=True)

    x: Number
    y: Number

    def as_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y}

    def __str__(self) -> str:
        return f"({format_coord(self.x)}, {format_coord(self.y)})"


class PeerInfo(BaseModel):
    """Another participant in the room"""
    id: str
    name: str
    position: Optional[Position] = None


class BaseEvent(BaseModel):
    """Base model for all daemon events"""
    model_config = ConfigDict(populate_by_name=True)

    event: EventType


class JoinedEvent(BaseEvent):
    event: Literal["joined"] = "joined"
    room: str
    peer_id: str = Field(alias="peerId")


class PeerJoinEvent(BaseEvent):
    event: Literal["peer_join"] = "peer_join"
    id: str
    name: str
    position: Optional[Position] = None


class PeerMovedEvent(BaseEvent):
    event: Literal["peer_moved"] = "peer_moved"
    id: str
    name: str
    position: Optional[Position] = None


class PeerLeaveEvent(BaseEvent):
    event: Literal["peer_leave"] = "peer_leave"
    id: str
    name: Optional[str] = None


class TranscriptEvent(BaseEvent):
    """Speech heard in the room, already converted to text by the daemon"""
    event: Literal["transcript"] = "transcript"
    from_id: str = Field(alias="from")
    name: str
    text: str
    position: Optional[Position] = None


class SpokeEvent(BaseEvent):
    event: Literal["spoke"] = "spoke"
    text: Optional[str] = None


class MovedEvent(BaseEvent):
    event: Literal["moved"] = "moved"
    x: Number
    y: Number


class PeersEvent(BaseEvent):
    event: Literal["peers"] = "peers"
    peers: List[PeerInfo] = Field(default_factory=list)


class StatusEvent(BaseEvent):
    event: Literal["status"] = "status"
    room: str
    position: Position
    peers: List[PeerInfo] = Field(default_factory=list)


class LeftEvent(BaseEvent):
    event: Literal["left"] = "left"


class ErrorEvent(BaseEvent):
    event: Literal["error"] = "error"
    message: str


DaemonEvent = Annotated[
    Union[
        JoinedEvent,
        PeerJoinEvent,
        PeerMovedEvent,
        PeerLeaveEvent,
        TranscriptEvent,
        SpokeEvent,
        MovedEvent,
        PeersEvent,
        StatusEvent,
        LeftEvent,
        ErrorEvent,
    ],
    Field(discriminator="event"),
]

_event_adapter: TypeAdapter = TypeAdapter(DaemonEvent)


def parse_event(line: str) -> BaseEvent:
    """Parse one stdout line into a typed event.

    Raises ProtocolParseError for anything that is not a JSON object
    describing a known event.
    """
    try:
        data = json.loads(line)
    except ValueError as e:
        raise ProtocolParseError(f"Not JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolParseError("Event is not a JSON object")

    try:
        return _event_adapter.validate_python(data)
    except ValidationError as e:
        raise ProtocolParseError(f"Invalid event: {e.error_count()} validation error(s)") from e
