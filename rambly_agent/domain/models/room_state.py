from typing import Dict, Any, List, Optional, Iterable
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum

from rambly_agent.application.daemon.schema.events import PeerInfo, Position

MAX_RECENT_TRANSCRIPTS = 10


class ConnectionStatus(str, Enum):
    """Room membership status"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TranscriptEntry(BaseModel):
    """A transcript that passed the proximity filter"""
    name: str
    text: str
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RoomState(BaseModel):
    """What we currently believe about the room"""
    status: ConnectionStatus = Field(default=ConnectionStatus.DISCONNECTED)
    room: Optional[str] = None
    self_id: Optional[str] = None
    self_name: Optional[str] = None
    position: Position = Field(default_factory=lambda: Position(x=0, y=0))
    initial_position: Position = Field(default_factory=lambda: Position(x=0, y=0), exclude=True)
    peers: Dict[str, PeerInfo] = Field(default_factory=dict)
    follow_target: Optional[str] = None
    breadcrumbs: List[Position] = Field(default_factory=list, description="Target trail, oldest first")
    recent_transcripts: List[TranscriptEntry] = Field(default_factory=list)

    @classmethod
    def initial(cls, position: Position) -> "RoomState":
        return cls(position=position, initial_position=position)

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def reset(self):
        """Return to the initial disconnected shape. Nothing survives a disconnect"""
        self.status = ConnectionStatus.DISCONNECTED
        self.room = None
        self.self_id = None
        self.self_name = None
        self.position = self.initial_position
        self.peers = {}
        self.follow_target = None
        self.breadcrumbs = []
        self.recent_transcripts = []

    def find_peer_by_name(self, name: str) -> Optional[PeerInfo]:
        """Case-insensitive lookup. Names are not unique; the first match wins"""
        wanted = name.lower()
        for peer in self.peers.values():
            if peer.name.lower() == wanted:
                return peer
        return None

    def replace_peers(self, peers: Iterable[PeerInfo]):
        self.peers = {peer.id: peer for peer in peers}

    def add_transcript(self, name: str, text: str):
        """Append to the recent transcript buffer"""
        self.recent_transcripts.append(TranscriptEntry(name=name, text=text))
        # Keep only the last few
        if len(self.recent_transcripts) > MAX_RECENT_TRANSCRIPTS:
            self.recent_transcripts = self.recent_transcripts[-MAX_RECENT_TRANSCRIPTS:]

    def get_state_summary(self) -> Dict[str, Any]:
        """Get a summary of the current state"""
        return {
            "status": self.status.value,
            "room": self.room,
            "self_id": self.self_id,
            "self_name": self.self_name,
            "position": self.position.as_dict(),
            "peers": len(self.peers),
            "follow_target": self.follow_target,
            "breadcrumbs": len(self.breadcrumbs),
            "recent_transcripts": len(self.recent_transcripts),
        }
