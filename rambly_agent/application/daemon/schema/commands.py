from typing import Literal, Optional
from pydantic import BaseModel
from enum import Enum

from .events import Number


class CommandAction(str, Enum):
    """Daemon stdin command actions"""
    SPEAK = "speak"
    MOVE = "move"
    PEERS = "peers"
    STATUS = "status"
    LEAVE = "leave"


class BaseCommand(BaseModel):
    """Base model for all daemon commands"""
    action: CommandAction

    def encode(self) -> str:
        """Encode as a single JSON line, without the terminator"""
        return self.model_dump_json(exclude_none=True)


class SpeakCommand(BaseCommand):
    action: Literal["speak"] = "speak"
    text: str


class MoveCommand(BaseCommand):
    """Absolute move. theta and step only drive the walking animation"""
    action: Literal["move"] = "move"
    x: Number
    y: Number
    theta: Optional[float] = None
    step: Optional[int] = None


class PeersCommand(BaseCommand):
    action: Literal["peers"] = "peers"


class StatusCommand(BaseCommand):
    action: Literal["status"] = "status"


class LeaveCommand(BaseCommand):
    action: Literal["leave"] = "leave"
