from typing import Optional
from pydantic import BaseModel, Field


class RamblyError(Exception):
    """Base class for room agent failures"""
    error_code = "rambly_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotConnected(RamblyError):
    error_code = "not_connected"


class AlreadyConnected(RamblyError):
    error_code = "already_connected"


class AlreadyRunning(RamblyError):
    error_code = "already_running"


class PeerNotFound(RamblyError):
    error_code = "peer_not_found"


class SpawnTimeout(RamblyError):
    error_code = "spawn_timeout"


class SpawnFailure(RamblyError):
    error_code = "spawn_failure"


class SendFailure(RamblyError):
    """Raised when the daemon is not running or its stdin is closed"""
    error_code = "send_failure"


class ProtocolParseError(RamblyError):
    """A daemon stdout line that is not a well-formed event. Never fatal."""
    error_code = "protocol_parse_error"


class CommandResult(BaseModel):
    """Outcome of a command surface call, rendered as text for the caller"""
    ok: bool
    message: str
    error_code: Optional[str] = Field(None, description="Stable code of the failure, if any")

    @classmethod
    def success(cls, message: str) -> "CommandResult":
        return cls(ok=True, message=message)

    @classmethod
    def failure(cls, error: RamblyError, message: Optional[str] = None) -> "CommandResult":
        return cls(ok=False, message=message or error.message, error_code=error.error_code)

    def __str__(self) -> str:
        return self.message
