from typing import NamedTuple, Optional
import math

from rambly_agent.application.daemon.schema.events import Position


def distance(a: Position, b: Position) -> float:
    """Euclidean distance between two map positions"""
    return math.hypot(a.x - b.x, a.y - b.y)


class ProximityDecision(NamedTuple):
    accepted: bool
    distance: float
    reason: Optional[str] = None


class ProximityFilter:
    """Decides which transcripts we are close enough to hear.

    A speaker that shares our own display name is our own synthesized speech
    coming back through the room and is always dropped. A transcript that
    carries no speaker position cannot be range-checked and is accepted with
    a distance of 0.
    """

    def __init__(self, hearing_radius: float):
        self.hearing_radius = hearing_radius

    @staticmethod
    def is_self_echo(speaker_name: str, self_name: Optional[str]) -> bool:
        if not self_name:
            return False
        return speaker_name.lower() == self_name.lower()

    def in_range(self, listener: Position, speaker: Position) -> bool:
        return distance(listener, speaker) <= self.hearing_radius

    def check(
        self,
        listener: Position,
        self_name: Optional[str],
        speaker_name: str,
        speaker_position: Optional[Position],
    ) -> ProximityDecision:
        if self.is_self_echo(speaker_name, self_name):
            return ProximityDecision(False, 0.0, "self_echo")

        if speaker_position is None:
            return ProximityDecision(True, 0.0)

        dist = distance(listener, speaker_position)
        if dist > self.hearing_radius:
            return ProximityDecision(False, dist, "out_of_range")
        return ProximityDecision(True, dist)
