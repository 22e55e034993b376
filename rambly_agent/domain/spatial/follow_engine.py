from typing import Callable, Optional
import asyncio
import math
import structlog

from rambly_agent.application.daemon.schema.commands import BaseCommand, MoveCommand
from rambly_agent.application.daemon.schema.events import PeerInfo, Position
from rambly_agent.domain.errors import PeerNotFound, SendFailure
from rambly_agent.domain.models.room_state import RoomState
from rambly_agent.infrastructure.observability.logging import room_logger, metrics
from .proximity import distance

logger = structlog.get_logger(__name__)

MIN_BREADCRUMB_SPACING = 5
MAX_BREADCRUMBS = 100
TELEPORT_THRESHOLD = 200
# Waypoints closer than this are treated as reached
MIN_STEP_DISTANCE = 1


class FollowEngine:
    """Walks us along the path a followed peer took.

    Observed target positions are decimated into a breadcrumb trail and the
    stepper task walks that trail oldest-first at a fixed pace, so we turn
    the same corners the target did instead of cutting through walls.
    """

    def __init__(
        self,
        state: RoomState,
        send: Callable[[BaseCommand], None],
        follow_distance: float = 40,
        step_size: float = 20,
        interval: float = 0.1,
    ):
        self.state = state
        self.follow_distance = follow_distance
        self.step_size = step_size
        self.interval = interval
        self._send = send
        self._task: Optional[asyncio.Task] = None
        self._last_observed: Optional[Position] = None

    @property
    def following(self) -> bool:
        return self.state.follow_target is not None

    @property
    def stepper_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, name: str) -> PeerInfo:
        """Begin following the peer with this name (case-insensitive)"""

        peer = self.state.find_peer_by_name(name)
        if peer is None:
            raise PeerNotFound(f'No peer named "{name}" found in the room.')

        self._cancel_stepper()
        self.state.follow_target = name
        self.state.breadcrumbs = []
        self._last_observed = None

        if peer.position is not None:
            self.record_position(peer.position)

        self._task = asyncio.create_task(self._run())
        logger.info("Following peer", target=name, peer_id=peer.id)
        return peer

    def stop(self, reason: str = "unfollow") -> Optional[str]:
        """Stop following. Returns the name we were following, if any"""

        was = self.state.follow_target
        self.state.follow_target = None
        self.state.breadcrumbs = []
        self._last_observed = None
        self._cancel_stepper()

        if was:
            logger.info("Stopped following", target=was, reason=reason)
        return was

    def record_position(self, position: Position):
        """Feed an observed target position into the breadcrumb trail"""

        last = self._last_observed
        self._last_observed = position

        if last is not None and distance(last, position) > TELEPORT_THRESHOLD:
            # Don't try to walk a teleport gap
            self.state.breadcrumbs = [position]
            logger.debug("Target teleported, trail reset", position=position.as_dict())
        else:
            trail = self.state.breadcrumbs
            if not trail or distance(trail[-1], position) > MIN_BREADCRUMB_SPACING:
                trail.append(position)
                if len(trail) > MAX_BREADCRUMBS:
                    del trail[:len(trail) - MAX_BREADCRUMBS]

        metrics.set_gauge("follow.breadcrumbs", len(self.state.breadcrumbs))

    def step(self) -> bool:
        """Run one stepper tick. Returns False once the stepper should end"""

        state = self.state
        if state.follow_target is None or not state.connected:
            return False

        target = state.find_peer_by_name(state.follow_target)
        if target is None:
            self.stop(reason="target_lost")
            return False
        if target.position is None:
            return True

        self.record_position(target.position)
        here = state.position

        if distance(here, target.position) <= self.follow_distance:
            # Close enough; step=0 stops the walking animation
            self._send(MoveCommand(x=here.x, y=here.y, step=0))
            return True

        crumbs = state.breadcrumbs
        waypoint = crumbs[0] if crumbs else target.position
        while len(crumbs) > 1 and distance(here, crumbs[0]) < self.step_size:
            crumbs.pop(0)
            waypoint = crumbs[0]

        dx = waypoint.x - here.x
        dy = waypoint.y - here.y
        remaining = math.hypot(dx, dy)
        if remaining < MIN_STEP_DISTANCE:
            return True

        travel = min(self.step_size, remaining)
        next_position = Position(
            x=round(here.x + dx / remaining * travel),
            y=round(here.y + dy / remaining * travel),
        )

        self._send(MoveCommand(x=next_position.x, y=next_position.y, theta=math.atan2(dy, dx), step=1))
        state.position = next_position

        metrics.increment_counter("follow.moves")
        room_logger.log_follow_step(
            target=state.follow_target,
            position=next_position.as_dict(),
            waypoint=waypoint.as_dict(),
            remaining_breadcrumbs=len(crumbs),
        )
        return True

    async def _run(self):
        try:
            while True:
                await asyncio.sleep(self.interval)
                try:
                    keep_going = self.step()
                except SendFailure as e:
                    logger.warning("Follow move could not be sent", error=e.message)
                    self.stop(reason="send_failure")
                    break
                if not keep_going:
                    break
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    def _cancel_stepper(self):
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()
