"""
Waypoint Follower

Turns a list of waypoints into (v, w) commands for a unicycle robot.

Purely reactive, three states:
- ROTATE: turn in place until the heading error to the current
  waypoint is within orientation_slack
- DRIVE: go straight at the waypoint; fall back to ROTATE if the
  heading error grows past orientation_slack
- ARRIVED: within milestone_slack of the waypoint; advance to the
  next one (back to ROTATE) or stop at the last

Transitions are gated by the two slack thresholds only (no
hysteresis) and run through core.state_machine.StateMachine.
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional, Sequence, Tuple

import numpy as np

from core.config import FollowerConfig
from core.state_machine import StateMachine, StateTransition
from perception.transforms import Pose2D

logger = logging.getLogger(__name__)


class FollowerState(Enum):
    ROTATE = auto()
    DRIVE = auto()
    ARRIVED = auto()


class FollowerEvent(Enum):
    ALIGNED = auto()            # Heading error within slack
    MISALIGNED = auto()         # Heading error beyond slack
    MILESTONE_REACHED = auto()  # Within slack of the waypoint
    NEXT_WAYPOINT = auto()      # Advance after arriving
    NEW_PATH = auto()           # Path replaced


TRANSITIONS = [
    StateTransition(FollowerState.ROTATE, FollowerEvent.ALIGNED, FollowerState.DRIVE),
    StateTransition(FollowerState.DRIVE, FollowerEvent.MISALIGNED, FollowerState.ROTATE),
    StateTransition(FollowerState.ROTATE, FollowerEvent.MILESTONE_REACHED, FollowerState.ARRIVED),
    StateTransition(FollowerState.DRIVE, FollowerEvent.MILESTONE_REACHED, FollowerState.ARRIVED),
    StateTransition(FollowerState.ARRIVED, FollowerEvent.NEXT_WAYPOINT, FollowerState.ROTATE),
    StateTransition(FollowerState.DRIVE, FollowerEvent.NEW_PATH, FollowerState.ROTATE),
    StateTransition(FollowerState.ARRIVED, FollowerEvent.NEW_PATH, FollowerState.ROTATE),
]


@dataclass
class ControlCommand:
    """Output control command for the robot."""
    linear: float           # units/s
    angular: float          # rad/s (positive = left)
    state: FollowerState
    reached_goal: bool = False


class WaypointFollower:
    """
    Rotate / Drive / Arrived waypoint follower.

    Usage:
        follower = WaypointFollower(config.follower)
        follower.set_path(planner.waypoints(result))

        # Every tick:
        cmd = follower.compute(estimated_pose)
        simulator.apply_control(cmd.linear, cmd.angular)
    """

    def __init__(self, config: Optional[FollowerConfig] = None):
        self.config = config or FollowerConfig()
        self._path: List[Tuple[float, float]] = []
        self._index = 0
        self._sm = StateMachine(FollowerState.ROTATE, TRANSITIONS)
        self._sm.on_transition(self._log_transition)

    def set_path(self, path: Sequence[Tuple[float, float]]):
        """Follow a new path from its first waypoint."""
        self._path = [(float(p[0]), float(p[1])) for p in path]
        self._index = 0
        self._sm.handle_event(FollowerEvent.NEW_PATH)

    def clear(self):
        self._path = []
        self._index = 0
        self._sm.reset()

    @property
    def state(self) -> FollowerState:
        return self._sm.state

    @property
    def current_index(self) -> int:
        """Index of the waypoint being approached."""
        return self._index

    @property
    def path(self) -> List[Tuple[float, float]]:
        return list(self._path)

    @property
    def finished(self) -> bool:
        return (not self._path
                or (self._index == len(self._path) - 1 and self._sm.state == FollowerState.ARRIVED))

    def compute(self, pose: Tuple[float, float, float]) -> ControlCommand:
        """
        Compute the command for the current pose.

        Args:
            pose: (x, y, theta) estimated pose

        Returns:
            ControlCommand
        """
        if not self._path:
            return ControlCommand(0.0, 0.0, self._sm.state, reached_goal=True)

        robot = Pose2D(float(pose[0]), float(pose[1]), float(pose[2]))
        cfg = self.config

        while True:
            target = self._path[self._index]
            distance = robot.distance_to(*target)

            if distance <= cfg.milestone_slack:
                self._sm.handle_event(FollowerEvent.MILESTONE_REACHED)

            if self._sm.state != FollowerState.ARRIVED:
                break
            if self._index == len(self._path) - 1:
                return ControlCommand(0.0, 0.0, FollowerState.ARRIVED, reached_goal=True)

            self._index += 1
            self._sm.handle_event(FollowerEvent.NEXT_WAYPOINT)

        error = robot.bearing_to(*target)
        aligned = abs(error) <= cfg.orientation_slack
        self._sm.handle_event(FollowerEvent.ALIGNED if aligned else FollowerEvent.MISALIGNED)

        angular = float(np.clip(cfg.angular_gain * error, -cfg.max_angular_speed, cfg.max_angular_speed))

        if self._sm.state == FollowerState.ROTATE:
            return ControlCommand(0.0, angular, FollowerState.ROTATE)

        linear = float(np.clip(cfg.linear_gain * distance, 0.0, cfg.max_linear_speed))
        return ControlCommand(linear, 0.0, FollowerState.DRIVE)

    def _log_transition(self, old: FollowerState, event: FollowerEvent, new: FollowerState):
        logger.debug("Follower %s -> %s on %s (waypoint %d/%d)",
                     old.name, new.name, event.name, self._index + 1, len(self._path))
