"""
Navigation module for path planning and following.

Components:
- GlobalPlanner: A* shortest path on the hit grid, with replan test
- WaypointFollower: Rotate / Drive / Arrived waypoint controller
"""

from .global_planner import GlobalPlanner, PlanResult
from .path_follower import (
    WaypointFollower,
    ControlCommand,
    FollowerState,
    FollowerEvent
)

__all__ = [
    'GlobalPlanner',
    'PlanResult',
    'WaypointFollower',
    'ControlCommand',
    'FollowerState',
    'FollowerEvent'
]
