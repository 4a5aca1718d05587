"""
Simulation module for running the SLAM pipeline without hardware.

Components:
- Environment: Walls and boxes, raycasting
- LaserSensor: 181-beam laser with range and angle noise
- Robot: Ground-truth unicycle
- Simulator: Ties them together, cooperative or threaded
"""

from .environment import (
    Environment,
    Wall,
    ENVIRONMENTS,
    create_rectangle_env,
    create_block_env
)
from .laser_simulator import LaserSensor
from .robot import Robot
from .simulator import Simulator

__all__ = [
    'Environment',
    'Wall',
    'ENVIRONMENTS',
    'create_rectangle_env',
    'create_block_env',
    'LaserSensor',
    'Robot',
    'Simulator',
]
