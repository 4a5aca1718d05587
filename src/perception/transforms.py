"""
Frame Conversions

World frame <-> robot (body) frame for poses and point sets.

Conventions:
- Robot frame: X forward, Y to the left
- Headings counter-clockwise from the world X axis, kept in [-pi, pi]

Usage:
    offsets = world_to_robot(landmarks, pose)
    points = robot_to_world(offsets, pose)
"""

import math
from dataclasses import dataclass

import numpy as np


@dataclass
class Pose2D:
    """Robot pose (x, y, heading)."""
    x: float
    y: float
    theta: float

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.theta])

    @classmethod
    def from_array(cls, values: np.ndarray) -> 'Pose2D':
        return cls(float(values[0]), float(values[1]), float(values[2]))

    def distance_to(self, x: float, y: float) -> float:
        return math.hypot(x - self.x, y - self.y)

    def bearing_to(self, x: float, y: float) -> float:
        """Signed turn needed to face (x, y), in [-pi, pi]."""
        return angle_difference(self.theta, math.atan2(y - self.y, x - self.x))


def normalize_angle(angle: float) -> float:
    """Wrap an angle to [-pi, pi]."""
    return math.atan2(math.sin(angle), math.cos(angle))


def angle_difference(a: float, b: float) -> float:
    """Signed shortest rotation taking heading a to heading b."""
    return normalize_angle(b - a)


def world_to_robot(points: np.ndarray, pose: np.ndarray) -> np.ndarray:
    """
    Express world points relative to the robot, in the robot frame.

    Args:
        points: Nx2 world points
        pose: (x, y, theta)

    Returns:
        Nx2 offsets rotated by -theta
    """
    points = np.asarray(points, dtype=float).reshape(-1, 2)
    c, s = math.cos(pose[2]), math.sin(pose[2])
    dx = points[:, 0] - pose[0]
    dy = points[:, 1] - pose[1]
    return np.column_stack([c * dx + s * dy, -s * dx + c * dy])


def robot_to_world(offsets: np.ndarray, pose: np.ndarray) -> np.ndarray:
    """Inverse of world_to_robot."""
    offsets = np.asarray(offsets, dtype=float).reshape(-1, 2)
    c, s = math.cos(pose[2]), math.sin(pose[2])
    return np.column_stack([
        pose[0] + c * offsets[:, 0] - s * offsets[:, 1],
        pose[1] + s * offsets[:, 0] + c * offsets[:, 1]
    ])
