"""
Laser Scan

One sweep of the range finder and its projection into the world frame.

A scan is a fixed-length array of ranges, one per beam, from
min_theta to max_theta. Beams without a return carry the
INVALID sentinel (max_distance + 1), not NaN: the raw array keeps
them so that range discontinuities stay visible to the extractor.
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from core.config import LaserConfig


@dataclass(frozen=True)
class RawScan:
    """Immutable snapshot of one laser sweep."""
    distances: np.ndarray       # C ranges, INVALID where no return
    timestamp: int              # Monotonic scan counter

    def __post_init__(self):
        distances = np.array(self.distances, dtype=float)
        distances.setflags(write=False)
        object.__setattr__(self, 'distances', distances)

    def valid_mask(self, laser: LaserConfig) -> np.ndarray:
        return self.distances != laser.invalid_distance

    @property
    def count(self) -> int:
        return len(self.distances)


@dataclass
class ProjectedScan:
    """Valid returns of a scan as world-frame points."""
    points: np.ndarray          # Nx2 (x, y)
    indices: np.ndarray         # N raw beam indices
    distances: np.ndarray       # C raw ranges (including INVALID)
    origin: Tuple[float, float] # Laser source position


def laser_origin(pose: np.ndarray, robot_radius: float) -> np.ndarray:
    """The laser sits at the tail of the robot, one radius behind the centre."""
    x, y, theta = pose[0], pose[1], pose[2]
    return np.array([x - robot_radius * math.cos(theta),
                     y - robot_radius * math.sin(theta)])


def project_scan(
    distances: np.ndarray,
    pose: np.ndarray,
    robot_radius: float,
    laser: LaserConfig
) -> ProjectedScan:
    """
    Convert raw ranges into world-frame points.

    Args:
        distances: C raw ranges
        pose: (x, y, theta) of the robot centre
        robot_radius: Distance from centre to laser
        laser: Laser geometry

    Returns:
        ProjectedScan with the valid returns only
    """
    distances = np.asarray(distances, dtype=float)
    if len(distances) != laser.count:
        raise ValueError(f"Scan has {len(distances)} beams, expected {laser.count}")

    origin = laser_origin(pose, robot_radius)
    indices = np.flatnonzero(distances != laser.invalid_distance)

    angles = pose[2] + laser.min_theta + (laser.max_theta - laser.min_theta) * indices / (laser.count - 1)
    ranges = distances[indices]
    points = np.column_stack([
        origin[0] + ranges * np.cos(angles),
        origin[1] + ranges * np.sin(angles)
    ])

    return ProjectedScan(
        points=points,
        indices=indices,
        distances=distances.copy(),
        origin=(float(origin[0]), float(origin[1]))
    )
