"""
Simulated laser range finder.

Planar scanner with LaserConfig.count beams spread evenly over
[min_theta, max_theta] around the robot heading. Each beam gets a
uniform angle error (a fraction of one beam width) and each return a
uniform range error. Beams that hit nothing within max_distance read
INVALID (max_distance + 1).
"""

from typing import Optional

import numpy as np

from core.config import LaserConfig
from .environment import Environment


class LaserSensor:
    """
    Laser scanner simulator.

    Usage:
        laser = LaserSensor(config.laser, rng)
        distances = laser.scan(env, origin=(x, y), heading=theta)
    """

    def __init__(self, config: Optional[LaserConfig] = None, rng: Optional[np.random.Generator] = None):
        self.config = config or LaserConfig()
        self._rng = rng if rng is not None else np.random.default_rng()

        cfg = self.config
        self._beam_angles = cfg.min_theta + (cfg.max_theta - cfg.min_theta) * np.arange(cfg.count) / (cfg.count - 1)

    @property
    def beam_angles(self) -> np.ndarray:
        """Nominal beam angles, robot frame."""
        return self._beam_angles.copy()

    def scan(self, env: Environment, origin, heading: float) -> np.ndarray:
        """
        Take one scan.

        Args:
            env: Environment to raycast against
            origin: (x, y) of the laser
            heading: Robot heading (rad)

        Returns:
            count ranges, INVALID where nothing was hit
        """
        cfg = self.config
        angle_limit = cfg.angle_error_limit * cfg.angular_resolution
        angles = heading + self._beam_angles + self._rng.uniform(-angle_limit, angle_limit, cfg.count)

        ranges = env.raycast_many(origin[0], origin[1], angles, cfg.max_distance)
        hit = ranges < cfg.max_distance

        distances = np.full(cfg.count, cfg.invalid_distance)
        noise = self._rng.uniform(-cfg.distance_error_limit, cfg.distance_error_limit, cfg.count)
        distances[hit] = ranges[hit] + noise[hit]
        return distances
