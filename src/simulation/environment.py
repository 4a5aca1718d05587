"""
Simulated environment.

A flat world of wall segments the laser can hit and the robot can
crash into. Boxes are stored as their four walls.
"""

import math
from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np


@dataclass(frozen=True)
class Wall:
    """Wall segment (x1, y1) -> (x2, y2)."""
    x1: float
    y1: float
    x2: float
    y2: float

    def distance_to(self, px: float, py: float) -> float:
        """Shortest distance from a point to the segment."""
        sx, sy = self.x2 - self.x1, self.y2 - self.y1
        length_sq = sx * sx + sy * sy
        if length_sq == 0.0:
            return math.hypot(px - self.x1, py - self.y1)
        t = ((px - self.x1) * sx + (py - self.y1) * sy) / length_sq
        t = max(0.0, min(1.0, t))
        return math.hypot(px - (self.x1 + t * sx), py - (self.y1 + t * sy))


@dataclass
class Environment:
    """
    Simulation environment made of walls.

    Usage:
        env = Environment(width=800, height=600)
        env.add_boundary_walls()
        env.add_box(200, 100, 120, 120)

        d = env.raycast(0, 0, 0.0, max_range=500)
    """
    walls: List[Wall] = field(default_factory=list)
    width: float = 800.0
    height: float = 600.0

    def add_wall(self, x1: float, y1: float, x2: float, y2: float):
        """Add a wall segment."""
        self.walls.append(Wall(float(x1), float(y1), float(x2), float(y2)))

    def add_box(self, x: float, y: float, width: float, height: float, rotation: float = 0.0):
        """Add a box centred at (x, y) as four walls."""
        w, h = width / 2, height / 2
        cos_r = math.cos(rotation)
        sin_r = math.sin(rotation)

        corners = []
        for px, py in [(-w, -h), (w, -h), (w, h), (-w, h)]:
            corners.append((px * cos_r - py * sin_r + x, px * sin_r + py * cos_r + y))

        for i in range(4):
            (x1, y1), (x2, y2) = corners[i], corners[(i + 1) % 4]
            self.add_wall(x1, y1, x2, y2)

    def add_boundary_walls(self):
        """Walls around the width x height rectangle centred on the origin."""
        w, h = self.width / 2, self.height / 2
        self.add_wall(-w, -h, w, -h)   # Bottom
        self.add_wall(w, -h, w, h)     # Right
        self.add_wall(w, h, -w, h)     # Top
        self.add_wall(-w, h, -w, -h)   # Left

    def raycast_many(self, origin_x: float, origin_y: float, angles: Sequence[float],
                     max_range: float) -> np.ndarray:
        """
        Distance to the first wall along each ray.

        Returns:
            One distance per angle, max_range where nothing is hit
        """
        angles = np.asarray(angles, dtype=float)
        result = np.full(len(angles), float(max_range))
        if not self.walls:
            return result

        segments = np.array([[w.x1, w.y1, w.x2, w.y2] for w in self.walls])
        x1, y1 = segments[:, 0], segments[:, 1]
        sx = segments[:, 2] - x1
        sy = segments[:, 3] - y1

        dx = np.cos(angles)[:, None]               # K x 1
        dy = np.sin(angles)[:, None]
        denom = dx * sy - dy * sx                   # K x N

        with np.errstate(divide='ignore', invalid='ignore'):
            t = ((x1 - origin_x) * sy - (y1 - origin_y) * sx) / denom
            u = ((x1 - origin_x) * dy - (y1 - origin_y) * dx) / denom

        hit = (np.abs(denom) > 1e-10) & (t > 1e-3) & (u >= 0.0) & (u <= 1.0)
        t = np.where(hit, t, np.inf)
        nearest = t.min(axis=1)
        return np.minimum(nearest, result)

    def raycast(self, origin_x: float, origin_y: float, angle: float,
                max_range: float = 500.0) -> float:
        """Distance to the first wall along one ray (max_range if none)."""
        return float(self.raycast_many(origin_x, origin_y, [angle], max_range)[0])

    def distance_to(self, x: float, y: float) -> float:
        """Distance from a point to the closest wall."""
        if not self.walls:
            return math.inf
        return min(w.distance_to(x, y) for w in self.walls)


def create_rectangle_env() -> Environment:
    """Empty rectangular room."""
    env = Environment(width=800, height=600)
    env.add_boundary_walls()
    return env


def create_block_env() -> Environment:
    """Rectangular room with a square block off-centre."""
    env = Environment(width=800, height=600)
    env.add_boundary_walls()
    env.add_box(220, 60, 120, 120)
    return env


ENVIRONMENTS = {
    'rectangle': create_rectangle_env,
    'block': create_block_env,
}
