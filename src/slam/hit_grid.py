"""
Hit Grid

Occupancy map for the planner: a fixed rectangle of the world split
into cells that count how many scan points landed near them.

A cell is traversable iff its count is 0. Every hit is inflated by
the robot radius (Minkowski sum), so a plan that clears all occupied
cells keeps the robot body off the obstacles.

Cells are addressed either by (mx, my) or by the flat index
my * num_cells_x + mx. Cell centres are the world coordinates of a
cell.

Usage:
    grid = HitGrid((-1000, -1000), (1000, 1000), 200, 200)
    grid.add_hit((120.0, 40.0), robot_radius)
    grid.is_free(grid.index_of((0.0, 0.0)))
    grid.save("map.pgm", "map.yaml")
"""

import math
import os
from typing import Iterable, List, Optional, Tuple

import numpy as np
import yaml

from core.config import GridConfig


class HitGrid:
    """
    Integer hit counts over a world rectangle.

    Storage is a (num_cells_y, num_cells_x) array indexed [my, mx].
    """

    def __init__(
        self,
        min_corner: Tuple[float, float],
        max_corner: Tuple[float, float],
        num_cells_x: int,
        num_cells_y: int
    ):
        if num_cells_x <= 0 or num_cells_y <= 0:
            raise ValueError("Grid needs at least one cell per axis")
        if max_corner[0] <= min_corner[0] or max_corner[1] <= min_corner[1]:
            raise ValueError(f"Empty grid rectangle {min_corner} - {max_corner}")

        self.min_x, self.min_y = float(min_corner[0]), float(min_corner[1])
        self.max_x, self.max_y = float(max_corner[0]), float(max_corner[1])
        self.width = int(num_cells_x)
        self.height = int(num_cells_y)

        self.cell_width = (self.max_x - self.min_x) / self.width
        self.cell_height = (self.max_y - self.min_y) / self.height

        self._counts = np.zeros((self.height, self.width), dtype=np.int64)

    @classmethod
    def from_config(cls, config: Optional[GridConfig] = None) -> 'HitGrid':
        config = config or GridConfig()
        return cls(config.min_corner, config.max_corner, config.num_cells_x, config.num_cells_y)

    # =========================================================================
    # Coordinates
    # =========================================================================

    def world_to_map(self, x: float, y: float) -> Optional[Tuple[int, int]]:
        """Cell containing (x, y), or None outside the rectangle."""
        if not (self.min_x <= x < self.max_x and self.min_y <= y < self.max_y):
            return None
        mx = min(int((x - self.min_x) / self.cell_width), self.width - 1)
        my = min(int((y - self.min_y) / self.cell_height), self.height - 1)
        return mx, my

    def map_to_world(self, mx: int, my: int) -> Tuple[float, float]:
        """Centre of cell (mx, my)."""
        x = self.min_x + (mx + 0.5) * self.cell_width
        y = self.min_y + (my + 0.5) * self.cell_height
        return x, y

    def in_bounds(self, mx: int, my: int) -> bool:
        return 0 <= mx < self.width and 0 <= my < self.height

    def index_of(self, point: Tuple[float, float]) -> Optional[int]:
        """Flat index of the cell containing point, or None outside."""
        cell = self.world_to_map(point[0], point[1])
        if cell is None:
            return None
        return cell[1] * self.width + cell[0]

    def cell_of(self, index: int) -> Tuple[int, int]:
        """(mx, my) of a flat index."""
        return index % self.width, index // self.width

    def coordinate_of(self, index: int) -> Tuple[float, float]:
        """Centre of the cell with flat index."""
        mx, my = self.cell_of(index)
        return self.map_to_world(mx, my)

    def neighbours(self, index: int) -> List[int]:
        """8-connected neighbours inside the grid."""
        mx, my = self.cell_of(index)
        result = []
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                if dx == 0 and dy == 0:
                    continue
                nx, ny = mx + dx, my + dy
                if self.in_bounds(nx, ny):
                    result.append(ny * self.width + nx)
        return result

    def dist(self, a: int, b: int) -> float:
        """Euclidean distance between two cell centres."""
        ax, ay = self.coordinate_of(a)
        bx, by = self.coordinate_of(b)
        return math.hypot(bx - ax, by - ay)

    # =========================================================================
    # Hits
    # =========================================================================

    def add_hit(self, point: Tuple[float, float], radius: float = 0.0):
        """
        Count a scan point, inflated by radius.

        Every cell whose centre lies within radius of the centre of
        the hit cell is incremented; the hit cell always is. Points
        outside the rectangle are ignored.
        """
        cell = self.world_to_map(point[0], point[1])
        if cell is None:
            return
        mx, my = cell

        rx = int(math.ceil(radius / self.cell_width))
        ry = int(math.ceil(radius / self.cell_height))

        x0, x1 = max(mx - rx, 0), min(mx + rx, self.width - 1)
        y0, y1 = max(my - ry, 0), min(my + ry, self.height - 1)

        ys, xs = np.ogrid[y0:y1 + 1, x0:x1 + 1]
        dx = (xs - mx) * self.cell_width
        dy = (ys - my) * self.cell_height
        footprint = dx * dx + dy * dy <= radius * radius

        self._counts[y0:y1 + 1, x0:x1 + 1] += footprint

    def add_hits(self, points: Iterable[Tuple[float, float]], radius: float = 0.0):
        for point in points:
            self.add_hit(point, radius)

    def count(self, index: int) -> int:
        mx, my = self.cell_of(index)
        return int(self._counts[my, mx])

    def is_free(self, index: int) -> bool:
        return self.count(index) == 0

    def max_count(self) -> int:
        return int(self._counts.max())

    def reset(self):
        """Clear all hits."""
        self._counts[:] = 0

    @property
    def num_cells(self) -> int:
        return self.width * self.height

    def get_counts(self) -> np.ndarray:
        """Copy of the hit counts, [my, mx]."""
        return self._counts.copy()

    # =========================================================================
    # Export
    # =========================================================================

    def get_map_image(self) -> np.ndarray:
        """
        Get map as image (0-255, row 0 = min y).

        Values:
        - 254 = free (white)
        - 0 = most hit (black), shades in between
        """
        peak = self.max_count()
        if peak == 0:
            return np.full((self.height, self.width), 254, dtype=np.uint8)
        shade = 254.0 * (1.0 - self._counts / peak)
        image = shade.astype(np.uint8)
        image[self._counts > 0] = np.minimum(image[self._counts > 0], 205)
        return image

    def save(self, image_path: str, yaml_path: Optional[str] = None):
        """
        Save map as PGM with optional metadata YAML.

        Args:
            image_path: Path for the PGM image
            yaml_path: Path for metadata YAML (optional)
        """
        # PGM rows run top to bottom
        image = np.flipud(self.get_map_image())
        with open(image_path, 'wb') as f:
            f.write(f"P5\n{self.width} {self.height}\n255\n".encode())
            f.write(image.tobytes())

        if yaml_path:
            metadata = {
                'image': os.path.basename(image_path),
                'cell_size': [self.cell_width, self.cell_height],
                'origin': [self.min_x, self.min_y, 0.0],
                'negate': 0,
                'max_count': self.max_count(),
            }
            with open(yaml_path, 'w') as f:
                yaml.safe_dump(metadata, f, default_flow_style=None)
