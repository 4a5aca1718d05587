"""
Global Path Planner - A* Algorithm

Finds the shortest path between two world points on the hit grid.

Algorithm: A* over the 8-connected cell graph
- Edge cost: Euclidean distance between cell centres
- Heuristic: Euclidean distance to the goal centre (admissible and
  consistent on a uniform grid)
- A cell is traversable iff its hit count is 0; the start cell is
  always expanded so a robot standing in an inflated margin can leave
- Ties in f are broken by insertion order

An unreachable goal is not an error: the plan is the start cell
alone and reached is False.

References:
- Red Blob Games A* tutorial: https://www.redblobgames.com/pathfinding/a-star/
"""

import heapq
import itertools
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from core.config import PlannerConfig
from slam.hit_grid import HitGrid

logger = logging.getLogger(__name__)


@dataclass
class PlanResult:
    """A* output: flat cell indices from start to goal."""
    cells: List[int]
    reached: bool
    explored: int = 0                   # Cells expanded

    def __len__(self) -> int:
        return len(self.cells)


@dataclass(order=True)
class Node:
    """A* search node."""
    f_cost: float                                       # g + h (for priority queue)
    order: int                                          # Insertion counter (tie-break)
    g_cost: float = field(compare=False)                # Cost from start
    index: int = field(compare=False)


class GlobalPlanner:
    """
    A* global path planner on a HitGrid.

    Usage:
        planner = GlobalPlanner(grid)

        result = planner.a_star(start=(0, 0), goal=(500, 300))
        if planner.is_path_blocked(result.cells):
            result = planner.a_star(current_position, goal)
        waypoints = planner.waypoints(result)
    """

    def __init__(self, grid: HitGrid, config: Optional[PlannerConfig] = None):
        self.grid = grid
        self.config = config or PlannerConfig()

    def a_star(self, start: Tuple[float, float], goal: Tuple[float, float]) -> PlanResult:
        """
        Plan from start to goal in world coordinates.

        Raises:
            ValueError: start or goal lies outside the grid
        """
        grid = self.grid
        start_index = grid.index_of(start)
        goal_index = grid.index_of(goal)
        if start_index is None:
            raise ValueError(f"Start {start} is outside the map")
        if goal_index is None:
            raise ValueError(f"Goal {goal} is outside the map")

        counter = itertools.count()
        open_set = [Node(grid.dist(start_index, goal_index), next(counter), 0.0, start_index)]
        came_from: Dict[int, int] = {}
        g_costs: Dict[int, float] = {start_index: 0.0}
        closed = set()

        max_expansions = self.config.max_expansions or grid.num_cells
        explored = 0

        while open_set and explored < max_expansions:
            current = heapq.heappop(open_set)

            if current.index == goal_index:
                cells = self._reconstruct_path(came_from, goal_index)
                logger.debug("A*: %d cells, %d expanded", len(cells), explored)
                return PlanResult(cells=cells, reached=True, explored=explored)

            # Skip if already visited
            if current.index in closed:
                continue
            closed.add(current.index)
            explored += 1

            for neighbour in grid.neighbours(current.index):
                if neighbour in closed or not grid.is_free(neighbour):
                    continue
                if not self.config.allow_corner_cutting and self._cuts_corner(current.index, neighbour):
                    continue

                new_g = current.g_cost + grid.dist(current.index, neighbour)

                # Skip if we already found a better path
                if neighbour in g_costs and new_g >= g_costs[neighbour]:
                    continue

                g_costs[neighbour] = new_g
                came_from[neighbour] = current.index
                f = new_g + grid.dist(neighbour, goal_index)
                heapq.heappush(open_set, Node(f, next(counter), new_g, neighbour))

        logger.warning("A*: could not reach %s from %s (%d cells expanded)", goal, start, explored)
        return PlanResult(cells=[start_index], reached=False, explored=explored)

    def _cuts_corner(self, a: int, b: int) -> bool:
        """Diagonal move from a to b passes an occupied orthogonal cell."""
        ax, ay = self.grid.cell_of(a)
        bx, by = self.grid.cell_of(b)
        if ax == bx or ay == by:
            return False
        width = self.grid.width
        return not (self.grid.is_free(ay * width + bx) and self.grid.is_free(by * width + ax))

    @staticmethod
    def _reconstruct_path(came_from: Dict[int, int], goal_index: int) -> List[int]:
        """Walk parents back from the goal."""
        path = [goal_index]
        while path[-1] in came_from:
            path.append(came_from[path[-1]])
        path.reverse()
        return path

    def is_path_blocked(self, cells: Sequence[int], from_index: int = 0) -> bool:
        """True if any cell of the path from from_index on has been hit."""
        return any(not self.grid.is_free(c) for c in cells[from_index:])

    def waypoints(self, result: PlanResult) -> List[Tuple[float, float]]:
        """Cell centres of a plan, world coordinates."""
        return [self.grid.coordinate_of(c) for c in result.cells]

    @staticmethod
    def path_length(path: Sequence[Tuple[float, float]]) -> float:
        """Calculate total length of a waypoint path."""
        if not path or len(path) < 2:
            return 0.0
        total = 0.0
        for i in range(1, len(path)):
            dx = path[i][0] - path[i-1][0]
            dy = path[i][1] - path[i-1][1]
            total += math.sqrt(dx*dx + dy*dy)
        return total
