"""
SLAM Controller

Runs the estimation and navigation pipeline against a simulator,
one tick at a time:

1. Propagate the EKF with the control the robot executed since the
   last tick
2. On a new scan: project it from the estimated pose, add the points
   to the hit grid, extract segments and landmarks, and fuse the
   landmarks into the EKF
3. With a goal: plan once, replan when the remaining path has been
   hit, and follow the waypoints. Without a goal: cruise control

Usage:
    sim = Simulator(create_block_env(), config)
    controller = SLAMController(sim, config, goal=(250, -200))
    controller.run(2000)
    snapshot = controller.snapshot()
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np

from core.config import SimulationConfig
from navigation.global_planner import GlobalPlanner, PlanResult
from navigation.path_follower import FollowerState, WaypointFollower
from perception.line_extractor import LineFeatureExtractor, LineSegmentFeature, create_extractor
from perception.scan import RawScan, project_scan
from simulation.simulator import Simulator
from slam.ekf_slam import EKFSLAM, relative_measurements
from slam.hit_grid import HitGrid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControllerSnapshot:
    """Everything a renderer needs, copied at one instant."""
    tick: int
    elapsed_time: float
    true_pose: np.ndarray
    pose_mean: np.ndarray
    pose_covariance: np.ndarray
    landmarks: List[Tuple[np.ndarray, np.ndarray]]      # (mean, cov) per tracked landmark
    observed_landmarks: List[np.ndarray]                # World points of the last scan
    segments: List[LineSegmentFeature]
    path: List[Tuple[float, float]] = field(default_factory=list)
    goal: Optional[Tuple[float, float]] = None
    follower_state: Optional[FollowerState] = None
    reached_goal: bool = False
    replans: int = 0


class SLAMController:
    """
    EKF-SLAM + hit grid planning on top of a Simulator.
    """

    def __init__(
        self,
        simulator: Simulator,
        config: Optional[SimulationConfig] = None,
        goal: Optional[Tuple[float, float]] = None,
        extractor: Optional[LineFeatureExtractor] = None
    ):
        self.sim = simulator
        self.config = config or SimulationConfig()

        self.ekf = EKFSLAM(self.config.ekf, initial_pose=tuple(simulator.get_true_pose()))
        self.grid = HitGrid.from_config(self.config.grid)
        self.planner = GlobalPlanner(self.grid, self.config.planner)
        self.follower = WaypointFollower(self.config.follower)
        self.extractor = extractor or create_extractor(self.config.extractor, self.config.laser)

        self._goal: Optional[Tuple[float, float]] = None
        self._plan: Optional[PlanResult] = None
        self._reached_goal = False
        self._replans = 0

        self._tick = 0
        self._last_time = simulator.elapsed_time
        self._last_timestamp: Optional[int] = None

        self._segments: List[LineSegmentFeature] = []
        self._observed: List[np.ndarray] = []
        self._lock = threading.Lock()

        if goal is not None:
            self.set_goal(goal)

        logger.info("Controller ready: extractor=%s, grid=%dx%d",
                    self.extractor.name, self.grid.width, self.grid.height)

    # =========================================================================
    # Goal
    # =========================================================================

    def set_goal(self, goal: Optional[Tuple[float, float]]):
        """Navigate to goal (world point), or cruise if None."""
        if goal is not None and self.grid.index_of(goal) is None:
            raise ValueError(f"Goal {goal} is outside the map")
        self._goal = None if goal is None else (float(goal[0]), float(goal[1]))
        self._plan = None
        self._reached_goal = False
        self.follower.clear()
        if self._goal is not None:
            logger.info("New goal (%.1f, %.1f)", *self._goal)

    @property
    def goal(self) -> Optional[Tuple[float, float]]:
        return self._goal

    @property
    def reached_goal(self) -> bool:
        return self._reached_goal

    # =========================================================================
    # Loop
    # =========================================================================

    def run(self, ticks: int, dt: Optional[float] = None):
        """Step the simulator and the controller together."""
        for _ in range(ticks):
            self.sim.step(dt)
            self.tick()
            if self.sim.crashed or self._reached_goal:
                break

    def tick(self):
        """One pass: propagate, sense, plan, act."""
        now = self.sim.elapsed_time
        dt = now - self._last_time
        self._last_time = now
        self.ekf.propagate(self.sim.current_control(), dt)

        scan = self.sim.get_laser_measurement()
        new_scan = scan is not None and scan.timestamp != self._last_timestamp
        if new_scan:
            self._last_timestamp = scan.timestamp
            self._process_scan(scan)

        if self._goal is None:
            self.sim.apply_control(*self.config.cruise_control)
        else:
            self._navigate(new_scan)

        self._tick += 1

    def _process_scan(self, scan: RawScan):
        pose, _ = self.ekf.current_pose_estimate()
        projected = project_scan(scan.distances, pose, self.sim.robot_radius, self.config.laser)

        self.grid.add_hits(projected.points, self.sim.robot_radius)

        result = self.extractor.extract(projected.points, projected.distances)
        self.ekf.augment_update(relative_measurements(result.landmarks, pose))

        with self._lock:
            self._segments = result.segments
            self._observed = result.landmarks

    def _navigate(self, new_scan: bool):
        if self._reached_goal:
            self.sim.apply_control(0.0, 0.0)
            return

        pose, _ = self.ekf.current_pose_estimate()

        if self._plan is None:
            self._replan(pose)
        elif not self._plan.reached:
            # Unreachable so far: retry once the map has changed
            if new_scan:
                self._replan(pose)
        elif self.planner.is_path_blocked(self._plan.cells, max(self.follower.current_index, 1)):
            logger.info("Path blocked at waypoint %d, replanning", self.follower.current_index)
            self._replans += 1
            self._replan(pose)

        if not self._plan.reached:
            self.sim.apply_control(0.0, 0.0)
            return

        cmd = self.follower.compute(pose)
        if cmd.reached_goal:
            logger.info("Goal (%.1f, %.1f) reached", *self._goal)
            self._reached_goal = True
        self.sim.apply_control(cmd.linear, cmd.angular)

    def _replan(self, pose: np.ndarray):
        plan = self.planner.a_star((pose[0], pose[1]), self._goal)
        with self._lock:
            self._plan = plan
        if plan.reached:
            self.follower.set_path(self.planner.waypoints(plan))
            logger.debug("Planned %d cells (%.1f units)", len(plan),
                         self.planner.path_length(self.planner.waypoints(plan)))
        else:
            self.follower.clear()

    # =========================================================================
    # Status
    # =========================================================================

    def snapshot(self) -> ControllerSnapshot:
        """Copy of the current estimate, map features and plan."""
        mean, cov = self.ekf.current_pose_estimate()
        with self._lock:
            path = self.planner.waypoints(self._plan) if self._plan is not None else []
            segments = list(self._segments)
            observed = [p.copy() for p in self._observed]

        return ControllerSnapshot(
            tick=self._tick,
            elapsed_time=self.sim.elapsed_time,
            true_pose=self.sim.get_true_pose(),
            pose_mean=mean,
            pose_covariance=cov,
            landmarks=self.ekf.landmark_estimates(),
            observed_landmarks=observed,
            segments=segments,
            path=path,
            goal=self._goal,
            follower_state=self.follower.state if self._goal is not None else None,
            reached_goal=self._reached_goal,
            replans=self._replans
        )

    def get_status(self) -> dict:
        """Summary for logging."""
        mean, _ = self.ekf.current_pose_estimate()
        true_pose = self.sim.get_true_pose()
        return {
            "tick": self._tick,
            "time": self.sim.elapsed_time,
            "landmarks": self.ekf.num_landmarks,
            "pose_error": float(np.hypot(*(mean[:2] - true_pose[:2]))),
            "goal": self._goal,
            "reached_goal": self._reached_goal,
            "replans": self._replans,
        }
