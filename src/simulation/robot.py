"""
Simulated robot.

Ground-truth unicycle integrated with RK4. The commanded control is
reached through bounded accelerations, and the control actually
executed carries multiplicative noise whenever the robot moves.
"""

import threading
from typing import Optional, Tuple

import numpy as np

from core.config import SimulationConfig
from slam.motion_model import integrate


class Robot:
    """
    Truth robot.

    Usage:
        robot = Robot((0, 0, 0), config, rng)
        robot.apply_control(4.0, 0.15)
        robot.update(0.01)
        x, y, theta = robot.get_pose()
    """

    def __init__(
        self,
        initial_pose: Tuple[float, float, float] = (0.0, 0.0, 0.0),
        config: Optional[SimulationConfig] = None,
        rng: Optional[np.random.Generator] = None
    ):
        self.config = config or SimulationConfig()
        self.radius = self.config.robot_radius
        self._rng = rng if rng is not None else np.random.default_rng()

        self._pose = np.array(initial_pose, dtype=float)
        self._goal_control = np.zeros(2)
        self._current_control = np.zeros(2)
        self.is_running = True

        self._pose_lock = threading.Lock()
        self._control_lock = threading.Lock()

    def apply_control(self, v: float, w: float):
        """Set the commanded (v, w)."""
        with self._control_lock:
            self._goal_control[:] = (v, w)

    def update(self, dt: float):
        """Advance the truth by dt."""
        cfg = self.config
        with self._control_lock:
            limits = np.array([cfg.max_linear_acceleration, cfg.max_angular_acceleration]) * dt
            change = np.clip(self._goal_control - self._current_control, -limits, limits)
            self._current_control += change
            control = self._current_control.copy()

        if np.any(control != 0.0):
            control[0] *= 1.0 + self._rng.uniform(-cfg.linear_velocity_error, cfg.linear_velocity_error)
            control[1] *= 1.0 + self._rng.uniform(-cfg.angular_velocity_error, cfg.angular_velocity_error)

        with self._pose_lock:
            self._pose = integrate(self._pose, (control[0], control[1]), dt, "rk4")

    def get_pose(self) -> np.ndarray:
        with self._pose_lock:
            return self._pose.copy()

    def get_current_control(self) -> Tuple[float, float]:
        """Noise-free control currently executed (after acceleration limits)."""
        with self._control_lock:
            return float(self._current_control[0]), float(self._current_control[1])

    def tail(self) -> np.ndarray:
        """Laser mount point, one radius behind the centre."""
        pose = self.get_pose()
        return pose[:2] - self.radius * np.array([np.cos(pose[2]), np.sin(pose[2])])
