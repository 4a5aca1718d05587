"""
Simulator.

Owns the environment, the truth robot and its laser. It can be ticked
cooperatively with step() or run on a background thread with
start()/stop(). Either way the pose, control and latest scan are read
through locked snapshot copies.

A scan is taken at construction and then every scan_every_n_steps
steps; its timestamp is a monotonic scan counter, so consumers detect
a new scan by comparing timestamps.
"""

import logging
import threading
import time
from typing import Optional, Tuple

import numpy as np

from core.config import SimulationConfig
from perception.scan import RawScan
from .environment import Environment
from .laser_simulator import LaserSensor
from .robot import Robot

logger = logging.getLogger(__name__)


class Simulator:
    """
    Robot simulator.

    Usage:
        sim = Simulator(create_block_env(), config)
        sim.apply_control(4.0, 0.15)
        for _ in range(1000):
            sim.step()
            scan = sim.get_laser_measurement()
    """

    def __init__(
        self,
        environment: Environment,
        config: Optional[SimulationConfig] = None,
        initial_pose: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    ):
        self.env = environment
        self.config = config or SimulationConfig()

        rng = np.random.default_rng(self.config.seed)
        self.robot = Robot(initial_pose, self.config, rng)
        self.laser = LaserSensor(self.config.laser, rng)

        self._steps = 0
        self._elapsed = 0.0
        self._scan: Optional[RawScan] = None
        self._scan_count = 0

        self._scan_lock = threading.Lock()
        self._time_lock = threading.Lock()

        # Background thread
        self._running = False
        self._thread: Optional[threading.Thread] = None

        self._sense()

    # =========================================================================
    # Stepping
    # =========================================================================

    def step(self, dt: Optional[float] = None):
        """Advance the simulation by one tick."""
        dt = self.config.dt if dt is None else dt

        if self.robot.is_running:
            self.robot.update(dt)
            pose = self.robot.get_pose()
            clearance = self.env.distance_to(pose[0], pose[1])
            if clearance < self.robot.radius:
                logger.warning("Robot crashed at (%.1f, %.1f), stopping", pose[0], pose[1])
                self.robot.is_running = False

        with self._time_lock:
            self._steps += 1
            self._elapsed += dt
            steps = self._steps

        if steps % self.config.scan_every_n_steps == 0:
            self._sense()

    def _sense(self):
        distances = self.laser.scan(self.env, self.robot.tail(), self.robot.get_pose()[2])
        with self._scan_lock:
            self._scan = RawScan(distances=distances, timestamp=self._scan_count)
            self._scan_count += 1

    def start(self) -> bool:
        """Run step() on a background thread at the configured rate."""
        if self._running:
            return True

        self._running = True
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="Simulator"
        )
        self._thread.start()
        logger.info("Simulator thread started")
        return True

    def stop(self):
        """Stop the background thread."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=1.0)
            self._thread = None
        logger.info("Simulator thread stopped")

    def _loop(self):
        period = self.config.dt
        while self._running:
            start = time.time()
            self.step(period)
            elapsed = time.time() - start
            if elapsed < period:
                time.sleep(period - elapsed)

    # =========================================================================
    # Accessors
    # =========================================================================

    def apply_control(self, v: float, w: float):
        self.robot.apply_control(v, w)

    def current_control(self) -> Tuple[float, float]:
        return self.robot.get_current_control()

    def get_true_pose(self) -> np.ndarray:
        return self.robot.get_pose()

    def get_laser_measurement(self) -> RawScan:
        """Latest scan (immutable)."""
        with self._scan_lock:
            return self._scan

    @property
    def robot_radius(self) -> float:
        return self.robot.radius

    @property
    def elapsed_time(self) -> float:
        with self._time_lock:
            return self._elapsed

    @property
    def crashed(self) -> bool:
        return not self.robot.is_running

    @property
    def is_running(self) -> bool:
        """True while the background thread runs."""
        return self._running
