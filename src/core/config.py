"""
Configuration

Every tunable constant of the simulator, the perception pipeline, the
estimator and the planner, grouped per component.

Units follow the simulated world (one unit is one centimetre),
angles are radians.

Usage:
    config = load_config("config/default.yaml")
    extractor = create_extractor(config.extractor, config.laser)
"""

import math
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional, Tuple

import numpy as np
import yaml

from .errors import ConfigError


@dataclass(frozen=True)
class LaserConfig:
    """Laser range finder geometry and noise."""
    count: int = 181                        # Beams per scan
    min_theta: float = -math.pi / 2         # First beam, robot frame
    max_theta: float = math.pi / 2          # Last beam, robot frame
    max_distance: float = 500.0             # Max range
    distance_error_limit: float = 5.0       # Uniform noise on range
    angle_error_limit: float = 0.05         # Uniform noise, fraction of a beam

    @property
    def invalid_distance(self) -> float:
        """Sentinel for 'no return within max range'."""
        return self.max_distance + 1.0

    @property
    def angular_resolution(self) -> float:
        return (self.max_theta - self.min_theta) / self.count

    def beam_angle(self, index: int) -> float:
        """Nominal angle of beam index, robot frame."""
        return self.min_theta + (self.max_theta - self.min_theta) * index / (self.count - 1)


@dataclass(frozen=True)
class ExtractorConfig:
    """Line segment and landmark extraction."""
    method: str = "ransac_ls"               # ransac | ransac_ls | iep | iep_ransac
    discontinuity_threshold: float = 60.0   # Range jump that splits a partition
    lower_landmark_margin: float = 1.0      # Jump into/out of INVALID that splits
    ransac_iter: int = 1000
    ransac_threshold: float = 4.0           # Inlier perpendicular distance
    ransac_min_inliers: int = 8
    vertical_line_threshold: float = 20.0   # x spread below which x = const
    iep_epsilon: float = 10.0               # IEP split distance
    intersection_margin: float = 30.0
    parallel_tolerance: float = 1e-6
    seed: Optional[int] = None

    def __post_init__(self):
        if self.method not in ("ransac", "ransac_ls", "iep", "iep_ransac"):
            raise ConfigError(f"Unknown extraction method '{self.method}'")
        if self.ransac_iter <= 0:
            raise ConfigError("ransac_iter must be positive")


@dataclass(frozen=True)
class EKFSLAMConfig:
    """EKF-SLAM estimator."""
    process_noise_std: float = 0.10         # Control noise (v, w)
    measurement_noise_std: float = 1.0      # Relative position noise
    update_threshold: float = 20.0          # Mahalanobis gate for re-observation
    augment_threshold: float = 200.0        # Mahalanobis gate for new landmark
    clean_every_n_augment_updates: int = 25
    clean_threshold: int = 3                # Landmarks with <= hits are pruned
    integrator: str = "rk4"                 # rk4 | euler
    integrator_steps: int = 1
    singular_cond_limit: float = 1e12

    def __post_init__(self):
        if self.integrator not in ("rk4", "euler"):
            raise ConfigError(f"Unknown integrator '{self.integrator}'")
        if self.update_threshold > self.augment_threshold:
            raise ConfigError(
                f"update_threshold ({self.update_threshold}) must not exceed "
                f"augment_threshold ({self.augment_threshold})")
        if self.clean_every_n_augment_updates <= 0:
            raise ConfigError("clean_every_n_augment_updates must be positive")

    @property
    def process_noise(self) -> np.ndarray:
        """Covariance of the control noise."""
        return np.eye(2) * self.process_noise_std ** 2

    @property
    def measurement_noise(self) -> np.ndarray:
        return np.eye(2) * self.measurement_noise_std ** 2


@dataclass(frozen=True)
class GridConfig:
    """Hit grid covering the world rectangle."""
    min_corner: Tuple[float, float] = (-1000.0, -1000.0)
    max_corner: Tuple[float, float] = (1000.0, 1000.0)
    num_cells_x: int = 200
    num_cells_y: int = 200


@dataclass(frozen=True)
class PlannerConfig:
    """A* planner."""
    allow_corner_cutting: bool = False      # Diagonal past an occupied cell
    max_expansions: Optional[int] = None    # None = whole grid


@dataclass(frozen=True)
class FollowerConfig:
    """Rotate / Drive / Arrived waypoint follower."""
    orientation_slack: float = 0.1          # rad
    milestone_slack: float = 10.0           # units
    angular_gain: float = 2.0
    max_angular_speed: float = 1.0          # rad/s
    linear_gain: float = 1.0
    max_linear_speed: float = 20.0          # units/s


@dataclass(frozen=True)
class SimulationConfig:
    """Root configuration."""
    laser: LaserConfig = field(default_factory=LaserConfig)
    extractor: ExtractorConfig = field(default_factory=ExtractorConfig)
    ekf: EKFSLAMConfig = field(default_factory=EKFSLAMConfig)
    grid: GridConfig = field(default_factory=GridConfig)
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    follower: FollowerConfig = field(default_factory=FollowerConfig)

    # Simulator timing
    dt: float = 0.01                        # Truth integration step (s)
    scan_every_n_steps: int = 10
    robot_radius: float = 20.0
    cruise_control: Tuple[float, float] = (4.0, 0.15)   # (v, w) without a goal
    seed: Optional[int] = None

    # Truth robot
    max_linear_acceleration: float = 20.0   # units/s^2
    max_angular_acceleration: float = 0.5   # rad/s^2
    linear_velocity_error: float = 0.5      # Uniform multiplicative noise on v
    angular_velocity_error: float = 0.1     # Uniform multiplicative noise on w


_SECTIONS = {
    'laser': LaserConfig,
    'extractor': ExtractorConfig,
    'ekf': EKFSLAMConfig,
    'grid': GridConfig,
    'planner': PlannerConfig,
    'follower': FollowerConfig,
}


def _build(cls, values: Dict[str, Any], section: str):
    """Instantiate a config dataclass from a dict, rejecting unknown keys."""
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(f"Unknown keys in '{section}': {sorted(unknown)}")
    converted = {}
    for key, value in values.items():
        # YAML has no tuples
        converted[key] = tuple(value) if isinstance(value, list) else value
    return cls(**converted)


def config_from_dict(data: Optional[Dict[str, Any]]) -> SimulationConfig:
    """Build a SimulationConfig from a parsed YAML document."""
    data = dict(data or {})
    sections = {}
    for name, cls in _SECTIONS.items():
        section = data.pop(name, None) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"Section '{name}' must be a mapping")
        sections[name] = _build(cls, section, name)

    simulation = data.pop('simulation', None) or {}
    if data:
        raise ConfigError(f"Unknown sections: {sorted(data)}")
    if not isinstance(simulation, dict):
        raise ConfigError("Section 'simulation' must be a mapping")

    base = SimulationConfig(**sections)
    top_level = {f.name for f in fields(SimulationConfig)} - set(_SECTIONS)
    unknown = set(simulation) - top_level
    if unknown:
        raise ConfigError(f"Unknown keys in 'simulation': {sorted(unknown)}")
    overrides = {k: tuple(v) if isinstance(v, list) else v for k, v in simulation.items()}
    return replace(base, **overrides)


def load_config(path: str) -> SimulationConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Raises:
        ConfigError: File missing or malformed
    """
    if not os.path.exists(path):
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is not None and not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")

    try:
        return config_from_dict(data)
    except TypeError as e:
        raise ConfigError(f"Invalid value in {path}: {e}") from e
