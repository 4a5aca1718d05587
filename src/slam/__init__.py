"""
SLAM module.

Components:
- EKFSLAM: Joint pose and landmark estimation (Extended Kalman Filter)
- HitGrid: Inflated hit-count map for planning
- Motion model: Unicycle kinematics shared with the simulator
"""

from .ekf_slam import (
    EKFSLAM,
    Association,
    AssociationKind,
    relative_measurements
)

from .hit_grid import HitGrid

from .motion_model import (
    integrate,
    motion_jacobians,
    rk4_step,
    euler_step,
    unicycle_derivative
)

__all__ = [
    'EKFSLAM',
    'Association',
    'AssociationKind',
    'relative_measurements',
    'HitGrid',
    'integrate',
    'motion_jacobians',
    'rk4_step',
    'euler_step',
    'unicycle_derivative'
]
