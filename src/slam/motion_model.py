"""
Unicycle Motion Model

Shared by the truth simulator and the EKF prediction step:

    x' = v cos(theta)
    y' = v sin(theta)
    theta' = w

with control u = (v, w) held constant over the step.
"""

import math
from typing import Tuple

import numpy as np

from perception.transforms import normalize_angle


def unicycle_derivative(pose: np.ndarray, control: Tuple[float, float]) -> np.ndarray:
    """Time derivative of (x, y, theta)."""
    v, w = control
    return np.array([v * math.cos(pose[2]), v * math.sin(pose[2]), w])


def euler_step(pose: np.ndarray, control: Tuple[float, float], dt: float) -> np.ndarray:
    return pose + dt * unicycle_derivative(pose, control)


def rk4_step(pose: np.ndarray, control: Tuple[float, float], dt: float) -> np.ndarray:
    """One 4th order Runge-Kutta step."""
    k1 = unicycle_derivative(pose, control)
    k2 = unicycle_derivative(pose + 0.5 * dt * k1, control)
    k3 = unicycle_derivative(pose + 0.5 * dt * k2, control)
    k4 = unicycle_derivative(pose + dt * k3, control)
    return pose + dt / 6.0 * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


def integrate(
    pose: np.ndarray,
    control: Tuple[float, float],
    dt: float,
    method: str = "rk4",
    steps: int = 1
) -> np.ndarray:
    """
    Integrate the pose over dt.

    Args:
        pose: (x, y, theta)
        control: (v, w)
        dt: Duration
        method: "rk4" or "euler"
        steps: Sub-steps of dt / steps each

    Returns:
        New pose with theta wrapped to [-pi, pi]
    """
    if method == "rk4":
        step = rk4_step
    elif method == "euler":
        step = euler_step
    else:
        raise ValueError(f"Unknown integrator '{method}'")

    pose = np.asarray(pose, dtype=float)[:3].copy()
    h = dt / max(steps, 1)
    for _ in range(max(steps, 1)):
        pose = step(pose, control, h)
    pose[2] = normalize_angle(pose[2])
    return pose


def motion_jacobians(theta: float, v: float, dt: float) -> Tuple[np.ndarray, np.ndarray]:
    """
    Linearization of the motion model at the pre-step heading.

    Returns:
        (A, N): 3x3 Jacobian w.r.t. pose, 3x2 Jacobian w.r.t. control noise
    """
    c, s = math.cos(theta), math.sin(theta)
    A = np.array([
        [1.0, 0.0, -dt * v * s],
        [0.0, 1.0, dt * v * c],
        [0.0, 0.0, 1.0]
    ])
    N = np.array([
        [dt * c, 0.0],
        [dt * s, 0.0],
        [0.0, dt]
    ])
    return A, N
