"""
Linear Algebra Helpers

Thin layer over numpy for the block-structured matrices of EKF-SLAM:
- Block extract / insert
- Guarded inversion (near-singular matrices are reported, not inverted)
- 2x2 rotation and covariance ellipse (eigendecomposition)
"""

import math
from typing import Optional

import numpy as np


# Chi-square 95% bound for 2 degrees of freedom
CHI2_95_2DOF = 5.991


def block(m: np.ndarray, row: int, col: int, rows: int, cols: int) -> np.ndarray:
    """Copy of the rows x cols block starting at (row, col)."""
    return m[row:row + rows, col:col + cols].copy()


def set_block(m: np.ndarray, row: int, col: int, value: np.ndarray):
    """Write value into m with its top-left corner at (row, col)."""
    rows, cols = value.shape
    m[row:row + rows, col:col + cols] = value


def safe_inverse(m: np.ndarray, cond_limit: float = 1e12) -> Optional[np.ndarray]:
    """
    Invert a square matrix, or return None if it is (near) singular.

    Args:
        m: Square matrix
        cond_limit: Largest accepted condition number

    Returns:
        Inverse of m, or None
    """
    if not np.all(np.isfinite(m)):
        return None
    if abs(np.linalg.det(m)) < 1e-12:
        return None
    if np.linalg.cond(m) > cond_limit:
        return None
    return np.linalg.inv(m)


def symmetrize(m: np.ndarray) -> np.ndarray:
    """Average m with its transpose."""
    return 0.5 * (m + m.T)


def rotation(theta: float) -> np.ndarray:
    """2x2 rotation matrix (body to world)."""
    c = math.cos(theta)
    s = math.sin(theta)
    return np.array([[c, -s],
                     [s, c]])


def covariance_ellipse(
    mean: np.ndarray,
    cov: np.ndarray,
    confidence: float = CHI2_95_2DOF,
    resolution: int = 20
) -> np.ndarray:
    """
    Points on the uncertainty ellipse of a 2D Gaussian.

    Args:
        mean: 2-vector centre
        cov: Symmetric 2x2 covariance
        confidence: Chi-square scaling (5.991 = 95%)
        resolution: Number of points (first and last coincide)

    Returns:
        resolution x 2 array of ellipse points
    """
    eigenvalues, eigenvectors = np.linalg.eigh(symmetrize(cov))
    eigenvalues = np.clip(eigenvalues, 0.0, None)
    angles = np.linspace(0.0, 2 * np.pi, resolution)
    unit = np.column_stack([np.cos(angles), np.sin(angles)])
    scaled = unit * np.sqrt(confidence * eigenvalues)
    return np.asarray(mean, dtype=float).reshape(1, 2) + scaled @ eigenvectors.T
