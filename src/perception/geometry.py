"""
Planar Line Geometry

Primitives shared by the RANSAC and IEP line extractors:
- Perpendicular distance of points to the line through two points
- Intersection of two infinite lines
- Ordinary least squares line fit and orthogonal projection

Degenerate input (coincident defining points, parallel lines,
singular normal equations) is reported with None instead of
producing NaN or Inf.
"""

import math
from typing import Optional, Tuple

import numpy as np

from core.linalg import safe_inverse


def perpendicular_distance(p1: np.ndarray, p2: np.ndarray, p0: np.ndarray) -> Optional[float]:
    """
    Distance of p0 to the line through p1 and p2.

    Returns:
        Distance, or None if p1 and p2 coincide
    """
    dy = p2[1] - p1[1]
    dx = p2[0] - p1[0]
    den = math.sqrt(dy * dy + dx * dx)
    if den < 1e-12:
        return None
    num = abs(dy * p0[0] - dx * p0[1] + p2[0] * p1[1] - p2[1] * p1[0])
    return num / den


def perpendicular_distances(p1: np.ndarray, p2: np.ndarray, points: np.ndarray) -> Optional[np.ndarray]:
    """Vectorized perpendicular_distance over an Nx2 array of points."""
    dy = p2[1] - p1[1]
    dx = p2[0] - p1[0]
    den = math.sqrt(dy * dy + dx * dx)
    if den < 1e-12:
        return None
    num = np.abs(dy * points[:, 0] - dx * points[:, 1] + p2[0] * p1[1] - p2[1] * p1[0])
    return num / den


def line_intersection(
    a1: np.ndarray, a2: np.ndarray,
    b1: np.ndarray, b2: np.ndarray,
    tolerance: float = 1e-6
) -> Optional[np.ndarray]:
    """
    Intersection of the infinite lines a1-a2 and b1-b2.

    Each line is written as n . p = c with a unit normal n, so the
    determinant of the 2x2 system is the sine of the angle between
    the lines and does not depend on segment length or slope.

    Returns:
        Intersection point, or None if degenerate or near-parallel
    """
    normals = []
    offsets = []
    for p, q in ((a1, a2), (b1, b2)):
        n = np.array([q[1] - p[1], p[0] - q[0]], dtype=float)
        norm = np.linalg.norm(n)
        if norm < 1e-12:
            return None
        n /= norm
        normals.append(n)
        offsets.append(float(np.dot(n, p)))

    A = np.vstack(normals)
    if abs(np.linalg.det(A)) < tolerance:
        return None
    return np.linalg.solve(A, np.array(offsets))


def fit_line_least_squares(points: np.ndarray) -> Optional[Tuple[float, float]]:
    """
    Regress y on x.

    Args:
        points: Nx2 array

    Returns:
        (slope, intercept), or None if the normal equations are singular
    """
    X = np.column_stack([np.ones(len(points)), points[:, 0]])
    Y = points[:, 1]
    XtX_inv = safe_inverse(X.T @ X)
    if XtX_inv is None:
        return None
    intercept, slope = XtX_inv @ X.T @ Y
    return float(slope), float(intercept)


def project_point_on_line(slope: float, intercept: float, point: np.ndarray) -> np.ndarray:
    """Orthogonal projection of point onto y = slope * x + intercept."""
    x = (point[0] + slope * (point[1] - intercept)) / (1.0 + slope * slope)
    return np.array([x, slope * x + intercept])


def in_expanded_box(point: np.ndarray, p1: np.ndarray, p2: np.ndarray, margin: float) -> bool:
    """True if point lies strictly inside the bounding box of p1-p2 grown by margin."""
    return (min(p1[0], p2[0]) - margin < point[0] < max(p1[0], p2[0]) + margin
            and min(p1[1], p2[1]) - margin < point[1] < max(p1[1], p2[1]) + margin)
