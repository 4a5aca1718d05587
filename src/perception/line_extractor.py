"""
Line Feature Extractor

Turns one laser scan into line segments and point landmarks.

Pipeline:
1. Partition the scan at range discontinuities (raw index order,
   INVALID returns included)
2. Fit lines per partition (RANSAC, RANSAC + least squares, IEP, or
   IEP pre-split followed by RANSAC + least squares)
3. Landmarks: loose ends at partition boundaries plus intersections
   of extracted lines that are backed by a nearby scan point

Usage:
    extractor = create_extractor(config.extractor, config.laser)
    result = extractor.extract(projected.points, projected.distances)
    for landmark in result.landmarks:
        ...
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
from scipy.spatial import cKDTree

from core.config import ExtractorConfig, LaserConfig
from .geometry import (
    fit_line_least_squares,
    in_expanded_box,
    line_intersection,
    perpendicular_distances,
    project_point_on_line,
)

logger = logging.getLogger(__name__)


@dataclass
class LineSegmentFeature:
    """A line segment extracted from a scan, world frame."""
    start: np.ndarray
    end: np.ndarray

    @property
    def length(self) -> float:
        return float(np.linalg.norm(self.end - self.start))

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (float(self.start[0]), float(self.start[1]),
                float(self.end[0]), float(self.end[1]))


@dataclass
class ScanPartition:
    """Contiguous run of valid returns without a range discontinuity."""
    points: np.ndarray          # Mx2 (x, y)
    indices: np.ndarray         # M raw beam indices

    def __len__(self) -> int:
        return len(self.points)


@dataclass
class ExtractionResult:
    """Segments and landmarks of one scan."""
    segments: List[LineSegmentFeature] = field(default_factory=list)
    landmarks: List[np.ndarray] = field(default_factory=list)
    partitions: List[ScanPartition] = field(default_factory=list)


def partition_scan(
    points: np.ndarray,
    distances: np.ndarray,
    config: ExtractorConfig,
    laser: LaserConfig
) -> List[ScanPartition]:
    """
    Split the valid returns at range discontinuities.

    A break sits between raw beams i-1 and i when the range jumps by
    more than discontinuity_threshold, or when either beam has no
    return and the jump exceeds lower_landmark_margin.

    Args:
        points: N world points, one per valid beam, in beam order
        distances: C raw ranges including INVALID

    Returns:
        Partitions in beam order; together they hold every point once
    """
    distances = np.asarray(distances, dtype=float)
    invalid = distances == laser.invalid_distance
    valid_indices = np.flatnonzero(~invalid)

    if len(valid_indices) != len(points):
        raise ValueError(
            f"{len(points)} points for {len(valid_indices)} valid distances")
    if len(points) == 0:
        return []

    jumps = np.abs(np.diff(distances))
    touches_invalid = invalid[1:] | invalid[:-1]
    breaks = np.zeros(len(distances), dtype=bool)
    breaks[1:] = (jumps > config.discontinuity_threshold) | (
        touches_invalid & (jumps > config.lower_landmark_margin))

    partition_ids = np.cumsum(breaks)[valid_indices]
    cuts = np.flatnonzero(np.diff(partition_ids)) + 1

    return [
        ScanPartition(points=p, indices=idx)
        for p, idx in zip(np.split(np.asarray(points, dtype=float), cuts),
                          np.split(valid_indices, cuts))
    ]


def iep_split(points: np.ndarray, epsilon: float) -> List[Tuple[int, int]]:
    """
    Iterative end point fit.

    Recursively split at the point farthest from the chord between the
    first and last point until every piece is within epsilon. The split
    point closes the left piece, so pieces are disjoint.

    Returns:
        (start, stop) index ranges into points, in order
    """
    ranges: List[Tuple[int, int]] = []
    stack = [(0, len(points))]

    while stack:
        start, stop = stack.pop()
        if stop - start <= 2:
            ranges.append((start, stop))
            continue

        first, last = points[start], points[stop - 1]
        interior = points[start + 1:stop - 1]
        distances = perpendicular_distances(first, last, interior)
        if distances is None:
            # Closed chord: fall back to distance from the repeated point
            distances = np.linalg.norm(interior - first, axis=1)

        k = int(np.argmax(distances))
        if distances[k] <= epsilon:
            ranges.append((start, stop))
            continue

        split = start + 1 + k
        # Right first so the left piece is popped next
        stack.append((split + 1, stop))
        stack.append((start, split + 1))

    return ranges


class LineFeatureExtractor(ABC):
    """
    Base extractor: partitioning and landmark logic shared by all
    line fitting strategies.
    """

    name = "base"

    def __init__(self, config: Optional[ExtractorConfig] = None, laser: Optional[LaserConfig] = None):
        self.config = config or ExtractorConfig()
        self.laser = laser or LaserConfig()

    def extract(self, points: np.ndarray, distances: np.ndarray) -> ExtractionResult:
        """
        Extract line segments and landmarks from one scan.

        Args:
            points: Nx2 world points of the valid returns, beam order
            distances: C raw ranges, INVALID where no return

        Returns:
            ExtractionResult
        """
        points = np.asarray(points, dtype=float).reshape(-1, 2)
        distances = np.asarray(distances, dtype=float)

        partitions = partition_scan(points, distances, self.config, self.laser)

        segments: List[LineSegmentFeature] = []
        for partition in partitions:
            segments.extend(self.fit_partition(partition.points))

        landmarks = self._loose_ends(partitions, distances)
        landmarks.extend(self._intersections(segments, points))

        logger.debug("%s: %d partitions, %d segments, %d landmarks",
                     self.name, len(partitions), len(segments), len(landmarks))

        return ExtractionResult(segments=segments, landmarks=landmarks, partitions=partitions)

    @abstractmethod
    def fit_partition(self, points: np.ndarray) -> List[LineSegmentFeature]:
        """Fit line segments to the points of one partition."""
        pass

    def _loose_ends(self, partitions: List[ScanPartition], distances: np.ndarray) -> List[np.ndarray]:
        """Endpoints of partitions that are closer than the beam beyond the break."""
        landmarks = []
        last_index = len(distances) - 1
        cfg = self.config

        for partition in partitions:
            if len(partition) < cfg.ransac_min_inliers:
                continue

            first = int(partition.indices[0])
            d = distances[first]
            if (first > 0
                    and self.laser.max_distance - d >= cfg.discontinuity_threshold
                    and d <= distances[first - 1]):
                landmarks.append(partition.points[0].copy())

            last = int(partition.indices[-1])
            d = distances[last]
            if (last < last_index
                    and self.laser.max_distance - d >= cfg.discontinuity_threshold
                    and d <= distances[last + 1]):
                landmarks.append(partition.points[-1].copy())

        return landmarks

    def _intersections(self, segments: List[LineSegmentFeature], points: np.ndarray) -> List[np.ndarray]:
        """Corners: line intersections confirmed by a nearby scan point."""
        if len(segments) < 2 or len(points) == 0:
            return []

        margin = self.config.intersection_margin
        tree = cKDTree(points)
        landmarks = []

        for i in range(len(segments)):
            a = segments[i]
            for j in range(i + 1, len(segments)):
                b = segments[j]
                corner = line_intersection(a.start, a.end, b.start, b.end,
                                           self.config.parallel_tolerance)
                if corner is None:
                    continue

                dist, nearest = tree.query(corner)
                if dist >= margin:
                    continue

                candidate = points[nearest]
                if (in_expanded_box(candidate, a.start, a.end, margin)
                        and in_expanded_box(candidate, b.start, b.end, margin)):
                    landmarks.append(candidate.copy())

        return landmarks


class RansacExtractor(LineFeatureExtractor):
    """
    RANSAC line fitting, optionally refined by least squares.

    Each round draws ransac_iter pairs of distinct points at once and
    keeps the pair with the most inliers. A line is accepted when it
    has more than ransac_min_inliers inliers, which are then removed
    from the pool.
    """

    def __init__(
        self,
        config: Optional[ExtractorConfig] = None,
        laser: Optional[LaserConfig] = None,
        least_squares: bool = True
    ):
        super().__init__(config, laser)
        self.least_squares = least_squares
        self.name = "ransac_ls" if least_squares else "ransac"
        self._rng = np.random.default_rng(self.config.seed)

    def fit_partition(self, points: np.ndarray) -> List[LineSegmentFeature]:
        cfg = self.config
        segments = []
        remaining = points

        while len(remaining) > max(cfg.ransac_min_inliers, 1):
            inliers = self._best_inliers(remaining)
            if inliers is None or inliers.sum() <= cfg.ransac_min_inliers:
                break

            segments.append(self._segment_from_inliers(remaining[inliers]))
            remaining = remaining[~inliers]

            if len(remaining) < cfg.ransac_min_inliers + 2:
                break

        return segments

    def _best_inliers(self, points: np.ndarray) -> Optional[np.ndarray]:
        """Inlier mask of the best sampled line, None if all samples were degenerate."""
        n = len(points)
        iterations = self.config.ransac_iter

        first = self._rng.integers(0, n, size=iterations)
        second = self._rng.integers(0, n - 1, size=iterations)
        second = second + (second >= first)

        p1 = points[first]                      # K x 2
        p2 = points[second]
        dx = p2[:, 0] - p1[:, 0]
        dy = p2[:, 1] - p1[:, 1]
        den = np.hypot(dx, dy)
        usable = den > 1e-12
        if not usable.any():
            return None

        p1, p2 = p1[usable], p2[usable]
        dx, dy, den = dx[usable], dy[usable], den[usable]

        # K x N perpendicular distances
        num = np.abs(dy[:, None] * points[None, :, 0]
                     - dx[:, None] * points[None, :, 1]
                     + (p2[:, 0] * p1[:, 1] - p2[:, 1] * p1[:, 0])[:, None])
        inliers = (num / den[:, None]) < self.config.ransac_threshold

        best = int(np.argmax(inliers.sum(axis=1)))
        return inliers[best]

    def _segment_from_inliers(self, inliers: np.ndarray) -> LineSegmentFeature:
        """Segment spanning the first and last inlier, refit if enabled."""
        first, last = inliers[0], inliers[-1]
        if not self.least_squares:
            return LineSegmentFeature(start=first.copy(), end=last.copy())

        xs = inliers[:, 0]
        x_min, x_max = xs.min(), xs.max()
        if x_max - x_min < self.config.vertical_line_threshold:
            x = (x_min + x_max) / 2.0
            return LineSegmentFeature(start=np.array([x, first[1]]), end=np.array([x, last[1]]))

        fit = fit_line_least_squares(inliers)
        if fit is None:
            return LineSegmentFeature(start=first.copy(), end=last.copy())

        slope, intercept = fit
        return LineSegmentFeature(
            start=project_point_on_line(slope, intercept, first),
            end=project_point_on_line(slope, intercept, last)
        )


class IEPExtractor(LineFeatureExtractor):
    """Deterministic iterative end point fit; each piece becomes its chord."""

    name = "iep"

    def fit_partition(self, points: np.ndarray) -> List[LineSegmentFeature]:
        segments = []
        for start, stop in iep_split(points, self.config.iep_epsilon):
            if stop - start < 2:
                continue
            segments.append(LineSegmentFeature(start=points[start].copy(), end=points[stop - 1].copy()))
        return segments


class IEPRansacExtractor(RansacExtractor):
    """IEP pre-split, then RANSAC with least squares on every piece."""

    def __init__(self, config: Optional[ExtractorConfig] = None, laser: Optional[LaserConfig] = None):
        super().__init__(config, laser, least_squares=True)
        self.name = "iep_ransac"

    def fit_partition(self, points: np.ndarray) -> List[LineSegmentFeature]:
        segments = []
        for start, stop in iep_split(points, self.config.iep_epsilon):
            segments.extend(super().fit_partition(points[start:stop]))
        return segments


EXTRACTION_METHODS = ("ransac", "ransac_ls", "iep", "iep_ransac")


def create_extractor(
    config: Optional[ExtractorConfig] = None,
    laser: Optional[LaserConfig] = None,
    method: Optional[str] = None
) -> LineFeatureExtractor:
    """
    Build the extractor selected by config.method (or method).

    Raises:
        ValueError: Unknown method
    """
    config = config or ExtractorConfig()
    method = method or config.method

    if method == "ransac":
        return RansacExtractor(config, laser, least_squares=False)
    if method == "ransac_ls":
        return RansacExtractor(config, laser, least_squares=True)
    if method == "iep":
        return IEPExtractor(config, laser)
    if method == "iep_ransac":
        return IEPRansacExtractor(config, laser)

    raise ValueError(f"Unknown extraction method '{method}', expected one of {EXTRACTION_METHODS}")
