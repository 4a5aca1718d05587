"""
EKF-SLAM Estimator

Joint estimation of the robot pose and a growing set of point
landmarks with an Extended Kalman Filter.

State vector:   [x, y, theta, l1x, l1y, l2x, l2y, ...]
Covariance:     (3 + 2L) x (3 + 2L), robot block first

Per tick:
1. propagate(control, dt)          motion model, pose blocks only
2. augment_update(measurements)    associate each robot-frame
   measurement by Mahalanobis distance, then update a known landmark,
   add a new one, or discard it as ambiguous; every N calls landmarks
   seen too rarely are pruned

Measurement model (robot-frame offset of landmark j):
    h_j = R(-theta) (l_j - p_robot)

Usage:
    ekf = EKFSLAM(config.ekf)
    ekf.propagate((v, w), dt)
    ekf.augment_update(relative_measurements(landmarks, ekf.current_pose_estimate()[0]))
    mean, cov = ekf.current_pose_estimate()
"""

import logging
import math
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional, Sequence, Tuple

import numpy as np

from core.config import EKFSLAMConfig
from core.errors import StateConsistencyError
from core.linalg import block, rotation, safe_inverse, set_block, symmetrize
from perception.transforms import normalize_angle, world_to_robot
from .motion_model import integrate, motion_jacobians

logger = logging.getLogger(__name__)

POSE_SIZE = 3
LANDMARK_SIZE = 2


class AssociationKind(Enum):
    """Outcome of data association for one measurement."""
    UPDATE = auto()     # Re-observation of a tracked landmark
    AUGMENT = auto()    # New landmark
    DISCARD = auto()    # Between the two gates: ambiguous


@dataclass(frozen=True)
class Association:
    """Data association result."""
    kind: AssociationKind
    landmark_index: Optional[int]   # Best candidate, None if nothing compared
    distance: float                 # Mahalanobis distance to it, inf if none


def relative_measurements(landmarks: Sequence[np.ndarray], pose: np.ndarray) -> List[np.ndarray]:
    """
    Convert world-frame landmark points into robot-frame measurements.

    Args:
        landmarks: World points
        pose: Estimated (x, y, theta) the points were projected from

    Returns:
        One 2-vector per landmark
    """
    if len(landmarks) == 0:
        return []
    return list(world_to_robot(np.asarray(landmarks, dtype=float), pose))


class EKFSLAM:
    """
    EKF-SLAM with point landmarks.

    All public accessors return copies; the state is guarded by a lock
    so a render thread can read while the estimator runs.
    """

    def __init__(
        self,
        config: Optional[EKFSLAMConfig] = None,
        initial_pose: Tuple[float, float, float] = (0.0, 0.0, 0.0),
        initial_covariance: Optional[np.ndarray] = None
    ):
        self.config = config or EKFSLAMConfig()

        self._x = np.array(initial_pose, dtype=float)
        if initial_covariance is None:
            self._sigma = np.zeros((POSE_SIZE, POSE_SIZE))
        else:
            self._sigma = np.array(initial_covariance, dtype=float)
        self._hits = np.zeros(0, dtype=int)
        self._augment_updates = 0

        self._lock = threading.Lock()
        self._check_consistency()

    # =========================================================================
    # Prediction
    # =========================================================================

    def propagate(
        self,
        control: Tuple[float, float],
        dt: float,
        process_noise: Optional[np.ndarray] = None
    ):
        """
        Predict the pose forward by dt under control (v, w).

        Only the robot block and the robot-landmark cross blocks of the
        covariance change; landmarks are stationary.
        """
        if dt < 0:
            raise ValueError(f"dt must be non-negative, got {dt}")
        if dt == 0:
            return

        Q = self.config.process_noise if process_noise is None else np.asarray(process_noise, dtype=float)
        v = float(control[0])

        with self._lock:
            A, N = motion_jacobians(self._x[2], v, dt)
            self._x[:POSE_SIZE] = integrate(
                self._x[:POSE_SIZE], control, dt,
                self.config.integrator, self.config.integrator_steps)

            sigma = self._sigma
            n = len(self._x)
            P_RR = block(sigma, 0, 0, POSE_SIZE, POSE_SIZE)
            set_block(sigma, 0, 0, A @ P_RR @ A.T + N @ Q @ N.T)
            if n > POSE_SIZE:
                cross = A @ block(sigma, 0, POSE_SIZE, POSE_SIZE, n - POSE_SIZE)
                set_block(sigma, 0, POSE_SIZE, cross)
                set_block(sigma, POSE_SIZE, 0, cross.T)

            self._check_consistency()

    # =========================================================================
    # Correction
    # =========================================================================

    def associate(self, z: np.ndarray, measurement_cov: Optional[np.ndarray] = None) -> Association:
        """
        Find the tracked landmark closest to z in Mahalanobis distance.

        Landmarks whose innovation covariance is singular are skipped.
        Ties go to the landmark first in state order.
        """
        R = self.config.measurement_noise if measurement_cov is None else np.asarray(measurement_cov, dtype=float)
        with self._lock:
            return self._associate(np.asarray(z, dtype=float), R)

    def augment_update(
        self,
        measurements: Sequence[np.ndarray],
        measurement_covs: Optional[Sequence[np.ndarray]] = None
    ) -> List[Association]:
        """
        Fuse one scan worth of robot-frame landmark measurements.

        Args:
            measurements: Robot-frame 2-vectors
            measurement_covs: One 2x2 covariance per measurement
                (default: config measurement noise)

        Returns:
            Association decided for each measurement, in order
        """
        measurements = [np.asarray(z, dtype=float).reshape(LANDMARK_SIZE) for z in measurements]
        if measurement_covs is None:
            covs = [self.config.measurement_noise] * len(measurements)
        else:
            covs = [np.asarray(R, dtype=float) for R in measurement_covs]
            if len(covs) != len(measurements):
                raise ValueError(
                    f"{len(measurements)} measurements but {len(covs)} covariances")

        associations = []
        with self._lock:
            new_landmarks = []
            for z, R in zip(measurements, covs):
                association = self._associate(z, R)
                if association.kind == AssociationKind.UPDATE:
                    self._update(association.landmark_index, z, R)
                elif association.kind == AssociationKind.AUGMENT:
                    new_landmarks.append((z, R))
                associations.append(association)

            if new_landmarks:
                self._augment(new_landmarks)

            self._augment_updates += 1
            if self._augment_updates % self.config.clean_every_n_augment_updates == 0:
                self._prune()

            self._check_consistency()

        logger.debug("Augment/update: %d updated, %d new, %d discarded",
                     sum(a.kind == AssociationKind.UPDATE for a in associations),
                     sum(a.kind == AssociationKind.AUGMENT for a in associations),
                     sum(a.kind == AssociationKind.DISCARD for a in associations))
        return associations

    def prune(self) -> int:
        """
        Drop landmarks with hit count at or below clean_threshold.

        Returns:
            Number of landmarks removed
        """
        with self._lock:
            removed = self._prune()
            self._check_consistency()
        return removed

    def _jacobians(self, k: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Expected measurement and its Jacobians w.r.t. pose and landmark k."""
        j = POSE_SIZE + LANDMARK_SIZE * k
        c, s = math.cos(self._x[2]), math.sin(self._x[2])
        dx = self._x[j] - self._x[0]
        dy = self._x[j + 1] - self._x[1]

        H_L = np.array([[c, s],
                        [-s, c]])
        H_R = np.array([[-c, -s, -s * dx + c * dy],
                        [s, -c, -c * dx - s * dy]])
        h = H_L @ np.array([dx, dy])
        return h, H_R, H_L

    def _associate(self, z: np.ndarray, R: np.ndarray) -> Association:
        best_index = None
        best_distance = math.inf

        for k in range(len(self._hits)):
            j = POSE_SIZE + LANDMARK_SIZE * k
            idx = [0, 1, 2, j, j + 1]
            h, H_R, H_L = self._jacobians(k)
            H = np.hstack([H_R, H_L])

            S = H @ self._sigma[np.ix_(idx, idx)] @ H.T + R
            S_inv = safe_inverse(S, self.config.singular_cond_limit)
            if S_inv is None:
                logger.debug("Singular innovation covariance for landmark %d, skipped", k)
                continue

            r = z - h
            d = float(r @ S_inv @ r)
            if d < best_distance:
                best_distance = d
                best_index = k

        if best_index is not None and best_distance <= self.config.update_threshold:
            kind = AssociationKind.UPDATE
        elif best_distance > self.config.augment_threshold:
            kind = AssociationKind.AUGMENT
        else:
            kind = AssociationKind.DISCARD
        return Association(kind=kind, landmark_index=best_index, distance=best_distance)

    def _update(self, k: int, z: np.ndarray, R: np.ndarray) -> bool:
        """Joseph form EKF update with a re-observation of landmark k."""
        n = len(self._x)
        j = POSE_SIZE + LANDMARK_SIZE * k
        h, H_R, H_L = self._jacobians(k)

        H = np.zeros((LANDMARK_SIZE, n))
        H[:, :POSE_SIZE] = H_R
        H[:, j:j + LANDMARK_SIZE] = H_L

        S = H @ self._sigma @ H.T + R
        S_inv = safe_inverse(S, self.config.singular_cond_limit)
        if S_inv is None:
            return False

        K = self._sigma @ H.T @ S_inv
        self._x = self._x + K @ (z - h)
        self._x[2] = normalize_angle(self._x[2])

        I_KH = np.eye(n) - K @ H
        self._sigma = symmetrize(I_KH @ self._sigma @ I_KH.T + K @ R @ K.T)
        self._hits[k] += 1
        return True

    def _augment(self, new_landmarks: List[Tuple[np.ndarray, np.ndarray]]):
        """Append all new landmarks of one tick with a single resize."""
        n = len(self._x)
        m = len(new_landmarks)
        theta = self._x[2]
        C = rotation(theta)
        dC = np.array([[-math.sin(theta), -math.cos(theta)],
                       [math.cos(theta), -math.sin(theta)]])

        means = np.zeros(LANDMARK_SIZE * m)
        J_R = np.zeros((LANDMARK_SIZE * m, POSE_SIZE))
        noise = np.zeros((LANDMARK_SIZE * m, LANDMARK_SIZE * m))

        for i, (z, R) in enumerate(new_landmarks):
            rows = slice(LANDMARK_SIZE * i, LANDMARK_SIZE * (i + 1))
            means[rows] = self._x[:2] + C @ z
            J_R[rows, :2] = np.eye(2)
            J_R[rows, 2] = dC @ z
            set_block(noise, LANDMARK_SIZE * i, LANDMARK_SIZE * i, C @ R @ C.T)

        cross = J_R @ block(self._sigma, 0, 0, POSE_SIZE, n)
        P_RR = block(self._sigma, 0, 0, POSE_SIZE, POSE_SIZE)
        sigma = np.zeros((n + LANDMARK_SIZE * m, n + LANDMARK_SIZE * m))
        set_block(sigma, 0, 0, self._sigma)
        set_block(sigma, n, 0, cross)
        set_block(sigma, 0, n, cross.T)
        set_block(sigma, n, n, J_R @ P_RR @ J_R.T + noise)

        self._x = np.concatenate([self._x, means])
        self._sigma = symmetrize(sigma)
        self._hits = np.concatenate([self._hits, np.ones(m, dtype=int)])

    def _prune(self) -> int:
        keep = self._hits > self.config.clean_threshold
        removed = int((~keep).sum())
        if removed == 0:
            return 0

        idx = list(range(POSE_SIZE))
        for k in np.flatnonzero(keep):
            j = POSE_SIZE + LANDMARK_SIZE * int(k)
            idx.extend([j, j + 1])

        self._x = self._x[idx]
        self._sigma = self._sigma[np.ix_(idx, idx)]
        self._hits = self._hits[keep]

        logger.info("Pruned %d landmarks, %d remain", removed, len(self._hits))
        return removed

    # =========================================================================
    # State access
    # =========================================================================

    def load_state(self, state: np.ndarray, covariance: np.ndarray, hit_counts: Sequence[int]):
        """
        Replace the whole estimate.

        Raises:
            StateConsistencyError: Sizes do not agree
        """
        state = np.array(state, dtype=float)
        covariance = np.array(covariance, dtype=float)
        hits = np.array(hit_counts, dtype=int)
        self._validate(state, covariance, hits)
        with self._lock:
            self._x = state
            self._sigma = covariance
            self._hits = hits

    def current_pose_estimate(self) -> Tuple[np.ndarray, np.ndarray]:
        """(mean 3-vector, 3x3 covariance) of the robot pose."""
        with self._lock:
            return self._x[:POSE_SIZE].copy(), self._sigma[:POSE_SIZE, :POSE_SIZE].copy()

    def landmark_estimates(self) -> List[Tuple[np.ndarray, np.ndarray]]:
        """(mean 2-vector, 2x2 covariance) of every landmark, state order."""
        with self._lock:
            estimates = []
            for k in range(len(self._hits)):
                j = POSE_SIZE + LANDMARK_SIZE * k
                estimates.append((self._x[j:j + 2].copy(), self._sigma[j:j + 2, j:j + 2].copy()))
            return estimates

    @property
    def state(self) -> np.ndarray:
        with self._lock:
            return self._x.copy()

    @property
    def covariance(self) -> np.ndarray:
        with self._lock:
            return self._sigma.copy()

    @property
    def hit_counts(self) -> np.ndarray:
        with self._lock:
            return self._hits.copy()

    @property
    def num_landmarks(self) -> int:
        return len(self._hits)

    @property
    def augment_update_count(self) -> int:
        return self._augment_updates

    def _check_consistency(self):
        self._validate(self._x, self._sigma, self._hits)

    @staticmethod
    def _validate(state: np.ndarray, covariance: np.ndarray, hits: np.ndarray):
        n = len(state)
        if state.ndim != 1 or n < POSE_SIZE or (n - POSE_SIZE) % LANDMARK_SIZE != 0:
            raise StateConsistencyError(f"State length {n} is not 3 + 2L")
        if covariance.shape != (n, n):
            raise StateConsistencyError(f"Covariance shape {covariance.shape} does not match state length {n}")
        if len(hits) != (n - POSE_SIZE) // LANDMARK_SIZE:
            raise StateConsistencyError(
                f"{len(hits)} hit counters for {(n - POSE_SIZE) // LANDMARK_SIZE} landmarks")
