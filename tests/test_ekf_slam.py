#!/usr/bin/env python3
"""
Unit tests for the EKF-SLAM estimator and the motion model
"""

import unittest
import sys
import math
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from core.config import EKFSLAMConfig
from core.errors import StateConsistencyError
from slam.ekf_slam import EKFSLAM, AssociationKind, relative_measurements
from slam.motion_model import euler_step, integrate, motion_jacobians


def single_landmark_filter(landmark_variance=1.0, config=None):
    """Robot at the origin with a certain pose, one landmark at (100, 0)."""
    ekf = EKFSLAM(config)
    ekf.load_state([0.0, 0.0, 0.0, 100.0, 0.0],
                   np.diag([0.0, 0.0, 0.0, landmark_variance, landmark_variance]),
                   [1])
    return ekf


class TestMotionModel(unittest.TestCase):
    """Tests for the unicycle integrators."""

    def test_straight_line(self):
        np.testing.assert_allclose(integrate([0.0, 0.0, 0.0], (10.0, 0.0), 1.0), [10.0, 0.0, 0.0])

    def test_euler_step(self):
        np.testing.assert_allclose(euler_step(np.array([0.0, 0.0, math.pi / 2]), (1.0, 0.5), 2.0),
                                   [0.0, 2.0, math.pi / 2 + 1.0], atol=1e-12)

    def test_rk4_quarter_circle(self):
        """v = w = 1 for pi/2 seconds traces a quarter of the unit circle."""
        pose = integrate([0.0, 0.0, 0.0], (1.0, 1.0), math.pi / 2, steps=50)
        np.testing.assert_allclose(pose, [1.0, 1.0, math.pi / 2], atol=1e-5)

    def test_heading_wraps(self):
        pose = integrate([0.0, 0.0, 3.1], (0.0, 0.1), 1.0)
        self.assertAlmostEqual(pose[2], 3.2 - 2 * math.pi)

    def test_unknown_method(self):
        with self.assertRaises(ValueError):
            integrate([0.0, 0.0, 0.0], (1.0, 0.0), 1.0, method="midpoint")

    def test_jacobians(self):
        A, N = motion_jacobians(0.0, 10.0, 1.0)
        np.testing.assert_allclose(A, [[1, 0, 0], [0, 1, 10], [0, 0, 1]])
        np.testing.assert_allclose(N, [[1, 0], [0, 0], [0, 1]])


class TestPropagation(unittest.TestCase):
    """Tests for the prediction step."""

    def test_propagate_from_certain_pose(self):
        ekf = EKFSLAM()
        ekf.propagate((10.0, 0.0), 1.0)
        mean, cov = ekf.current_pose_estimate()
        np.testing.assert_allclose(mean, [10.0, 0.0, 0.0])
        np.testing.assert_allclose(cov, np.diag([0.01, 0.0, 0.01]))

    def test_custom_process_noise(self):
        ekf = EKFSLAM()
        ekf.propagate((0.0, 0.0), 1.0, process_noise=np.diag([4.0, 9.0]))
        _, cov = ekf.current_pose_estimate()
        np.testing.assert_allclose(cov, np.diag([4.0, 0.0, 9.0]))

    def test_zero_dt_is_noop(self):
        ekf = EKFSLAM(initial_pose=(1.0, 2.0, 0.3))
        ekf.propagate((10.0, 1.0), 0.0)
        np.testing.assert_allclose(ekf.state, [1.0, 2.0, 0.3])

    def test_negative_dt(self):
        with self.assertRaises(ValueError):
            EKFSLAM().propagate((1.0, 0.0), -0.1)

    def test_landmark_blocks_untouched(self):
        ekf = EKFSLAM(initial_covariance=np.eye(3))
        ekf.augment_update([np.array([100.0, 0.0])])
        before = ekf.covariance[3:, 3:]

        ekf.propagate((5.0, 0.1), 0.5)
        after = ekf.covariance
        np.testing.assert_allclose(after[3:, 3:], before)
        np.testing.assert_allclose(after, after.T)
        np.testing.assert_allclose(ekf.state[3:], [100.0, 0.0])


class TestAssociation(unittest.TestCase):
    """Tests for Mahalanobis gating."""

    def test_update_gate(self):
        association = single_landmark_filter().associate(np.array([100.5, 0.2]))
        self.assertEqual(association.kind, AssociationKind.UPDATE)
        self.assertEqual(association.landmark_index, 0)
        self.assertAlmostEqual(association.distance, 0.145)

    def test_ambiguous_is_discarded(self):
        association = single_landmark_filter().associate(np.array([110.0, 0.0]))
        self.assertEqual(association.kind, AssociationKind.DISCARD)
        self.assertAlmostEqual(association.distance, 50.0)

    def test_far_is_new(self):
        association = single_landmark_filter().associate(np.array([100.0, 30.0]))
        self.assertEqual(association.kind, AssociationKind.AUGMENT)

    def test_distant_point_is_new(self):
        association = single_landmark_filter().associate(np.array([500.0, 500.0]))
        self.assertEqual(association.kind, AssociationKind.AUGMENT)
        self.assertEqual(association.landmark_index, 0)
        # Innovation (400, 500) against S = 2 I
        self.assertAlmostEqual(association.distance, 205000.0)
        self.assertGreater(association.distance, EKFSLAMConfig().augment_threshold)

    def test_empty_map_augments(self):
        association = EKFSLAM().associate(np.array([5.0, 5.0]))
        self.assertEqual(association.kind, AssociationKind.AUGMENT)
        self.assertIsNone(association.landmark_index)
        self.assertEqual(association.distance, math.inf)

    def test_tie_goes_to_first_landmark(self):
        ekf = EKFSLAM()
        ekf.load_state([0.0, 0.0, 0.0, 100.0, 0.0, 100.0, 0.0],
                       np.diag([0.0, 0.0, 0.0, 1.0, 1.0, 1.0, 1.0]),
                       [1, 1])
        self.assertEqual(ekf.associate(np.array([100.0, 0.0])).landmark_index, 0)

    def test_singular_innovation_is_skipped(self):
        ekf = single_landmark_filter(landmark_variance=0.0)
        association = ekf.associate(np.array([100.0, 0.0]), np.zeros((2, 2)))
        self.assertEqual(association.kind, AssociationKind.AUGMENT)
        self.assertIsNone(association.landmark_index)

    def test_custom_thresholds(self):
        config = EKFSLAMConfig(update_threshold=100.0)
        association = single_landmark_filter(config=config).associate(np.array([110.0, 0.0]))
        self.assertEqual(association.kind, AssociationKind.UPDATE)


class TestAugmentUpdate(unittest.TestCase):
    """Tests for the combined correction step."""

    def test_update_moves_landmark(self):
        ekf = single_landmark_filter(landmark_variance=4.0)
        associations = ekf.augment_update([np.array([101.0, 0.0])])

        self.assertEqual(associations[0].kind, AssociationKind.UPDATE)
        landmark, cov = ekf.landmark_estimates()[0]
        np.testing.assert_allclose(landmark, [100.8, 0.0])
        np.testing.assert_allclose(cov, np.eye(2) * 0.8)
        np.testing.assert_allclose(ekf.state[:3], [0.0, 0.0, 0.0])
        self.assertEqual(list(ekf.hit_counts), [2])

    def test_augment_rotates_into_world(self):
        ekf = EKFSLAM(initial_pose=(0.0, 0.0, math.pi / 2))
        ekf.augment_update([np.array([100.0, 0.0])])
        landmark, cov = ekf.landmark_estimates()[0]
        np.testing.assert_allclose(landmark, [0.0, 100.0], atol=1e-9)
        np.testing.assert_allclose(cov, np.eye(2), atol=1e-12)

    def test_augment_carries_heading_uncertainty(self):
        ekf = EKFSLAM(initial_covariance=np.diag([0.0, 0.0, 0.01]))
        ekf.augment_update([np.array([100.0, 0.0])])
        cov = ekf.covariance
        # d(landmark y)/d(theta) = 100 at theta = 0
        self.assertAlmostEqual(cov[4, 4], 1.0 + 100.0 ** 2 * 0.01)
        self.assertAlmostEqual(cov[4, 2], 100.0 * 0.01)
        self.assertAlmostEqual(cov[3, 3], 1.0)

    def test_batch_augment(self):
        ekf = EKFSLAM()
        associations = ekf.augment_update([np.array([100.0, 0.0]), np.array([0.0, 100.0])])
        self.assertEqual([a.kind for a in associations], [AssociationKind.AUGMENT] * 2)
        self.assertEqual(ekf.covariance.shape, (7, 7))
        self.assertEqual(list(ekf.hit_counts), [1, 1])
        self.assertEqual(ekf.num_landmarks, 2)

    def test_covariance_count_mismatch(self):
        with self.assertRaises(ValueError):
            EKFSLAM().augment_update([np.zeros(2)], [np.eye(2), np.eye(2)])

    def test_prune_cadence(self):
        config = EKFSLAMConfig(clean_every_n_augment_updates=2, clean_threshold=1)
        ekf = EKFSLAM(config)
        ekf.augment_update([np.array([100.0, 0.0])])
        self.assertEqual(ekf.num_landmarks, 1)

        ekf.augment_update([])
        self.assertEqual(ekf.augment_update_count, 2)
        self.assertEqual(ekf.num_landmarks, 0)
        self.assertEqual(ekf.covariance.shape, (3, 3))

    def test_reobserved_landmark_survives_prune(self):
        config = EKFSLAMConfig(clean_every_n_augment_updates=2, clean_threshold=1)
        ekf = EKFSLAM(config)
        ekf.augment_update([np.array([100.0, 0.0])])
        ekf.augment_update([np.array([100.0, 0.0])])
        self.assertEqual(ekf.num_landmarks, 1)
        self.assertEqual(list(ekf.hit_counts), [2])

    def test_prune_keeps_correlations(self):
        ekf = EKFSLAM(initial_covariance=np.eye(3))
        ekf.load_state([0.0, 0.0, 0.0, 10.0, 0.0, 20.0, 0.0, 30.0, 0.0],
                       np.arange(81, dtype=float).reshape(9, 9), [5, 1, 5])
        self.assertEqual(ekf.prune(), 1)

        kept = [0, 1, 2, 3, 4, 7, 8]
        np.testing.assert_allclose(ekf.covariance, np.arange(81, dtype=float).reshape(9, 9)[np.ix_(kept, kept)])
        np.testing.assert_allclose(ekf.state[3:], [10.0, 0.0, 30.0, 0.0])
        self.assertEqual(list(ekf.hit_counts), [5, 5])


class TestCovarianceInvariants(unittest.TestCase):
    """Symmetry and sizes over mixed propagate / update / augment / prune runs."""

    def _random_filter(self, num_landmarks, rng, config):
        n = 3 + 2 * num_landmarks
        M = rng.normal(scale=0.1, size=(n, n))
        cov = M @ M.T + 0.01 * np.eye(n)
        # Tight heading keeps distant landmarks apart in Mahalanobis distance
        scale = np.ones(n)
        scale[:3] = [0.1, 0.1, 0.001]
        cov = cov * np.outer(scale, scale)

        state = np.concatenate([[0.0, 0.0, 0.1], rng.uniform(-200.0, 200.0, size=2 * num_landmarks)])
        ekf = EKFSLAM(config)
        ekf.load_state(state, cov, rng.integers(1, 5, size=num_landmarks))
        return ekf

    def _assert_invariants(self, ekf):
        state, cov, hits = ekf.state, ekf.covariance, ekf.hit_counts
        self.assertEqual(len(state), 3 + 2 * len(hits))
        self.assertEqual(cov.shape, (len(state), len(state)))
        np.testing.assert_allclose(cov, cov.T, rtol=1e-4, atol=1e-9)

    def test_mixed_run(self):
        config = EKFSLAMConfig(clean_every_n_augment_updates=3, clean_threshold=1)

        for num_landmarks in (0, 1, 5, 50):
            with self.subTest(landmarks=num_landmarks):
                rng = np.random.default_rng(num_landmarks)
                ekf = self._random_filter(num_landmarks, rng, config)
                self._assert_invariants(ekf)

                kinds = []
                for step in range(8):
                    ekf.propagate((rng.uniform(0.0, 20.0), rng.uniform(-0.5, 0.5)), 0.1)
                    self._assert_invariants(ekf)

                    # Re-observe a tracked landmark and see a far new one
                    world = [np.array([1000.0 * (step + 1), -1500.0])]
                    if ekf.num_landmarks:
                        world.insert(0, ekf.landmark_estimates()[step % ekf.num_landmarks][0])
                    associations = ekf.augment_update(relative_measurements(world, ekf.state[:3]))
                    kinds.extend(a.kind for a in associations)
                    self._assert_invariants(ekf)

                    if ekf.augment_update_count % config.clean_every_n_augment_updates == 0:
                        self.assertTrue(np.all(ekf.hit_counts > config.clean_threshold))

                self.assertEqual(ekf.augment_update_count, 8)
                self.assertIn(AssociationKind.UPDATE, kinds)
                self.assertIn(AssociationKind.AUGMENT, kinds)


class TestStateAccess(unittest.TestCase):
    """Tests for state loading and accessors."""

    def test_load_state_mismatch(self):
        ekf = EKFSLAM()
        with self.assertRaises(StateConsistencyError):
            ekf.load_state([0.0, 0.0, 0.0, 1.0, 1.0], np.eye(3), [1])
        with self.assertRaises(StateConsistencyError):
            ekf.load_state([0.0, 0.0, 0.0, 1.0], np.eye(4), [])
        with self.assertRaises(StateConsistencyError):
            ekf.load_state([0.0, 0.0, 0.0, 1.0, 1.0], np.eye(5), [1, 1])

    def test_bad_initial_covariance(self):
        with self.assertRaises(StateConsistencyError):
            EKFSLAM(initial_covariance=np.eye(2))

    def test_accessors_return_copies(self):
        ekf = single_landmark_filter()
        ekf.state[0] = 50.0
        ekf.covariance[3, 3] = 50.0
        mean, _ = ekf.current_pose_estimate()
        mean[0] = 50.0
        self.assertEqual(ekf.state[0], 0.0)
        self.assertEqual(ekf.covariance[3, 3], 1.0)

    def test_relative_measurements(self):
        z = relative_measurements([np.array([10.0, 20.0])], np.array([10.0, 0.0, math.pi / 2]))
        np.testing.assert_allclose(z[0], [20.0, 0.0], atol=1e-12)
        self.assertEqual(relative_measurements([], np.zeros(3)), [])


if __name__ == '__main__':
    unittest.main(verbosity=2)
