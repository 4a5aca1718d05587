#!/usr/bin/env python3
"""
Unit tests for the core package
===============================
- Configuration loading and validation
- Linear algebra helpers
- State machine
"""

import unittest
import sys
import os
import math
import tempfile
from enum import Enum, auto
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from core.config import (
    SimulationConfig, ExtractorConfig, EKFSLAMConfig, config_from_dict, load_config
)
from core.errors import ConfigError, SLAMError, StateConsistencyError
from core.linalg import (
    CHI2_95_2DOF, block, covariance_ellipse, rotation, safe_inverse, set_block, symmetrize
)
from core.state_machine import StateMachine, StateTransition

DEFAULT_CONFIG = Path(__file__).parent.parent / 'config' / 'default.yaml'


class TestConfig(unittest.TestCase):
    """Tests for configuration loading."""

    def _write(self, text: str) -> str:
        fd, path = tempfile.mkstemp(suffix='.yaml')
        with os.fdopen(fd, 'w') as f:
            f.write(text)
        self.addCleanup(os.remove, path)
        return path

    def test_defaults(self):
        config = SimulationConfig()
        self.assertEqual(config.laser.count, 181)
        self.assertEqual(config.laser.invalid_distance, 501.0)
        self.assertEqual(config.extractor.discontinuity_threshold, 60.0)
        self.assertEqual(config.ekf.update_threshold, 20.0)
        self.assertEqual(config.ekf.augment_threshold, 200.0)

    def test_default_file_matches_defaults(self):
        """The shipped YAML spells out the built-in defaults."""
        self.assertEqual(load_config(str(DEFAULT_CONFIG)), SimulationConfig())

    def test_partial_override(self):
        path = self._write("extractor:\n  method: iep\nsimulation:\n  robot_radius: 15\n")
        config = load_config(path)
        self.assertEqual(config.extractor.method, "iep")
        self.assertEqual(config.robot_radius, 15)
        self.assertEqual(config.ekf, EKFSLAMConfig())

    def test_lists_become_tuples(self):
        config = config_from_dict({'grid': {'min_corner': [0, 0], 'max_corner': [10, 10]}})
        self.assertEqual(config.grid.min_corner, (0, 0))
        self.assertIsInstance(config.grid.max_corner, tuple)

    def test_empty_file(self):
        self.assertEqual(load_config(self._write("")), SimulationConfig())

    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            load_config("/nonexistent/config.yaml")

    def test_invalid_yaml(self):
        with self.assertRaises(ConfigError):
            load_config(self._write("laser: [unclosed\n"))

    def test_unknown_key(self):
        with self.assertRaises(ConfigError):
            config_from_dict({'ekf': {'update_treshold': 5}})

    def test_unknown_section(self):
        with self.assertRaises(ConfigError):
            config_from_dict({'renderer': {}})

    def test_section_must_be_mapping(self):
        with self.assertRaises(ConfigError):
            config_from_dict({'laser': 5})

    def test_bad_method(self):
        with self.assertRaises(ConfigError):
            ExtractorConfig(method="hough")

    def test_bad_integrator(self):
        with self.assertRaises(ConfigError):
            config_from_dict({'ekf': {'integrator': 'midpoint'}})

    def test_inverted_gates(self):
        with self.assertRaises(ConfigError):
            config_from_dict({'ekf': {'update_threshold': 300.0, 'augment_threshold': 200.0}})
        # Equal gates leave no dead zone but are allowed
        config = config_from_dict({'ekf': {'update_threshold': 50.0, 'augment_threshold': 50.0}})
        self.assertEqual(config.ekf.update_threshold, 50.0)

    def test_error_hierarchy(self):
        self.assertTrue(issubclass(ConfigError, SLAMError))
        self.assertTrue(issubclass(StateConsistencyError, SLAMError))

    def test_noise_matrices(self):
        ekf = EKFSLAMConfig(process_noise_std=0.5, measurement_noise_std=2.0)
        np.testing.assert_allclose(ekf.process_noise, np.eye(2) * 0.25)
        np.testing.assert_allclose(ekf.measurement_noise, np.eye(2) * 4.0)

    def test_beam_angles(self):
        laser = SimulationConfig().laser
        self.assertAlmostEqual(laser.beam_angle(0), -math.pi / 2)
        self.assertAlmostEqual(laser.beam_angle(90), 0.0)
        self.assertAlmostEqual(laser.beam_angle(180), math.pi / 2)


class TestLinalg(unittest.TestCase):
    """Tests for the linear algebra helpers."""

    def test_safe_inverse(self):
        m = np.array([[2.0, 0.0], [0.0, 4.0]])
        np.testing.assert_allclose(safe_inverse(m), np.diag([0.5, 0.25]))

    def test_safe_inverse_singular(self):
        self.assertIsNone(safe_inverse(np.zeros((2, 2))))
        self.assertIsNone(safe_inverse(np.array([[1.0, 2.0], [2.0, 4.0]])))

    def test_safe_inverse_non_finite(self):
        self.assertIsNone(safe_inverse(np.array([[np.nan, 0.0], [0.0, 1.0]])))

    def test_safe_inverse_ill_conditioned(self):
        m = np.diag([1.0, 1e-9])
        self.assertIsNone(safe_inverse(m, cond_limit=1e6))

    def test_blocks(self):
        m = np.zeros((4, 4))
        set_block(m, 1, 2, np.ones((2, 2)))
        np.testing.assert_allclose(block(m, 1, 2, 2, 2), np.ones((2, 2)))
        self.assertEqual(m.sum(), 4.0)

    def test_block_is_copy(self):
        m = np.eye(3)
        b = block(m, 0, 0, 2, 2)
        b[0, 0] = 7.0
        self.assertEqual(m[0, 0], 1.0)

    def test_symmetrize(self):
        m = np.array([[1.0, 2.0], [0.0, 1.0]])
        np.testing.assert_allclose(symmetrize(m), [[1.0, 1.0], [1.0, 1.0]])

    def test_rotation(self):
        np.testing.assert_allclose(rotation(math.pi / 2) @ [1.0, 0.0], [0.0, 1.0], atol=1e-12)

    def test_covariance_ellipse(self):
        ellipse = covariance_ellipse(np.array([1.0, 2.0]), np.eye(2) * 4.0, resolution=16)
        self.assertEqual(ellipse.shape, (16, 2))
        radii = np.linalg.norm(ellipse - [1.0, 2.0], axis=1)
        np.testing.assert_allclose(radii, 2.0 * math.sqrt(CHI2_95_2DOF))


class Light(Enum):
    RED = auto()
    GREEN = auto()


class Signal(Enum):
    GO = auto()
    STOP = auto()


class TestStateMachine(unittest.TestCase):
    """Tests for the table-driven state machine."""

    def _machine(self, condition=None):
        return StateMachine(Light.RED, [
            StateTransition(Light.RED, Signal.GO, Light.GREEN, condition),
            StateTransition(Light.GREEN, Signal.STOP, Light.RED),
        ])

    def test_transition(self):
        sm = self._machine()
        self.assertTrue(sm.handle_event(Signal.GO))
        self.assertEqual(sm.state, Light.GREEN)
        self.assertEqual(sm.previous_state, Light.RED)

    def test_ignored_event(self):
        sm = self._machine()
        self.assertFalse(sm.handle_event(Signal.STOP))
        self.assertEqual(sm.state, Light.RED)
        self.assertFalse(sm.can_handle(Signal.STOP))

    def test_guard(self):
        sm = self._machine(condition=lambda: False)
        self.assertFalse(sm.handle_event(Signal.GO))
        self.assertEqual(sm.state, Light.RED)

    def test_callbacks_order(self):
        sm = self._machine()
        calls = []
        sm.on_exit(Light.RED, lambda: calls.append("exit"))
        sm.on_transition(lambda old, event, new: calls.append("transition"))
        sm.on_enter(Light.GREEN, lambda: calls.append("enter"))
        sm.handle_event(Signal.GO)
        self.assertEqual(calls, ["exit", "transition", "enter"])

    def test_duplicate_transition(self):
        with self.assertRaises(ValueError):
            StateMachine(Light.RED, [
                StateTransition(Light.RED, Signal.GO, Light.GREEN),
                StateTransition(Light.RED, Signal.GO, Light.RED),
            ])

    def test_reset(self):
        sm = self._machine()
        sm.handle_event(Signal.GO)
        sm.reset()
        self.assertEqual(sm.state, Light.RED)
        self.assertEqual(sm.get_status(), {"state": "RED", "previous": "N/A"})


if __name__ == '__main__':
    unittest.main(verbosity=2)
