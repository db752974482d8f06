"""
Unit tests for ConstantBias and PreintegrationParams.

Run with: python -m pytest tests/navigation/test_types.py -v
"""

import unittest

import numpy as np

from imu_preint.geometry import Pose3, Rot3
from imu_preint.navigation import ConstantBias, PreintegrationParams, validate_covariance


class TestConstantBias(unittest.TestCase):
    """Test the bias value type."""

    def test_default_is_zero(self):
        b = ConstantBias()
        np.testing.assert_array_equal(b.vector(), np.zeros(6))

    def test_vector_ordering_accelerometer_first(self):
        b = ConstantBias(np.array([1.0, 2.0, 3.0]), np.array([4.0, 5.0, 6.0]))
        np.testing.assert_array_equal(b.vector(), [1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
        self.assertTrue(ConstantBias.from_vector(b.vector()).equals(b))

    def test_retract_and_local_are_additive(self):
        b = ConstantBias(np.array([0.1, 0.2, 0.3]), np.array([0.01, 0.02, 0.03]))
        delta = np.array([1.0, -1.0, 0.5, 0.1, 0.0, -0.1])
        np.testing.assert_allclose(b.retract(delta).vector(), b.vector() + delta)
        np.testing.assert_allclose(b.local(b.retract(delta)), delta, atol=1e-15)

    def test_arrays_are_read_only(self):
        b = ConstantBias(np.ones(3), np.ones(3))
        with self.assertRaises(ValueError):
            b.accelerometer[0] = 2.0

    def test_input_is_copied(self):
        acc = np.ones(3)
        b = ConstantBias(acc, np.zeros(3))
        acc[0] = 5.0
        self.assertEqual(b.accelerometer[0], 1.0)

    def test_rejects_bad_shape(self):
        with self.assertRaises(ValueError):
            ConstantBias(np.zeros(2), np.zeros(3))
        with self.assertRaises(ValueError):
            ConstantBias.from_vector(np.zeros(5))

    def test_rejects_non_finite(self):
        with self.assertRaises(ValueError):
            ConstantBias(np.array([np.nan, 0.0, 0.0]), np.zeros(3))


class TestPreintegrationParams(unittest.TestCase):
    """Test configuration validation and measurement covariance layout."""

    def test_measurement_covariance_layout(self):
        params = PreintegrationParams(
            accelerometer_covariance=2.0 * np.eye(3),
            gyroscope_covariance=3.0 * np.eye(3),
            integration_covariance=1.0 * np.eye(3),
        )
        Q = params.measurement_covariance
        self.assertEqual(Q.shape, (9, 9))
        np.testing.assert_array_equal(np.diag(Q), [1.0] * 3 + [2.0] * 3 + [3.0] * 3)
        np.testing.assert_array_equal(Q[0:3, 3:9], np.zeros((3, 6)))

    def test_defaults(self):
        params = PreintegrationParams()
        np.testing.assert_array_equal(params.measurement_covariance, np.zeros((9, 9)))
        self.assertFalse(params.use_2nd_order_integration)
        self.assertIsNone(params.body_P_sensor)

    def test_rejects_non_symmetric(self):
        C = np.eye(3)
        C[0, 1] = 0.5
        with self.assertRaises(ValueError):
            PreintegrationParams(accelerometer_covariance=C)

    def test_rejects_negative_eigenvalue(self):
        with self.assertRaises(ValueError):
            PreintegrationParams(gyroscope_covariance=np.diag([1.0, -1e-3, 1.0]))

    def test_rejects_wrong_shape(self):
        with self.assertRaises(ValueError):
            PreintegrationParams(integration_covariance=np.eye(2))

    def test_rejects_non_pose_sensor(self):
        with self.assertRaises(ValueError):
            PreintegrationParams(body_P_sensor=np.eye(4))

    def test_covariances_are_read_only(self):
        params = PreintegrationParams(accelerometer_covariance=np.eye(3))
        with self.assertRaises(ValueError):
            params.accelerometer_covariance[0, 0] = 2.0

    def test_equals(self):
        sensor = Pose3(Rot3.from_rpy(0.0, 0.0, 0.1), np.array([0.1, 0.0, 0.0]))
        p1 = PreintegrationParams(accelerometer_covariance=np.eye(3), body_P_sensor=sensor)
        p2 = PreintegrationParams(accelerometer_covariance=np.eye(3), body_P_sensor=sensor)
        p3 = PreintegrationParams(accelerometer_covariance=np.eye(3))
        self.assertTrue(p1.equals(p2))
        self.assertFalse(p1.equals(p3))

    def test_validate_covariance_accepts_psd(self):
        C = validate_covariance("C", np.zeros((3, 3)))
        np.testing.assert_array_equal(C, np.zeros((3, 3)))


if __name__ == "__main__":
    unittest.main()
