"""
Unit tests for the synthetic IMU generator.

Run with: python -m pytest tests/sim/test_imu_from_motion.py -v
"""

import numpy as np
import pytest

from imu_preint.geometry import Pose3, Rot3
from imu_preint.navigation import ConstantBias
from imu_preint.sim import (
    DEFAULT_GRAVITY,
    add_imu_noise,
    compute_specific_force_body,
    generate_constant_rate_imu,
    true_state,
)


class TestSpecificForce:
    """Test the accelerometer forward model."""

    def test_stationary_level_body_measures_upward_reaction(self):
        f_b = compute_specific_force_body(np.zeros(3), np.eye(3))
        np.testing.assert_allclose(f_b, [0.0, 0.0, 9.81])

    def test_rotated_body(self):
        R = Rot3.expmap(np.array([np.pi / 2, 0.0, 0.0])).matrix()
        f_b = compute_specific_force_body(np.zeros(3), R, DEFAULT_GRAVITY)
        np.testing.assert_allclose(f_b, R.T @ np.array([0.0, 0.0, 9.81]), atol=1e-12)
        assert np.linalg.norm(f_b) == pytest.approx(9.81)


class TestConstantRateImu:
    """Test sample generation and ground truth."""

    def test_shapes_and_constant_gyro(self):
        omega = np.array([0.1, 0.0, -0.2])
        accs, gyros = generate_constant_rate_imu(omega, np.zeros(3), 2.0, 0.01)
        assert accs.shape == (200, 3)
        assert gyros.shape == (200, 3)
        np.testing.assert_array_equal(gyros, np.tile(omega, (200, 1)))

    def test_specific_force_magnitude_is_constant(self):
        accs, _ = generate_constant_rate_imu(
            np.array([0.3, 0.2, 0.1]), np.array([1.0, 0.0, 0.0]), 1.0, 0.01
        )
        norms = np.linalg.norm(accs, axis=1)
        np.testing.assert_allclose(norms, norms[0], atol=1e-12)

    def test_invalid_period_raises(self):
        with pytest.raises(ValueError):
            generate_constant_rate_imu(np.zeros(3), np.zeros(3), 1.0, 0.0)

    def test_true_state_at_zero_is_initial_state(self):
        pose_0 = Pose3(Rot3.from_rpy(0.1, 0.2, 0.3), np.array([1.0, 2.0, 3.0]))
        vel_0 = np.array([0.5, 0.0, -0.5])
        pose, vel = true_state(0.0, pose_0, vel_0, np.ones(3), np.ones(3))
        assert pose.equals(pose_0)
        np.testing.assert_array_equal(vel, vel_0)

    def test_true_state_kinematics(self):
        pose, vel = true_state(
            2.0, Pose3.identity(), np.array([1.0, 0.0, 0.0]), np.array([0.0, 0.0, 0.5]), np.array([0.0, 1.0, 0.0])
        )
        np.testing.assert_allclose(pose.translation, [2.0, 2.0, 0.0])
        np.testing.assert_allclose(vel, [1.0, 2.0, 0.0])
        np.testing.assert_allclose(pose.rotation.logmap(), [0.0, 0.0, 1.0], atol=1e-12)


class TestImuNoise:
    """Test noise and bias injection."""

    def test_zero_noise_adds_bias_only(self):
        accs = np.zeros((10, 3))
        gyros = np.zeros((10, 3))
        bias = ConstantBias(np.array([0.1, 0.2, 0.3]), np.array([0.01, 0.02, 0.03]))
        acc_meas, gyro_meas = add_imu_noise(accs, gyros, 0.01, 0.0, 0.0, bias=bias)
        np.testing.assert_allclose(acc_meas, np.tile(bias.accelerometer, (10, 1)))
        np.testing.assert_allclose(gyro_meas, np.tile(bias.gyroscope, (10, 1)))

    def test_seeded_noise_is_reproducible(self):
        accs = np.zeros((100, 3))
        a1, g1 = add_imu_noise(accs, accs, 0.01, 0.01, 0.001, rng=np.random.default_rng(7))
        a2, g2 = add_imu_noise(accs, accs, 0.01, 0.01, 0.001, rng=np.random.default_rng(7))
        np.testing.assert_array_equal(a1, a2)
        np.testing.assert_array_equal(g1, g2)

    def test_noise_scales_with_density(self):
        accs = np.zeros((20000, 3))
        dt = 0.01
        acc_meas, _ = add_imu_noise(accs, accs, dt, 0.01, 0.0, rng=np.random.default_rng(0))
        assert np.std(acc_meas) == pytest.approx(0.01 / np.sqrt(dt), rel=0.05)
