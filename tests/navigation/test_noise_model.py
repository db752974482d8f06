"""
Unit tests for the Gaussian noise model.

Run with: python -m pytest tests/navigation/test_noise_model.py -v
"""

import numpy as np
import pytest

from imu_preint.navigation import GaussianNoiseModel


@pytest.fixture
def covariance():
    A = np.array([[2.0, 0.3, 0.1], [0.3, 1.0, -0.2], [0.1, -0.2, 0.5]])
    return A


class TestGaussianNoiseModel:
    """Test whitening and validation."""

    def test_diagonal_whitening(self):
        model = GaussianNoiseModel.from_covariance(np.diag([4.0, 1.0]))
        np.testing.assert_allclose(model.whiten(np.array([2.0, 1.0])), [1.0, 1.0])

    def test_information_is_inverse(self, covariance):
        model = GaussianNoiseModel.from_covariance(covariance)
        np.testing.assert_allclose(model.information, np.linalg.inv(covariance), atol=1e-12)

    def test_squared_mahalanobis(self, covariance):
        model = GaussianNoiseModel.from_covariance(covariance)
        r = np.array([0.5, -1.0, 0.3])
        expected = r @ np.linalg.solve(covariance, r)
        assert model.squared_mahalanobis(r) == pytest.approx(expected, rel=1e-12)

    def test_whitened_jacobian_gives_normal_equations(self, covariance):
        model = GaussianNoiseModel.from_covariance(covariance)
        H = np.arange(6.0).reshape(3, 2)
        Hw = model.whiten_jacobian(H)
        np.testing.assert_allclose(Hw.T @ Hw, H.T @ np.linalg.inv(covariance) @ H, atol=1e-10)

    def test_zero_covariance_raises(self):
        with pytest.raises(ValueError):
            GaussianNoiseModel.from_covariance(np.zeros((9, 9)))

    def test_non_symmetric_raises(self):
        with pytest.raises(ValueError):
            GaussianNoiseModel.from_covariance(np.array([[1.0, 0.5], [0.0, 1.0]]))

    def test_non_square_raises(self):
        with pytest.raises(ValueError):
            GaussianNoiseModel.from_covariance(np.ones((2, 3)))

    def test_equals(self, covariance):
        m1 = GaussianNoiseModel.from_covariance(covariance)
        m2 = GaussianNoiseModel.from_covariance(covariance.copy())
        assert m1.equals(m2)
        assert not m1.equals(GaussianNoiseModel.from_covariance(np.eye(3)))
