"""
Unit tests for building PreintegrationParams from densities and JSON.

Run with: python -m pytest tests/navigation/test_config.py -v
"""

import json

import numpy as np
import pytest

from imu_preint.navigation import (
    load_preintegration_params,
    params_from_dict,
    params_from_noise_densities,
)


class TestNoiseDensities:
    """Test density to covariance conversion."""

    def test_scalar_densities(self):
        params = params_from_noise_densities(0.01, 0.001, 1e-4)
        np.testing.assert_allclose(params.accelerometer_covariance, 1e-4 * np.eye(3))
        np.testing.assert_allclose(params.gyroscope_covariance, 1e-6 * np.eye(3))
        np.testing.assert_allclose(params.integration_covariance, 1e-8 * np.eye(3))

    def test_per_axis_densities(self):
        params = params_from_noise_densities([0.1, 0.2, 0.3], 0.0)
        np.testing.assert_allclose(np.diag(params.accelerometer_covariance), [0.01, 0.04, 0.09])
        np.testing.assert_array_equal(params.gyroscope_covariance, np.zeros((3, 3)))

    def test_negative_density_raises(self):
        with pytest.raises(ValueError):
            params_from_noise_densities(-0.01, 0.001)


class TestParamsFromDict:
    """Test dictionary configuration."""

    def test_full_configuration(self):
        params = params_from_dict(
            {
                "accelerometer_noise_density": 0.01,
                "gyroscope_noise_density": 0.001,
                "integration_uncertainty": 1e-4,
                "use_2nd_order_integration": True,
                "body_P_sensor": {"rotation_rpy": [0.0, 0.0, 0.5], "translation": [0.1, 0.2, 0.3]},
            }
        )
        assert params.use_2nd_order_integration
        np.testing.assert_allclose(params.body_P_sensor.translation, [0.1, 0.2, 0.3])
        np.testing.assert_allclose(params.body_P_sensor.rotation.logmap(), [0.0, 0.0, 0.5], atol=1e-12)

    def test_defaults(self):
        params = params_from_dict(
            {"accelerometer_noise_density": 0.01, "gyroscope_noise_density": 0.001}
        )
        assert not params.use_2nd_order_integration
        assert params.body_P_sensor is None
        np.testing.assert_array_equal(params.integration_covariance, np.zeros((3, 3)))

    def test_missing_key_raises(self):
        with pytest.raises(ValueError, match="Missing"):
            params_from_dict({"accelerometer_noise_density": 0.01})

    def test_unknown_key_raises(self):
        with pytest.raises(ValueError, match="Unknown"):
            params_from_dict(
                {
                    "accelerometer_noise_density": 0.01,
                    "gyroscope_noise_density": 0.001,
                    "magnetometer_noise_density": 0.1,
                }
            )

    def test_unknown_sensor_pose_key_raises(self):
        with pytest.raises(ValueError):
            params_from_dict(
                {
                    "accelerometer_noise_density": 0.01,
                    "gyroscope_noise_density": 0.001,
                    "body_P_sensor": {"quaternion": [1.0, 0.0, 0.0, 0.0]},
                }
            )


class TestLoadParams:
    """Test JSON file loading."""

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "imu.json"
        path.write_text(
            json.dumps({"accelerometer_noise_density": 0.02, "gyroscope_noise_density": 0.002})
        )
        params = load_preintegration_params(path)
        np.testing.assert_allclose(params.accelerometer_covariance, 4e-4 * np.eye(3))

    def test_malformed_json_raises(self, tmp_path):
        path = tmp_path / "imu.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            load_preintegration_params(path)

    def test_non_object_json_raises(self, tmp_path):
        path = tmp_path / "imu.json"
        path.write_text("[1, 2, 3]")
        with pytest.raises(ValueError):
            load_preintegration_params(path)
