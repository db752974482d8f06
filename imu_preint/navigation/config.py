"""
Construction of PreintegrationParams from noise densities and JSON files.

IMU datasheets and calibration tools (Allan variance) report white-noise
densities σ per axis: the accelerometer velocity random walk in
m/s/√s and the gyroscope angle random walk in rad/√s. The preintegration
engine expects continuous-time covariance densities, which are simply
σ² I for isotropic sensors.

JSON layout:
    {
        "accelerometer_noise_density": 0.0028,
        "gyroscope_noise_density": 0.00016,
        "integration_uncertainty": 0.0001,
        "use_2nd_order_integration": false,
        "body_P_sensor": {
            "rotation_rpy": [0.0, 0.0, 0.0],
            "translation": [0.1, 0.0, 0.0]
        }
    }
Only the two noise densities are required.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from imu_preint.geometry import Pose3, Rot3
from imu_preint.navigation.types import PreintegrationParams

REQUIRED_KEYS = ("accelerometer_noise_density", "gyroscope_noise_density")
OPTIONAL_KEYS = ("integration_uncertainty", "use_2nd_order_integration", "body_P_sensor")


def _density_covariance(name: str, sigma) -> np.ndarray:
    """σ (scalar or per-axis (3,)) to the diagonal density covariance σ²."""
    s = np.broadcast_to(np.asarray(sigma, dtype=float), (3,))
    if not np.all(np.isfinite(s)) or np.any(s < 0.0):
        raise ValueError(f"{name} must be finite and non-negative, got {sigma}")
    return np.diag(s * s)


def params_from_noise_densities(
    accel_sigma: Union[float, np.ndarray],
    gyro_sigma: Union[float, np.ndarray],
    integration_sigma: Union[float, np.ndarray] = 0.0,
    use_2nd_order_integration: bool = False,
    body_P_sensor: Optional[Pose3] = None,
) -> PreintegrationParams:
    """
    Build PreintegrationParams from white-noise densities.

    Args:
        accel_sigma: Accelerometer noise density [m/s/√s], scalar or per axis.
        gyro_sigma: Gyroscope noise density [rad/√s], scalar or per axis.
        integration_sigma: Position integration uncertainty [m/√s].
        use_2nd_order_integration: Second-order position integration.
        body_P_sensor: Optional sensor pose in the body frame.

    Returns:
        PreintegrationParams with diagonal covariances σ².

    Raises:
        ValueError: If a density is negative or not finite.

    Example:
        >>> params = params_from_noise_densities(0.01, 0.001)
        >>> float(params.gyroscope_covariance[0, 0])
        1e-06
    """
    return PreintegrationParams(
        accelerometer_covariance=_density_covariance("accel_sigma", accel_sigma),
        gyroscope_covariance=_density_covariance("gyro_sigma", gyro_sigma),
        integration_covariance=_density_covariance("integration_sigma", integration_sigma),
        use_2nd_order_integration=bool(use_2nd_order_integration),
        body_P_sensor=body_P_sensor,
    )


def _pose_from_dict(d: Dict[str, Any]) -> Pose3:
    unknown = set(d) - {"rotation_rpy", "translation"}
    if unknown:
        raise ValueError(f"Unknown body_P_sensor keys: {sorted(unknown)}")
    rpy = np.asarray(d.get("rotation_rpy", [0.0, 0.0, 0.0]), dtype=float)
    if rpy.shape != (3,):
        raise ValueError(f"body_P_sensor.rotation_rpy must have 3 entries, got {rpy.shape}")
    return Pose3(Rot3.from_rpy(*rpy), d.get("translation", [0.0, 0.0, 0.0]))


def params_from_dict(config: Dict[str, Any]) -> PreintegrationParams:
    """
    Build PreintegrationParams from a configuration dictionary.

    Args:
        config: Dictionary with the keys described in the module docstring.

    Returns:
        PreintegrationParams.

    Raises:
        ValueError: On missing required keys, unknown keys, or invalid values.
    """
    missing = [k for k in REQUIRED_KEYS if k not in config]
    if missing:
        raise ValueError(f"Missing required configuration keys: {missing}")
    unknown = set(config) - set(REQUIRED_KEYS) - set(OPTIONAL_KEYS)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

    body_P_sensor = None
    if config.get("body_P_sensor") is not None:
        body_P_sensor = _pose_from_dict(config["body_P_sensor"])

    return params_from_noise_densities(
        config["accelerometer_noise_density"],
        config["gyroscope_noise_density"],
        config.get("integration_uncertainty", 0.0),
        use_2nd_order_integration=config.get("use_2nd_order_integration", False),
        body_P_sensor=body_P_sensor,
    )


def load_preintegration_params(path: Union[str, Path]) -> PreintegrationParams:
    """
    Load PreintegrationParams from a JSON file.

    Args:
        path: Path to the JSON configuration.

    Returns:
        PreintegrationParams.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the JSON is malformed or the configuration invalid.
    """
    with open(path, "r") as f:
        try:
            config = json.load(f)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Malformed configuration file {path}: {exc}") from exc
    if not isinstance(config, dict):
        raise ValueError(f"Configuration file {path} must hold a JSON object")
    return params_from_dict(config)
