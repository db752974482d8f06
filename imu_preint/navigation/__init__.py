"""
IMU preintegration and the IMU factor.

Modules:
    types: ConstantBias and PreintegrationParams
    bias_correction: bias and sensor-pose correction of raw samples
    preintegration: PreintegratedMeasurements engine, update_estimate
    noise_model: GaussianNoiseModel (whitening)
    imu_factor: residual/Jacobian evaluator and ImuFactor
    config: params from noise densities, dictionaries and JSON files

Design principles:
    - Preintegrated measurements have a single writer; the factor keeps a copy
    - Every Jacobian is analytic and checked against numerical_derivative
    - Invalid input raises ValueError; accuracy problems emit RuntimeWarning
"""

from imu_preint.navigation.bias_correction import (
    compensate_sensor_pose,
    correct_accel,
    correct_gyro,
    correct_measurements,
    measurement_bias_jacobians,
)
from imu_preint.navigation.config import (
    load_preintegration_params,
    params_from_dict,
    params_from_noise_densities,
)
from imu_preint.navigation.imu_factor import (
    ImuFactor,
    ImuFactorError,
    compute_error_and_jacobians,
    predict,
)
from imu_preint.navigation.noise_model import GaussianNoiseModel
from imu_preint.navigation.preintegration import (
    MAX_ROTATION_INCREMENT,
    IntegrationJacobians,
    PreintegratedMeasurements,
    TangentUpdate,
    update_estimate,
)
from imu_preint.navigation.types import (
    ConstantBias,
    PreintegrationParams,
    validate_covariance,
)

__all__ = [
    # Types
    "ConstantBias",
    "PreintegrationParams",
    "validate_covariance",
    # Bias correction
    "correct_gyro",
    "correct_accel",
    "compensate_sensor_pose",
    "correct_measurements",
    "measurement_bias_jacobians",
    # Engine
    "PreintegratedMeasurements",
    "IntegrationJacobians",
    "TangentUpdate",
    "update_estimate",
    "MAX_ROTATION_INCREMENT",
    # Factor
    "GaussianNoiseModel",
    "ImuFactor",
    "ImuFactorError",
    "compute_error_and_jacobians",
    "predict",
    # Configuration
    "params_from_noise_densities",
    "params_from_dict",
    "load_preintegration_params",
]
