"""
IMU measurement correction before preintegration.

This module maps a raw (accelerometer, gyroscope) sample to the corrected
specific force and angular velocity of the body frame:
    - Gyroscope bias correction: ω = ω̃ - b_g
    - Accelerometer bias correction: f = f̃ - b_a
    - Sensor-to-body mounting compensation (rotation and lever arm)

Frame Conventions:
    - S: Sensor frame (IMU case)
    - B: Body frame (frame whose pose is estimated)
    - body_P_sensor = (R_BS, t_BS): pose of S expressed in B

Lever-arm compensation:
    For a rigid body rotating at ω_B with negligible angular acceleration,
    a sensor at offset t_BS measures an extra centripetal term
        f_S = R_SB (f_B + ω_B × (ω_B × t_BS))
    so the body-frame specific force is
        f_B = R_BS f_S - [ω_B]× [ω_B]× t_BS

References:
    Forster et al., IEEE TRO 2017, Eq. (37) (bias model)
"""

from typing import Optional, Tuple

import numpy as np

from imu_preint.geometry import Pose3, skew
from imu_preint.navigation.types import ConstantBias


def correct_gyro(gyro_meas: np.ndarray, b_g: np.ndarray) -> np.ndarray:
    """
    Remove the gyroscope bias from a raw reading.

    Args:
        gyro_meas: Raw angular velocity in the sensor frame, shape (3,). Units: rad/s.
        b_g: Gyroscope bias, shape (3,). Units: rad/s.

    Returns:
        Bias-corrected angular velocity, shape (3,).
    """
    return gyro_meas - b_g


def correct_accel(accel_meas: np.ndarray, b_a: np.ndarray) -> np.ndarray:
    """
    Remove the accelerometer bias from a raw reading.

    Gravity is NOT removed here. The preintegrated increments carry the
    full specific force and gravity is applied when the IMU factor predicts
    the end state.

    Args:
        accel_meas: Raw specific force in the sensor frame, shape (3,). Units: m/s².
        b_a: Accelerometer bias, shape (3,). Units: m/s².

    Returns:
        Bias-corrected specific force, shape (3,).
    """
    return accel_meas - b_a


def compensate_sensor_pose(
    unbiased_acc: np.ndarray,
    unbiased_omega: np.ndarray,
    body_P_sensor: Pose3,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Express bias-corrected sensor readings in the body frame.

    Args:
        unbiased_acc: Bias-corrected specific force in the sensor frame, shape (3,).
        unbiased_omega: Bias-corrected angular velocity in the sensor frame, shape (3,).
        body_P_sensor: Pose of the sensor in the body frame.

    Returns:
        Tuple (acc_body, omega_body).

    Notes:
        - Angular acceleration (Euler term) is neglected.
        - The lever arm only affects the specific force.
    """
    R_BS = body_P_sensor.rotation.matrix()
    omega_body = R_BS @ unbiased_omega
    W = skew(omega_body)
    acc_body = R_BS @ unbiased_acc - W @ W @ body_P_sensor.translation
    return acc_body, omega_body


def correct_measurements(
    measured_acc: np.ndarray,
    measured_omega: np.ndarray,
    bias: ConstantBias,
    body_P_sensor: Optional[Pose3] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Bias-correct a raw IMU sample and, optionally, move it to the body frame.

    Args:
        measured_acc: Raw specific force, shape (3,). Units: m/s².
        measured_omega: Raw angular velocity, shape (3,). Units: rad/s.
        bias: Bias estimate used as the linearization point.
        body_P_sensor: Optional sensor pose in the body frame.

    Returns:
        Tuple (corrected_acc, corrected_omega) in the body frame.

    Example:
        >>> bias = ConstantBias(np.zeros(3), np.array([0.0, 0.0, 0.01]))
        >>> acc, omega = correct_measurements(np.array([0.0, 0.0, 9.81]), np.array([0.0, 0.0, 0.11]), bias)
        >>> np.allclose(omega, [0.0, 0.0, 0.1])
        True
    """
    unbiased_acc = correct_accel(np.asarray(measured_acc, dtype=float), bias.accelerometer)
    unbiased_omega = correct_gyro(np.asarray(measured_omega, dtype=float), bias.gyroscope)

    if body_P_sensor is None:
        return unbiased_acc, unbiased_omega

    return compensate_sensor_pose(unbiased_acc, unbiased_omega, body_P_sensor)


def measurement_bias_jacobians(
    corrected_omega: np.ndarray,
    body_P_sensor: Optional[Pose3] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Jacobians of the corrected body-frame sample with respect to the bias.

    The bias lives in the sensor frame, so with a sensor pose
        ∂ω_B/∂b_g = -R_BS,   ∂a_B/∂b_a = -R_BS
    and the lever arm couples the gyroscope bias into the specific force:
        ∂a_B/∂b_g = ([ω_B × t_BS]× + [ω_B]× [t_BS]×) ∂ω_B/∂b_g

    Args:
        corrected_omega: Body-frame angular velocity from correct_measurements.
        body_P_sensor: Sensor pose in the body frame, or None.

    Returns:
        Tuple (acc_H_bias_acc, acc_H_bias_omega, omega_H_bias_omega), each 3x3.
    """
    if body_P_sensor is None:
        return -np.eye(3), np.zeros((3, 3)), -np.eye(3)

    omega_H_bias_omega = -body_P_sensor.rotation.matrix()
    t_BS = body_P_sensor.translation
    W = skew(corrected_omega)
    acc_H_omega = skew(W @ t_BS) + W @ skew(t_BS)
    return omega_H_bias_omega, acc_H_omega @ omega_H_bias_omega, omega_H_bias_omega
