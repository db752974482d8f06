"""
Generate synthetic IMU measurements for constant-rate motion.

The body rotates at a constant body-frame angular velocity ω while its
origin moves with a constant navigation-frame acceleration a_N:
    R(t) = R_0 Exp(ω t)
    v(t) = v_0 + a_N t
    p(t) = p_0 + v_0 t + ½ a_N t²

Accelerometers measure specific force (reaction force), not acceleration:
    f_B = R(t)ᵀ (a_N - g_N)

Samples are taken at the start of each interval [t_k, t_k + Δt). With this
sampling a noise-free, bias-free preintegration in second-order mode
reproduces the true relative motion exactly, which makes these streams a
reference for the preintegration and factor tests.
"""

from typing import Optional, Tuple

import numpy as np

from imu_preint.geometry import Pose3, Rot3
from imu_preint.navigation.types import ConstantBias

# Gravity in an ENU navigation frame [m/s²]
DEFAULT_GRAVITY = np.array([0.0, 0.0, -9.81])


def compute_specific_force_body(
    accel_nav: np.ndarray,
    R_nb: np.ndarray,
    gravity: np.ndarray = DEFAULT_GRAVITY,
) -> np.ndarray:
    """
    Compute specific force in body frame from true acceleration in the navigation frame.

    Forward model:
        f_B = R_nbᵀ (a_N - g_N)

    Args:
        accel_nav: True acceleration in the navigation frame, shape (3,). Units: m/s².
        R_nb: Body-to-navigation rotation matrix, shape (3, 3).
        gravity: Gravity vector in the navigation frame, shape (3,).

    Returns:
        Specific force in the body frame, shape (3,). This is what an ideal
        accelerometer would measure.

    Notes:
        - For a stationary, level body in ENU: f_B = [0, 0, +9.81]
    """
    return R_nb.T @ (np.asarray(accel_nav, dtype=float) - gravity)


def generate_constant_rate_imu(
    omega_body: np.ndarray,
    accel_nav: np.ndarray,
    duration: float,
    dt: float,
    rotation_0: Optional[Rot3] = None,
    gravity: np.ndarray = DEFAULT_GRAVITY,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate ideal IMU samples for constant-rate motion.

    Args:
        omega_body: Constant body-frame angular velocity, shape (3,). Units: rad/s.
        accel_nav: Constant navigation-frame acceleration, shape (3,). Units: m/s².
        duration: Length of the stream [s].
        dt: Sample period [s].
        rotation_0: Initial attitude. Default: identity.
        gravity: Gravity vector in the navigation frame.

    Returns:
        Tuple (accel_body, gyro_body), each of shape (N, 3) with
        N = round(duration / dt).

    Raises:
        ValueError: If duration or dt is not positive.

    Example:
        >>> accs, omegas = generate_constant_rate_imu(np.zeros(3), np.zeros(3), 1.0, 0.01)
        >>> accs.shape
        (100, 3)
    """
    if dt <= 0.0 or duration <= 0.0:
        raise ValueError(f"duration and dt must be positive, got {duration}, {dt}")
    if rotation_0 is None:
        rotation_0 = Rot3.identity()

    omega_body = np.asarray(omega_body, dtype=float)
    N = int(round(duration / dt))

    accel_body = np.zeros((N, 3))
    gyro_body = np.tile(omega_body, (N, 1))
    for k in range(N):
        R_k = rotation_0.retract(omega_body * k * dt).matrix()
        accel_body[k] = compute_specific_force_body(accel_nav, R_k, gravity)

    return accel_body, gyro_body


def true_state(
    t: float,
    pose_0: Pose3,
    vel_0: np.ndarray,
    omega_body: np.ndarray,
    accel_nav: np.ndarray,
) -> Tuple[Pose3, np.ndarray]:
    """
    Ground-truth pose and velocity of constant-rate motion at time t.

    Args:
        t: Time since the start of the motion [s].
        pose_0: Initial pose.
        vel_0: Initial navigation-frame velocity, shape (3,).
        omega_body: Constant body-frame angular velocity, shape (3,).
        accel_nav: Constant navigation-frame acceleration, shape (3,).

    Returns:
        Tuple (pose_t, vel_t).
    """
    vel_0 = np.asarray(vel_0, dtype=float)
    accel_nav = np.asarray(accel_nav, dtype=float)
    R_t = pose_0.rotation.retract(np.asarray(omega_body, dtype=float) * t)
    p_t = pose_0.translation + vel_0 * t + 0.5 * accel_nav * t * t
    return Pose3(R_t, p_t), vel_0 + accel_nav * t


def add_imu_noise(
    accel_body: np.ndarray,
    gyro_body: np.ndarray,
    dt: float,
    accel_sigma: float,
    gyro_sigma: float,
    bias: Optional[ConstantBias] = None,
    rng: Optional[np.random.Generator] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Corrupt ideal IMU samples with white noise and a constant bias.

    Measurement model:
        ã = a + b_a + n_a,   ω̃ = ω + b_g + n_g
    with discrete noise standard deviation σ/√Δt for a density σ.

    Args:
        accel_body: Ideal specific force, shape (N, 3).
        gyro_body: Ideal angular velocity, shape (N, 3).
        dt: Sample period [s].
        accel_sigma: Accelerometer noise density [m/s/√s].
        gyro_sigma: Gyroscope noise density [rad/√s].
        bias: Constant bias added to every sample. Default: zero.
        rng: Random number generator. If None, uses np.random.default_rng().

    Returns:
        Tuple (accel_meas, gyro_meas), same shapes as the inputs.
    """
    if rng is None:
        rng = np.random.default_rng()
    if bias is None:
        bias = ConstantBias()

    sqrt_dt = np.sqrt(dt)
    accel_meas = (
        accel_body
        + bias.accelerometer
        + rng.normal(0.0, accel_sigma / sqrt_dt, size=accel_body.shape)
    )
    gyro_meas = (
        gyro_body
        + bias.gyroscope
        + rng.normal(0.0, gyro_sigma / sqrt_dt, size=gyro_body.shape)
    )
    return accel_meas, gyro_meas
