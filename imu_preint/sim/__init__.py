"""Synthetic IMU data for preintegration examples and tests."""

from imu_preint.sim.imu_from_motion import (
    DEFAULT_GRAVITY,
    add_imu_noise,
    compute_specific_force_body,
    generate_constant_rate_imu,
    true_state,
)

__all__ = [
    "DEFAULT_GRAVITY",
    "compute_specific_force_body",
    "generate_constant_rate_imu",
    "true_state",
    "add_imu_noise",
]
