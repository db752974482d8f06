"""Manifold primitives for IMU preintegration.

This package provides the rotation-group and rigid-body operations the
preintegration engine and the IMU factor are written against:
- so3: skew, exponential/logarithm maps, right Jacobian and its inverse, Rot3
- pose3: Pose3 with its retraction
- numerical: finite-difference Jacobians on manifolds

Reference: Forster et al., IEEE TRO 2017, Section III
"""

from imu_preint.geometry.numerical import numerical_derivative
from imu_preint.geometry.pose3 import Pose3
from imu_preint.geometry.so3 import (
    Rot3,
    expmap,
    logmap,
    right_jacobian,
    right_jacobian_derivative,
    right_jacobian_inverse,
    skew,
)

__all__ = [
    # SO(3)
    "Rot3",
    "skew",
    "expmap",
    "logmap",
    "right_jacobian",
    "right_jacobian_inverse",
    "right_jacobian_derivative",
    # SE(3)
    "Pose3",
    # Numerical differentiation
    "numerical_derivative",
]
