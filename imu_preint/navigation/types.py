"""
Data structures for IMU preintegration.

This module defines the value types shared by the preintegration engine and
the IMU factor:
    - ConstantBias: accelerometer and gyroscope bias pair
    - PreintegrationParams: noise covariances and integration options

Both are frozen dataclasses. Arrays are copied on construction and on
access, so a params object can be shared by many PreintegratedMeasurements
instances (one per keyframe interval or per sensor) without aliasing.

Bias tangent ordering:
    δb = [δb_a (3), δb_g (3)], accelerometer first

Measurement covariance layout (9x9, block-diagonal):
    [ integration | accelerometer | gyroscope ]

References:
    Forster et al., IEEE TRO 2017
    - Eq. (37): IMU measurement model with biases and white noise
    - Eq. (47): noise covariance used in preintegration
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from imu_preint.geometry import Pose3


def _as_vector3(name: str, value) -> NDArray[np.float64]:
    v = np.array(value, dtype=float)
    if v.shape != (3,):
        raise ValueError(f"{name} must have shape (3,), got {v.shape}")
    if not np.all(np.isfinite(v)):
        raise ValueError(f"{name} must be finite, got {v}")
    return v


def validate_covariance(name: str, value, size: int = 3) -> NDArray[np.float64]:
    """
    Check that a matrix is a usable covariance and return a float copy.

    Args:
        name: Name used in error messages.
        value: Candidate covariance matrix.
        size: Expected dimension.

    Returns:
        Covariance as a (size, size) float array.

    Raises:
        ValueError: If the matrix is not square of the expected size, not
            finite, not symmetric, or has a negative eigenvalue.
    """
    C = np.array(value, dtype=float)
    if C.shape != (size, size):
        raise ValueError(f"{name} must have shape ({size}, {size}), got {C.shape}")
    if not np.all(np.isfinite(C)):
        raise ValueError(f"{name} must be finite")
    scale = max(1.0, float(np.max(np.abs(C))))
    if not np.allclose(C, C.T, rtol=0.0, atol=1e-12 * scale):
        raise ValueError(f"{name} must be symmetric")
    min_eig = float(np.min(np.linalg.eigvalsh(C)))
    if min_eig < -1e-12 * scale:
        raise ValueError(
            f"{name} must be positive semi-definite, smallest eigenvalue {min_eig:.3e}"
        )
    return C


@dataclass(frozen=True, eq=False)
class ConstantBias:
    """
    Constant IMU bias (accelerometer and gyroscope).

    The measurement model is
        ã = a + b_a + n_a,   ω̃ = ω + b_g + n_g
    so a reading is corrected by subtracting the bias.

    Attributes:
        accelerometer: Accelerometer bias b_a, shape (3,). Units: m/s².
        gyroscope: Gyroscope bias b_g, shape (3,). Units: rad/s.

    Example:
        >>> b = ConstantBias(np.array([0.1, 0.0, 0.0]), np.array([0.0, 0.0, 0.01]))
        >>> b.vector()
        array([0.1 , 0.  , 0.  , 0.  , 0.  , 0.01])
    """

    accelerometer: NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))
    gyroscope: NDArray[np.float64] = field(default_factory=lambda: np.zeros(3))

    dim = 6

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "accelerometer", _as_vector3("accelerometer", self.accelerometer)
        )
        object.__setattr__(self, "gyroscope", _as_vector3("gyroscope", self.gyroscope))
        self.accelerometer.flags.writeable = False
        self.gyroscope.flags.writeable = False

    @classmethod
    def from_vector(cls, b: NDArray[np.float64]) -> "ConstantBias":
        """Build from the stacked vector [b_a, b_g], shape (6,)."""
        b = np.asarray(b, dtype=float)
        if b.shape != (6,):
            raise ValueError(f"bias vector must have shape (6,), got {b.shape}")
        return cls(b[:3], b[3:])

    def vector(self) -> NDArray[np.float64]:
        """Stacked [b_a, b_g], shape (6,)."""
        return np.concatenate([self.accelerometer, self.gyroscope])

    def retract(self, delta: NDArray[np.float64]) -> "ConstantBias":
        """Additive update by δb = [δb_a, δb_g]."""
        return ConstantBias.from_vector(self.vector() + np.asarray(delta, dtype=float))

    def local(self, other: "ConstantBias") -> NDArray[np.float64]:
        return other.vector() - self.vector()

    def equals(self, other: "ConstantBias", tol: float = 1e-9) -> bool:
        return bool(np.allclose(self.vector(), other.vector(), rtol=0.0, atol=tol))

    def __repr__(self) -> str:
        return (
            f"ConstantBias(acc={np.array2string(self.accelerometer, precision=6)}, "
            f"gyro={np.array2string(self.gyroscope, precision=6)})"
        )


@dataclass(frozen=True, eq=False)
class PreintegrationParams:
    """
    Configuration of the preintegration engine.

    Covariances are continuous-time spectral densities: the engine scales
    them by Δt for every integrated sample, so they do not depend on the
    IMU rate.

    Attributes:
        accelerometer_covariance: Accelerometer white-noise density Σ_a,
            shape (3, 3). Units: (m/s²)²/Hz.
        gyroscope_covariance: Gyroscope white-noise density Σ_g,
            shape (3, 3). Units: (rad/s)²/Hz.
        integration_covariance: Position integration error density,
            shape (3, 3). Units: m²/s (absorbs discretization error).
        use_2nd_order_integration: If True, the position increment also
            integrates ½·ΔR·a·Δt² within each sample.
        body_P_sensor: Fixed sensor pose in the body frame. If given, raw
            readings are rotated into the body frame and the lever-arm
            centripetal term is removed.

    Example:
        >>> params = PreintegrationParams(
        ...     accelerometer_covariance=0.01 * np.eye(3),
        ...     gyroscope_covariance=1e-4 * np.eye(3),
        ... )
        >>> params.measurement_covariance.shape
        (9, 9)
    """

    accelerometer_covariance: NDArray[np.float64] = field(
        default_factory=lambda: np.zeros((3, 3))
    )
    gyroscope_covariance: NDArray[np.float64] = field(
        default_factory=lambda: np.zeros((3, 3))
    )
    integration_covariance: NDArray[np.float64] = field(
        default_factory=lambda: np.zeros((3, 3))
    )
    use_2nd_order_integration: bool = False
    body_P_sensor: Optional[Pose3] = None

    def __post_init__(self) -> None:
        for name in (
            "accelerometer_covariance",
            "gyroscope_covariance",
            "integration_covariance",
        ):
            C = validate_covariance(name, getattr(self, name))
            C.flags.writeable = False
            object.__setattr__(self, name, C)
        if self.body_P_sensor is not None and not isinstance(self.body_P_sensor, Pose3):
            raise ValueError(
                f"body_P_sensor must be a Pose3, got {type(self.body_P_sensor).__name__}"
            )

    @property
    def measurement_covariance(self) -> NDArray[np.float64]:
        """Block-diagonal 9x9 [integration, accelerometer, gyroscope] density."""
        Q = np.zeros((9, 9))
        Q[0:3, 0:3] = self.integration_covariance
        Q[3:6, 3:6] = self.accelerometer_covariance
        Q[6:9, 6:9] = self.gyroscope_covariance
        return Q

    def equals(self, other: "PreintegrationParams", tol: float = 1e-9) -> bool:
        if self.use_2nd_order_integration != other.use_2nd_order_integration:
            return False
        if (self.body_P_sensor is None) != (other.body_P_sensor is None):
            return False
        if self.body_P_sensor is not None and not self.body_P_sensor.equals(
            other.body_P_sensor, tol
        ):
            return False
        return bool(
            np.allclose(
                self.measurement_covariance,
                other.measurement_covariance,
                rtol=0.0,
                atol=tol,
            )
        )
