"""SO(3) operations for on-manifold IMU preintegration.

This module implements the rotation-group calculus that the preintegration
engine and the IMU factor are written against:
    - skew: hat operator [v]× of a 3-vector
    - expmap / logmap: exponential and logarithm maps of SO(3)
    - right_jacobian / right_jacobian_inverse: Jr(θ) and Jr(θ)⁻¹
    - right_jacobian_derivative: ∂(Jr(θ)·c)/∂θ, used by the tangent-space update
    - Rot3: thin rotation type wrapping a 3x3 matrix

Everything above the Rot3 interface (covariance recursion, residuals) only
calls these functions, so the concrete rotation representation stays local
to this file.

Conventions:
    - Rotation matrices R map body vectors to the reference frame: v_ref = R @ v_body
    - Right perturbations: R ⊕ δ = R @ Exp(δ)
    - Exp(θ + δθ) ≈ Exp(θ) @ Exp(Jr(θ) @ δθ)
    - Log(Exp(θ) @ Exp(δθ)) ≈ θ + Jr(θ)⁻¹ @ δθ

References:
    Forster et al., "On-Manifold Preintegration for Real-Time
    Visual-Inertial Odometry", IEEE TRO 2017
    - Eq. (3): exponential map (Rodrigues formula)
    - Eq. (4): logarithm map
    - Eq. (8): right Jacobian of SO(3)
    - Eq. (9): properties of the right Jacobian
"""

from typing import Optional

import numpy as np
from numpy.typing import NDArray

# Below this angle [rad] the trigonometric coefficients switch to Taylor series.
_NEAR_ZERO = 1e-3

# Below this sin(θ) with cos(θ) < 0 the logarithm is taken from the symmetric part.
_NEAR_PI = 1e-6


def skew(v: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Build the skew-symmetric matrix [v]× such that [v]× @ u = v × u.

    Args:
        v: 3-vector, shape (3,).

    Returns:
        Skew-symmetric matrix, shape (3, 3).

    Raises:
        ValueError: If v does not have shape (3,).

    Example:
        >>> v = np.array([1.0, 2.0, 3.0])
        >>> u = np.array([0.5, -1.0, 2.0])
        >>> np.allclose(skew(v) @ u, np.cross(v, u))
        True
    """
    v = np.asarray(v, dtype=float)
    if v.shape != (3,):
        raise ValueError(f"v must have shape (3,), got {v.shape}")

    x, y, z = v
    return np.array(
        [
            [0.0, -z, y],
            [z, 0.0, -x],
            [-y, x, 0.0],
        ]
    )


def _rodrigues_coefficients(theta: float):
    """Return (sin θ/θ, (1 - cos θ)/θ²) with a Taylor branch near zero."""
    if theta < _NEAR_ZERO:
        t2 = theta * theta
        return 1.0 - t2 / 6.0 + t2 * t2 / 120.0, 0.5 - t2 / 24.0 + t2 * t2 / 720.0
    return np.sin(theta) / theta, (1.0 - np.cos(theta)) / (theta * theta)


def expmap(omega: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Exponential map from so(3) to SO(3).

    Implements the Rodrigues formula (Forster Eq. 3):
        Exp(θ) = I + (sin|θ|/|θ|)[θ]× + ((1 - cos|θ|)/|θ|²)[θ]×²

    Args:
        omega: Rotation vector θ (axis times angle), shape (3,). Units: rad.

    Returns:
        Rotation matrix, shape (3, 3).
    """
    W = skew(omega)
    a, b = _rodrigues_coefficients(float(np.linalg.norm(omega)))
    return np.eye(3) + a * W + b * (W @ W)


def logmap(R: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Logarithm map from SO(3) to so(3).

    Inverse of expmap for rotation angles in [0, π]. Uses atan2 on the
    symmetric/antisymmetric parts, which keeps full precision both for
    small angles and for angles approaching π.

    Args:
        R: Rotation matrix, shape (3, 3).

    Returns:
        Rotation vector θ, shape (3,), with |θ| <= π.

    Raises:
        ValueError: If R is not a 3x3 matrix.
    """
    R = np.asarray(R, dtype=float)
    if R.shape != (3, 3):
        raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")

    w = np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]])
    sin_theta = 0.5 * np.linalg.norm(w)
    cos_theta = np.clip(0.5 * (np.trace(R) - 1.0), -1.0, 1.0)
    theta = np.arctan2(sin_theta, cos_theta)

    if theta < _NEAR_ZERO:
        # θ / sin θ ≈ 1 + θ²/6
        return 0.5 * (1.0 + theta * theta / 6.0) * w

    if sin_theta < _NEAR_PI:
        # Angle ≈ π: axis from the largest column of (R + I)
        k = int(np.argmax(np.diag(R)))
        axis = R[:, k] + np.eye(3)[:, k]
        axis = axis / np.linalg.norm(axis)
        if axis @ w < 0.0:
            axis = -axis
        return theta * axis

    return (0.5 * theta / sin_theta) * w


def _jacobian_coefficients(theta: float):
    """Return ((1 - cos θ)/θ², (θ - sin θ)/θ³) with a Taylor branch near zero."""
    if theta < _NEAR_ZERO:
        t2 = theta * theta
        return (
            0.5 - t2 / 24.0 + t2 * t2 / 720.0,
            1.0 / 6.0 - t2 / 120.0 + t2 * t2 / 5040.0,
        )
    t2 = theta * theta
    return (1.0 - np.cos(theta)) / t2, (theta - np.sin(theta)) / (t2 * theta)


def right_jacobian(omega: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Right Jacobian of the SO(3) exponential map.

    Implements Forster Eq. (8):
        Jr(θ) = I - ((1 - cos|θ|)/|θ|²)[θ]× + ((|θ| - sin|θ|)/|θ|³)[θ]×²

    Jr relates an additive perturbation of the rotation vector to a right
    perturbation of the rotation:
        Exp(θ + δθ) ≈ Exp(θ) @ Exp(Jr(θ) @ δθ)

    Args:
        omega: Rotation vector θ, shape (3,).

    Returns:
        Jr(θ), shape (3, 3). Jr(0) = I.
    """
    W = skew(omega)
    a, b = _jacobian_coefficients(float(np.linalg.norm(omega)))
    return np.eye(3) - a * W + b * (W @ W)


def right_jacobian_inverse(omega: NDArray[np.float64]) -> NDArray[np.float64]:
    """
    Inverse of the right Jacobian of the SO(3) exponential map.

    Closed form:
        Jr⁻¹(θ) = I + ½[θ]× + (1/|θ|² - (1 + cos|θ|)/(2|θ| sin|θ|))[θ]×²

    Args:
        omega: Rotation vector θ, shape (3,). Requires |θ| < π.

    Returns:
        Jr(θ)⁻¹, shape (3, 3).
    """
    W = skew(omega)
    theta = float(np.linalg.norm(omega))
    if theta < _NEAR_ZERO:
        t2 = theta * theta
        c = 1.0 / 12.0 + t2 / 720.0 + t2 * t2 / 30240.0
    else:
        c = 1.0 / (theta * theta) - (1.0 + np.cos(theta)) / (
            2.0 * theta * np.sin(theta)
        )
    return np.eye(3) + 0.5 * W + c * (W @ W)


def right_jacobian_derivative(
    omega: NDArray[np.float64], c: NDArray[np.float64]
) -> NDArray[np.float64]:
    """
    Derivative of Jr(θ) @ c with respect to θ, for a fixed vector c.

    With a(t) = (1 - cos t)/t² and b(t) = (t - sin t)/t³:
        ∂(Jr c)/∂θ = -(a'/t)(θ×c)θᵀ + a[c]×
                     + (b'/t)(θ×(θ×c))θᵀ + b(θcᵀ + (θ·c)I - 2cθᵀ)

    At θ = 0 this reduces to ½[c]×.

    Args:
        omega: Rotation vector θ, shape (3,).
        c: Vector multiplied by Jr(θ), shape (3,).

    Returns:
        Jacobian, shape (3, 3).
    """
    omega = np.asarray(omega, dtype=float)
    c = np.asarray(c, dtype=float)
    theta = float(np.linalg.norm(omega))
    a, b = _jacobian_coefficients(theta)

    t2 = theta * theta
    if theta < _NEAR_ZERO:
        da_over_t = -1.0 / 12.0 + t2 / 180.0
        db_over_t = -1.0 / 60.0 + t2 / 1260.0
    else:
        da_over_t = (theta * np.sin(theta) - 2.0 * (1.0 - np.cos(theta))) / (t2 * t2)
        db_over_t = (1.0 - np.cos(theta)) / (t2 * t2) - 3.0 * (
            theta - np.sin(theta)
        ) / (t2 * t2 * theta)

    wxc = np.cross(omega, c)
    wxwxc = np.cross(omega, wxc)
    return (
        -da_over_t * np.outer(wxc, omega)
        + a * skew(c)
        + db_over_t * np.outer(wxwxc, omega)
        + b * (np.outer(omega, c) + float(omega @ c) * np.eye(3) - 2.0 * np.outer(c, omega))
    )


class Rot3:
    """
    3D rotation stored as an orthonormal 3x3 matrix.

    Provides exactly the operations used by preintegration: composition,
    inversion, exponential/logarithm maps, and vector rotation. Instances
    are treated as immutable values.

    Example:
        >>> R = Rot3.expmap(np.array([0.0, 0.0, np.pi / 2]))
        >>> np.allclose(R.rotate(np.array([1.0, 0.0, 0.0])), [0.0, 1.0, 0.0])
        True
    """

    __slots__ = ("_R",)

    dim = 3

    def __init__(self, matrix: Optional[NDArray[np.float64]] = None):
        if matrix is None:
            self._R = np.eye(3)
            return
        R = np.array(matrix, dtype=float)
        if R.shape != (3, 3):
            raise ValueError(f"Expected 3x3 matrix, got shape {R.shape}")
        self._R = R

    @classmethod
    def identity(cls) -> "Rot3":
        return cls()

    @classmethod
    def expmap(cls, omega: NDArray[np.float64]) -> "Rot3":
        """Rotation Exp(θ) for a rotation vector θ."""
        return cls(expmap(omega))

    @classmethod
    def from_rpy(cls, roll: float, pitch: float, yaw: float) -> "Rot3":
        """
        Rotation from roll-pitch-yaw Euler angles (ZYX convention).

        Args:
            roll: Rotation about x [rad].
            pitch: Rotation about y [rad].
            yaw: Rotation about z [rad].

        Returns:
            Rot3 equal to Rz(yaw) @ Ry(pitch) @ Rx(roll).
        """
        cr, sr = np.cos(roll), np.sin(roll)
        cp, sp = np.cos(pitch), np.sin(pitch)
        cy, sy = np.cos(yaw), np.sin(yaw)
        return cls(
            np.array(
                [
                    [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
                    [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
                    [-sp, cp * sr, cp * cr],
                ]
            )
        )

    def logmap(self) -> NDArray[np.float64]:
        """Rotation vector Log(R), shape (3,)."""
        return logmap(self._R)

    def matrix(self) -> NDArray[np.float64]:
        """Copy of the underlying 3x3 matrix."""
        return self._R.copy()

    def transpose(self) -> NDArray[np.float64]:
        return self._R.T.copy()

    def inverse(self) -> "Rot3":
        return Rot3(self._R.T)

    def compose(self, other: "Rot3") -> "Rot3":
        """Composition self ∘ other (matrix product self @ other)."""
        return Rot3(self._R @ other._R)

    def __mul__(self, other: "Rot3") -> "Rot3":
        return self.compose(other)

    def between(self, other: "Rot3") -> "Rot3":
        """Relative rotation selfᵀ @ other."""
        return Rot3(self._R.T @ other._R)

    def retract(self, delta: NDArray[np.float64]) -> "Rot3":
        """Right perturbation R @ Exp(δ)."""
        return Rot3(self._R @ expmap(delta))

    def local(self, other: "Rot3") -> NDArray[np.float64]:
        """Tangent vector δ with self.retract(δ) == other."""
        return logmap(self._R.T @ other._R)

    def rotate(self, v: NDArray[np.float64]) -> NDArray[np.float64]:
        """R @ v."""
        return self._R @ np.asarray(v, dtype=float)

    def unrotate(self, v: NDArray[np.float64]) -> NDArray[np.float64]:
        """Rᵀ @ v."""
        return self._R.T @ np.asarray(v, dtype=float)

    def equals(self, other: "Rot3", tol: float = 1e-9) -> bool:
        return bool(np.allclose(self._R, other._R, rtol=0.0, atol=tol))

    def __repr__(self) -> str:
        return f"Rot3(log={np.array2string(self.logmap(), precision=6)})"
