"""SE(3) poses for IMU factors.

A Pose3 is a rotation R (body to navigation frame) and a translation t
(body origin expressed in the navigation frame). Used for the endpoint
poses of an IMU factor and for the fixed sensor-to-body mounting transform.

Tangent space and retraction:
    ξ = [δω, δt] (6,), rotation first
    Pose3(R, t) ⊕ ξ = Pose3(R @ Exp(δω), t + R @ δt)

The translation perturbation is expressed in the body frame, so the
Jacobians of the IMU residual with respect to a pose are block-simple
(see imu_preint.navigation.imu_factor).
"""

from typing import Optional

import numpy as np
from numpy.typing import NDArray

from imu_preint.geometry.so3 import Rot3, logmap


class Pose3:
    """
    Rigid-body transform in 3D.

    Attributes:
        rotation: Rot3, body-to-navigation rotation.
        translation: Position of the body origin, shape (3,).
    """

    __slots__ = ("_rotation", "_translation")

    dim = 6

    def __init__(
        self,
        rotation: Optional[Rot3] = None,
        translation: Optional[NDArray[np.float64]] = None,
    ):
        self._rotation = rotation if rotation is not None else Rot3()
        if translation is None:
            translation = np.zeros(3)
        t = np.array(translation, dtype=float)
        if t.shape != (3,):
            raise ValueError(f"translation must have shape (3,), got {t.shape}")
        self._translation = t

    @classmethod
    def identity(cls) -> "Pose3":
        return cls()

    @property
    def rotation(self) -> Rot3:
        return self._rotation

    @property
    def translation(self) -> NDArray[np.float64]:
        return self._translation.copy()

    def matrix(self) -> NDArray[np.float64]:
        """Homogeneous 4x4 matrix."""
        T = np.eye(4)
        T[:3, :3] = self._rotation.matrix()
        T[:3, 3] = self._translation
        return T

    def compose(self, other: "Pose3") -> "Pose3":
        """self ∘ other."""
        return Pose3(
            self._rotation * other._rotation,
            self._translation + self._rotation.rotate(other._translation),
        )

    def __mul__(self, other: "Pose3") -> "Pose3":
        return self.compose(other)

    def inverse(self) -> "Pose3":
        R_inv = self._rotation.inverse()
        return Pose3(R_inv, -R_inv.rotate(self._translation))

    def between(self, other: "Pose3") -> "Pose3":
        """Relative pose self⁻¹ ∘ other."""
        return self.inverse().compose(other)

    def retract(self, xi: NDArray[np.float64]) -> "Pose3":
        """Apply the tangent update ξ = [δω, δt]."""
        xi = np.asarray(xi, dtype=float)
        if xi.shape != (6,):
            raise ValueError(f"xi must have shape (6,), got {xi.shape}")
        return Pose3(
            self._rotation.retract(xi[:3]),
            self._translation + self._rotation.rotate(xi[3:]),
        )

    def local(self, other: "Pose3") -> NDArray[np.float64]:
        """Tangent vector ξ with self.retract(ξ) == other."""
        R = self._rotation.matrix()
        return np.concatenate(
            [
                logmap(R.T @ other._rotation.matrix()),
                R.T @ (other._translation - self._translation),
            ]
        )

    def equals(self, other: "Pose3", tol: float = 1e-9) -> bool:
        return self._rotation.equals(other._rotation, tol) and bool(
            np.allclose(self._translation, other._translation, rtol=0.0, atol=tol)
        )

    def __repr__(self) -> str:
        return (
            f"Pose3(R={self._rotation!r}, "
            f"t={np.array2string(self._translation, precision=6)})"
        )
