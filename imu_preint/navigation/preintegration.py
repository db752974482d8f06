"""
On-manifold IMU preintegration.

This module implements the preintegration engine: it folds raw IMU samples
between two keyframes i and j into a single relative-motion increment
    ΔR_ij ∈ SO(3),  ΔV_ij ∈ R³,  ΔP_ij ∈ R³,  Δt_ij
expressed in the body frame at time i, together with
    - the 9x9 covariance of the stacked increment [δP, δV, δθ], and
    - the Jacobians of the increment with respect to the bias, used to
      correct the increment to first order when the bias estimate moves
      away from the linearization point bias_hat.

Per-sample recursion (a, ω bias-corrected, body frame):
    ΔR_{k+1} = ΔR_k Exp(ω Δt)
    ΔV_{k+1} = ΔV_k + ΔR_k a Δt
    ΔP_{k+1} = ΔP_k + ΔV_k Δt  (+ ½ ΔR_k a Δt² in second-order mode)
    Σ_{k+1}  = F Σ_k Fᵀ + Q Δt

Every Jacobian of a step is evaluated at the state *before* that step, so
the bias Jacobians and the rotation parameters used by F are captured
before the increment is updated.

References:
    Forster et al., "On-Manifold Preintegration for Real-Time
    Visual-Inertial Odometry", IEEE TRO 2017
    - Eqs. (33)-(35): preintegrated measurement recursion
    - Eq. (63): covariance propagation
    - Eq. (69): bias Jacobian recursion
    Lupton & Sukkarieh, "Visual-Inertial-Aided Navigation for High-Dynamic
    Motion in Built Environments Without Initial Conditions", IEEE TRO 2012
"""

import copy
import warnings
from typing import NamedTuple, Optional, Tuple, Union

import numpy as np
from numpy.typing import NDArray

from imu_preint.geometry import (
    Pose3,
    Rot3,
    expmap,
    right_jacobian,
    right_jacobian_derivative,
    right_jacobian_inverse,
    skew,
)
from imu_preint.navigation.bias_correction import (
    correct_measurements,
    measurement_bias_jacobians,
)
from imu_preint.navigation.types import ConstantBias, PreintegrationParams

# Rotation increment per sample [rad] above which the first-order
# covariance propagation loses accuracy.
MAX_ROTATION_INCREMENT = 0.5


class IntegrationJacobians(NamedTuple):
    """
    Jacobians of one integration step, for verification.

    Attributes:
        F: ∂[P, V, θ]_{k+1} / ∂[P, V, θ]_k, shape (9, 9).
        G: Noise-injection Jacobian mapping [integration, accelerometer,
           gyroscope] noise onto the increment, shape (9, 9).
    """

    F: NDArray[np.float64]
    G: NDArray[np.float64]


class TangentUpdate(NamedTuple):
    """Result of update_estimate: ζ⁺ and its Jacobians."""

    zeta: NDArray[np.float64]
    H_zeta: NDArray[np.float64]
    H_acc: NDArray[np.float64]
    H_omega: NDArray[np.float64]


def _check_sample(name: str, value) -> NDArray[np.float64]:
    v = np.asarray(value, dtype=float)
    if v.shape != (3,):
        raise ValueError(
            f"invalid preintegration input: {name} must have shape (3,), got {v.shape}"
        )
    if not np.all(np.isfinite(v)):
        raise ValueError(f"invalid preintegration input: {name} must be finite, got {v}")
    return v


def _check_delta_t(delta_t: float) -> float:
    dt = float(delta_t)
    if not np.isfinite(dt) or dt <= 0.0:
        raise ValueError(
            f"invalid preintegration input: delta_t must be positive and finite, got {delta_t}"
        )
    return dt


class PreintegratedMeasurements:
    """
    Preintegrated IMU measurements between two keyframes.

    One instance is owned by a single writer while samples of an interval
    are integrated, in chronological order. Once the interval is closed the
    instance is handed to an ImuFactor (which keeps a copy) and treated as
    read-only. Call reset_integration() to start the next interval.

    State (all in the body frame at keyframe i):
        delta_R_ij, delta_V_ij, delta_P_ij, delta_T_ij
        preint_meas_cov: covariance of [δP, δV, δθ], shape (9, 9)
        del_R_del_bias_omega, del_V_del_bias_acc, del_V_del_bias_omega,
        del_P_del_bias_acc, del_P_del_bias_omega: bias Jacobians (3, 3)

    Example:
        >>> params = PreintegrationParams(
        ...     accelerometer_covariance=1e-2 * np.eye(3),
        ...     gyroscope_covariance=1e-4 * np.eye(3),
        ...     integration_covariance=1e-8 * np.eye(3),
        ... )
        >>> pim = PreintegratedMeasurements(params)
        >>> for _ in range(100):
        ...     pim.integrate_measurement(np.array([0.0, 0.0, 9.81]), np.zeros(3), 0.01)
        >>> round(pim.delta_T_ij, 6)
        1.0
    """

    def __init__(
        self,
        params: PreintegrationParams,
        bias_hat: Optional[ConstantBias] = None,
    ):
        """
        Create an empty (identity) preintegration.

        Args:
            params: Noise covariances and integration options.
            bias_hat: Bias linearization point. Default: zero bias.
        """
        self._params = params
        self._bias_hat = bias_hat if bias_hat is not None else ConstantBias()
        self._measurement_covariance = params.measurement_covariance
        self.reset_integration()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset_integration(self, bias_hat: Optional[ConstantBias] = None) -> None:
        """
        Return to the identity increment with zero covariance.

        Args:
            bias_hat: New bias linearization point. If None, the current one
                is kept.
        """
        if bias_hat is not None:
            self._bias_hat = bias_hat

        self._delta_R_ij = Rot3.identity()
        self._delta_V_ij = np.zeros(3)
        self._delta_P_ij = np.zeros(3)
        self._delta_T_ij = 0.0

        self._del_R_del_bias_omega = np.zeros((3, 3))
        self._del_V_del_bias_acc = np.zeros((3, 3))
        self._del_V_del_bias_omega = np.zeros((3, 3))
        self._del_P_del_bias_acc = np.zeros((3, 3))
        self._del_P_del_bias_omega = np.zeros((3, 3))

        self._preint_meas_cov = np.zeros((9, 9))

    def copy(self) -> "PreintegratedMeasurements":
        """Independent deep copy (used when a factor takes ownership)."""
        return copy.deepcopy(self)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def params(self) -> PreintegrationParams:
        return self._params

    @property
    def bias_hat(self) -> ConstantBias:
        return self._bias_hat

    @property
    def delta_R_ij(self) -> Rot3:
        return self._delta_R_ij

    @property
    def delta_V_ij(self) -> NDArray[np.float64]:
        return self._delta_V_ij.copy()

    @property
    def delta_P_ij(self) -> NDArray[np.float64]:
        return self._delta_P_ij.copy()

    @property
    def delta_T_ij(self) -> float:
        return self._delta_T_ij

    @property
    def preint_meas_cov(self) -> NDArray[np.float64]:
        """Covariance of [δP, δV, δθ], shape (9, 9)."""
        return self._preint_meas_cov.copy()

    @property
    def measurement_covariance(self) -> NDArray[np.float64]:
        return self._measurement_covariance.copy()

    @property
    def del_R_del_bias_omega(self) -> NDArray[np.float64]:
        return self._del_R_del_bias_omega.copy()

    @property
    def del_V_del_bias_acc(self) -> NDArray[np.float64]:
        return self._del_V_del_bias_acc.copy()

    @property
    def del_V_del_bias_omega(self) -> NDArray[np.float64]:
        return self._del_V_del_bias_omega.copy()

    @property
    def del_P_del_bias_acc(self) -> NDArray[np.float64]:
        return self._del_P_del_bias_acc.copy()

    @property
    def del_P_del_bias_omega(self) -> NDArray[np.float64]:
        return self._del_P_del_bias_omega.copy()

    def theta_R_ij(self) -> NDArray[np.float64]:
        """Rotation vector Log(ΔR_ij)."""
        return self._delta_R_ij.logmap()

    def bias_corrected_delta(
        self, bias: ConstantBias
    ) -> Tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]]:
        """
        Increment corrected to first order for a new bias estimate.

        With δb_a = b_a - b̂_a and δb_g = b_g - b̂_g (Forster Eq. 44):
            ΔR̃ = ΔR Exp(∂R/∂b_g δb_g)
            ΔṼ = ΔV + ∂V/∂b_a δb_a + ∂V/∂b_g δb_g
            ΔP̃ = ΔP + ∂P/∂b_a δb_a + ∂P/∂b_g δb_g

        Args:
            bias: Current bias estimate.

        Returns:
            Tuple (theta_corrected, delta_V_corrected, delta_P_corrected)
            where theta_corrected = Log(ΔR̃).
        """
        bias_acc_incr = bias.accelerometer - self._bias_hat.accelerometer
        bias_omega_incr = bias.gyroscope - self._bias_hat.gyroscope

        theta = self._delta_R_ij.retract(self._del_R_del_bias_omega @ bias_omega_incr).logmap()
        delta_V = (
            self._delta_V_ij
            + self._del_V_del_bias_acc @ bias_acc_incr
            + self._del_V_del_bias_omega @ bias_omega_incr
        )
        delta_P = (
            self._delta_P_ij
            + self._del_P_del_bias_acc @ bias_acc_incr
            + self._del_P_del_bias_omega @ bias_omega_incr
        )
        return theta, delta_V, delta_P

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------

    def integrate_measurement(
        self,
        measured_acc: NDArray[np.float64],
        measured_omega: NDArray[np.float64],
        delta_t: float,
        body_P_sensor: Optional[Pose3] = None,
        return_jacobians: bool = False,
    ) -> Optional[IntegrationJacobians]:
        """
        Add a single IMU sample to the preintegration.

        Args:
            measured_acc: Raw specific force in the sensor frame, shape (3,).
            measured_omega: Raw angular velocity in the sensor frame, shape (3,).
            delta_t: Sample duration [s], must be > 0.
            body_P_sensor: Sensor pose in the body frame for this sample.
                Default: params.body_P_sensor.
            return_jacobians: If True, also return the step Jacobians F, G.

        Returns:
            IntegrationJacobians if return_jacobians, else None.

        Raises:
            ValueError: If delta_t is not positive or a reading is malformed.
        """
        measured_acc = _check_sample("measured_acc", measured_acc)
        measured_omega = _check_sample("measured_omega", measured_omega)
        delta_t = _check_delta_t(delta_t)
        if body_P_sensor is None:
            body_P_sensor = self._params.body_P_sensor

        corrected_acc, corrected_omega = correct_measurements(
            measured_acc, measured_omega, self._bias_hat, body_P_sensor
        )

        # rotation vector of the increment measured by this sample
        theta_incr = corrected_omega * delta_t
        if np.linalg.norm(theta_incr) > MAX_ROTATION_INCREMENT:
            warnings.warn(
                f"Rotation increment of {np.linalg.norm(theta_incr):.3f} rad in a single "
                f"sample exceeds {MAX_ROTATION_INCREMENT} rad; first-order covariance "
                "propagation is inaccurate at this sample rate.",
                RuntimeWarning,
                stacklevel=2,
            )
        R_incr = Rot3.expmap(theta_incr)
        Jr_theta_incr = right_jacobian(theta_incr)

        # Jacobians and covariance use the state before this sample
        self._update_preintegrated_jacobians(
            corrected_acc,
            Jr_theta_incr,
            R_incr,
            delta_t,
            measurement_bias_jacobians(corrected_omega, body_P_sensor),
        )

        theta_i = self.theta_R_ij()
        R_i = self._delta_R_ij.matrix()
        Jr_theta_i = right_jacobian(theta_i)

        self._update_preintegrated_measurements(corrected_acc, R_incr, delta_t)

        theta_j = self.theta_R_ij()
        Jrinv_theta_j = right_jacobian_inverse(theta_j)

        H_vel_angles = -R_i @ skew(corrected_acc) @ Jr_theta_i * delta_t
        H_angles_angles = Jrinv_theta_j @ R_incr.transpose() @ Jr_theta_i

        #   pos          vel              angle
        F = np.eye(9)
        F[0:3, 3:6] = np.eye(3) * delta_t
        F[3:6, 6:9] = H_vel_angles
        F[6:9, 6:9] = H_angles_angles
        if self._params.use_2nd_order_integration:
            F[0:3, 6:9] = 0.5 * H_vel_angles * delta_t

        # Continuous-time densities become discrete increments through Δt:
        # G Q_d Gᵀ ≈ Q_c Δt
        self._preint_meas_cov = (
            F @ self._preint_meas_cov @ F.T + self._measurement_covariance * delta_t
        )

        if not return_jacobians:
            return None

        #   intNoise        accNoise       omegaNoise
        G = np.zeros((9, 9))
        G[0:3, 0:3] = np.eye(3) * delta_t
        G[3:6, 3:6] = R_i * delta_t
        G[6:9, 6:9] = Jrinv_theta_j @ Jr_theta_incr * delta_t
        return IntegrationJacobians(F=F, G=G)

    def integrate_measurements(
        self,
        measured_accs: NDArray[np.float64],
        measured_omegas: NDArray[np.float64],
        delta_ts: Union[float, NDArray[np.float64]],
    ) -> None:
        """
        Integrate a batch of samples in order.

        Args:
            measured_accs: Raw specific forces, shape (N, 3).
            measured_omegas: Raw angular velocities, shape (N, 3).
            delta_ts: Scalar sample duration or per-sample durations (N,).

        Raises:
            ValueError: If array shapes do not match.
        """
        accs = np.atleast_2d(np.asarray(measured_accs, dtype=float))
        omegas = np.atleast_2d(np.asarray(measured_omegas, dtype=float))
        if accs.shape != omegas.shape or accs.shape[1] != 3:
            raise ValueError(
                "invalid preintegration input: measured_accs and measured_omegas must "
                f"both have shape (N, 3), got {accs.shape} and {omegas.shape}"
            )
        dts = np.broadcast_to(np.asarray(delta_ts, dtype=float), (accs.shape[0],))

        for acc, omega, dt in zip(accs, omegas, dts):
            self.integrate_measurement(acc, omega, dt)

    def _update_preintegrated_jacobians(
        self,
        corrected_acc: NDArray[np.float64],
        Jr_theta_incr: NDArray[np.float64],
        R_incr: Rot3,
        delta_t: float,
        bias_jacobians: Tuple[NDArray[np.float64], NDArray[np.float64], NDArray[np.float64]],
    ) -> None:
        """
        Bias Jacobian recursion (Forster Eq. 69), evaluated at ΔR_k.

        bias_jacobians holds the derivatives of the corrected body-frame
        sample (∂a/∂b_a, ∂a/∂b_g, ∂ω/∂b_g). Without a sensor pose they
        reduce to (-I, 0, -I).
        """
        acc_H_bias_acc, acc_H_bias_omega, omega_H_bias_omega = bias_jacobians
        dRij = self._delta_R_ij.matrix()
        vel_incr_H_bias_acc = dRij @ acc_H_bias_acc * delta_t
        vel_incr_H_bias_omega = (
            dRij @ (acc_H_bias_omega - skew(corrected_acc) @ self._del_R_del_bias_omega) * delta_t
        )

        if self._params.use_2nd_order_integration:
            self._del_P_del_bias_acc += delta_t * (
                self._del_V_del_bias_acc + 0.5 * vel_incr_H_bias_acc
            )
            self._del_P_del_bias_omega += delta_t * (
                self._del_V_del_bias_omega + 0.5 * vel_incr_H_bias_omega
            )
        else:
            self._del_P_del_bias_acc += self._del_V_del_bias_acc * delta_t
            self._del_P_del_bias_omega += self._del_V_del_bias_omega * delta_t

        self._del_V_del_bias_acc += vel_incr_H_bias_acc
        self._del_V_del_bias_omega += vel_incr_H_bias_omega
        self._del_R_del_bias_omega = (
            R_incr.transpose() @ self._del_R_del_bias_omega
            + Jr_theta_incr @ omega_H_bias_omega * delta_t
        )

    def _update_preintegrated_measurements(
        self,
        corrected_acc: NDArray[np.float64],
        R_incr: Rot3,
        delta_t: float,
    ) -> None:
        """Advance ΔP, ΔV, ΔR and Δt by one sample."""
        acc_nav = self._delta_R_ij.rotate(corrected_acc) * delta_t

        if self._params.use_2nd_order_integration:
            self._delta_P_ij = self._delta_P_ij + self._delta_V_ij * delta_t + 0.5 * acc_nav * delta_t
        else:
            self._delta_P_ij = self._delta_P_ij + self._delta_V_ij * delta_t
        self._delta_V_ij = self._delta_V_ij + acc_nav
        self._delta_R_ij = self._delta_R_ij * R_incr
        self._delta_T_ij += delta_t

    # ------------------------------------------------------------------
    # Comparison and printing
    # ------------------------------------------------------------------

    def equals(self, other: "PreintegratedMeasurements", tol: float = 1e-9) -> bool:
        """Compare state, Jacobians, covariance and configuration within tol."""

        def close(a, b):
            return bool(np.allclose(a, b, rtol=0.0, atol=tol))

        return (
            self._params.equals(other._params, tol)
            and self._bias_hat.equals(other._bias_hat, tol)
            and abs(self._delta_T_ij - other._delta_T_ij) <= tol
            and self._delta_R_ij.equals(other._delta_R_ij, tol)
            and close(self._delta_V_ij, other._delta_V_ij)
            and close(self._delta_P_ij, other._delta_P_ij)
            and close(self._del_R_del_bias_omega, other._del_R_del_bias_omega)
            and close(self._del_V_del_bias_acc, other._del_V_del_bias_acc)
            and close(self._del_V_del_bias_omega, other._del_V_del_bias_omega)
            and close(self._del_P_del_bias_acc, other._del_P_del_bias_acc)
            and close(self._del_P_del_bias_omega, other._del_P_del_bias_omega)
            and close(self._preint_meas_cov, other._preint_meas_cov)
        )

    def __repr__(self) -> str:
        return (
            "PreintegratedMeasurements("
            f"deltaTij={self._delta_T_ij:.6f}, "
            f"deltaRij={self._delta_R_ij!r}, "
            f"deltaVij={np.array2string(self._delta_V_ij, precision=6)}, "
            f"deltaPij={np.array2string(self._delta_P_ij, precision=6)}, "
            f"biasHat={self._bias_hat!r},\n"
            f"  measurementCovariance=\n{np.array2string(self._measurement_covariance, precision=6)},\n"
            f"  preintMeasCov=\n{np.array2string(self._preint_meas_cov, precision=6)})"
        )


def update_estimate(
    acc: NDArray[np.float64],
    omega: NDArray[np.float64],
    delta_t: float,
    zeta: NDArray[np.float64],
) -> TangentUpdate:
    """
    One preintegration step in tangent-space coordinates, with Jacobians.

    The increment is parametrized by ζ = [θ, p, v] with ΔR = Exp(θ). For
    bias-corrected body-frame a and ω:
        θ⁺ = θ + Jr(θ)⁻¹ ω Δt
        p⁺ = p + v Δt + ½ Exp(θ) a Δt²
        v⁺ = v + Exp(θ) a Δt

    Because ζ is a plain vector, ∂ζ⁺/∂ζ is an ordinary Jacobian and the
    whole step can be verified with finite differences.

    Args:
        acc: Bias-corrected specific force, shape (3,).
        omega: Bias-corrected angular velocity, shape (3,).
        delta_t: Sample duration [s], must be > 0.
        zeta: Current tangent vector [θ, p, v], shape (9,), |θ| < π.

    Returns:
        TangentUpdate(zeta, H_zeta (9, 9), H_acc (9, 3), H_omega (9, 3)).

    Raises:
        ValueError: If delta_t is not positive or an input is malformed.
    """
    acc = _check_sample("acc", acc)
    omega = _check_sample("omega", omega)
    delta_t = _check_delta_t(delta_t)
    zeta = np.asarray(zeta, dtype=float)
    if zeta.shape != (9,):
        raise ValueError(
            f"invalid preintegration input: zeta must have shape (9,), got {zeta.shape}"
        )

    theta = zeta[0:3]
    position = zeta[3:6]
    velocity = zeta[6:9]

    Jr = right_jacobian(theta)
    invJr = right_jacobian_inverse(theta)

    # angular velocity mapped back to the tangent space at θ
    w_tangent = invJr @ omega
    R = expmap(theta)
    a_nav = R @ acc
    dt22 = 0.5 * delta_t * delta_t

    zeta_plus = np.concatenate(
        [
            theta + w_tangent * delta_t,
            position + velocity * delta_t + a_nav * dt22,
            velocity + a_nav * delta_t,
        ]
    )

    w_tangent_H_theta = -invJr @ right_jacobian_derivative(theta, w_tangent)
    # exact derivative of Exp(θ) a with respect to θ
    a_nav_H_theta = R @ skew(-acc) @ Jr

    H_zeta = np.eye(9)
    H_zeta[0:3, 0:3] += w_tangent_H_theta * delta_t
    H_zeta[3:6, 0:3] = a_nav_H_theta * dt22
    H_zeta[3:6, 6:9] = np.eye(3) * delta_t
    H_zeta[6:9, 0:3] = a_nav_H_theta * delta_t

    H_acc = np.zeros((9, 3))
    H_acc[3:6] = R * dt22
    H_acc[6:9] = R * delta_t

    H_omega = np.zeros((9, 3))
    H_omega[0:3] = invJr * delta_t

    return TangentUpdate(zeta=zeta_plus, H_zeta=H_zeta, H_acc=H_acc, H_omega=H_omega)
