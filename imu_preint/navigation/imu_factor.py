"""
IMU factor: residual and Jacobians of a preintegrated IMU constraint.

The factor connects five variables
    pose_i (Pose3), vel_i (3,), pose_j (Pose3), vel_j (3,), bias (ConstantBias)
and compares the relative motion they imply with the preintegrated
measurements, after correcting the latter to first order for the current
bias estimate.

Residual (9,), ordered [position, velocity, rotation]:
    fp = R_iᵀ (p_j - p_i - v_i Δt + [Ω]× v_i Δt² - ½ g Δt²) - ΔP̃
    fv = R_iᵀ (v_j - v_i + 2 [Ω]× v_i Δt - g Δt) - ΔṼ
    fR = Log( Exp(φ)ᵀ R_iᵀ R_j ),   φ = Log(ΔR̃) - R_iᵀ Ω Δt

With the second-order Coriolis option the centrifugal terms
½ [Ω]×² p_i Δt² (position) and [Ω]×² p_i Δt (velocity) are added inside
the brackets.

Jacobian column conventions:
    Pose3: [δrotation (3), δtranslation (3)], R ⊕ δ = R Exp(δ), t ⊕ δ = t + R δ
    velocity: additive (3)
    ConstantBias: [δb_a (3), δb_g (3)]

References:
    Forster et al., IEEE TRO 2017
    - Eq. (45): residual errors
    - Appendix: Jacobians of the residuals
    Lupton & Sukkarieh, IEEE TRO 2012 (Coriolis terms)
"""

from typing import Dict, Hashable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from imu_preint.geometry import (
    Pose3,
    Rot3,
    right_jacobian,
    right_jacobian_inverse,
    skew,
)
from imu_preint.navigation.noise_model import GaussianNoiseModel
from imu_preint.navigation.preintegration import PreintegratedMeasurements
from imu_preint.navigation.types import ConstantBias

_ALL_JACOBIANS = (True, True, True, True, True)


class ImuFactorError(NamedTuple):
    """
    Residual and optional Jacobians of an IMU factor.

    Attributes:
        error: Residual [fp, fv, fR], shape (9,).
        H1: ∂r/∂pose_i, shape (9, 6), or None if not requested.
        H2: ∂r/∂vel_i, shape (9, 3), or None.
        H3: ∂r/∂pose_j, shape (9, 6), or None.
        H4: ∂r/∂vel_j, shape (9, 3), or None.
        H5: ∂r/∂bias, shape (9, 6), or None.
    """

    error: NDArray[np.float64]
    H1: Optional[NDArray[np.float64]] = None
    H2: Optional[NDArray[np.float64]] = None
    H3: Optional[NDArray[np.float64]] = None
    H4: Optional[NDArray[np.float64]] = None
    H5: Optional[NDArray[np.float64]] = None

    @property
    def jacobians(self) -> List[Optional[NDArray[np.float64]]]:
        return [self.H1, self.H2, self.H3, self.H4, self.H5]


def _as_vector3(name: str, value) -> NDArray[np.float64]:
    v = np.asarray(value, dtype=float)
    if v.shape != (3,):
        raise ValueError(f"invalid preintegration input: {name} must have shape (3,), got {v.shape}")
    return v


def predict(
    pim: PreintegratedMeasurements,
    pose_i: Pose3,
    vel_i: NDArray[np.float64],
    bias: ConstantBias,
    gravity: NDArray[np.float64],
    omega_coriolis: Optional[NDArray[np.float64]] = None,
    use_2nd_order_coriolis: bool = False,
) -> Tuple[Pose3, NDArray[np.float64]]:
    """
    Predict the state at keyframe j from the state at keyframe i.

    The prediction is the (pose_j, vel_j) for which the factor residual
    vanishes, so it is the natural initial guess for new keyframe variables.

    Args:
        pim: Preintegrated measurements of the interval.
        pose_i: Pose at keyframe i.
        vel_i: Navigation-frame velocity at keyframe i, shape (3,).
        bias: Current bias estimate.
        gravity: Gravity vector in the navigation frame, e.g. [0, 0, -9.81].
        omega_coriolis: Navigation-frame rotation rate Ω, shape (3,).
            Default: zero.
        use_2nd_order_coriolis: Include the centrifugal terms.

    Returns:
        Tuple (pose_j, vel_j).
    """
    vel_i = _as_vector3("vel_i", vel_i)
    gravity = _as_vector3("gravity", gravity)
    omega = np.zeros(3) if omega_coriolis is None else _as_vector3("omega_coriolis", omega_coriolis)

    dt = pim.delta_T_ij
    dt2 = dt * dt
    R_i = pose_i.rotation
    p_i = pose_i.translation
    Omega = skew(omega)

    theta_corrected, delta_V, delta_P = pim.bias_corrected_delta(bias)

    pos_j = p_i + vel_i * dt - Omega @ vel_i * dt2 + 0.5 * gravity * dt2 + R_i.rotate(delta_P)
    vel_j = vel_i - 2.0 * Omega @ vel_i * dt + gravity * dt + R_i.rotate(delta_V)
    if use_2nd_order_coriolis:
        centrifugal = Omega @ Omega @ p_i
        pos_j = pos_j - 0.5 * centrifugal * dt2
        vel_j = vel_j - centrifugal * dt

    phi = theta_corrected - R_i.unrotate(omega) * dt
    R_j = R_i * Rot3.expmap(phi)
    return Pose3(R_j, pos_j), vel_j


def compute_error_and_jacobians(
    pim: PreintegratedMeasurements,
    pose_i: Pose3,
    vel_i: NDArray[np.float64],
    pose_j: Pose3,
    vel_j: NDArray[np.float64],
    bias: ConstantBias,
    gravity: NDArray[np.float64],
    omega_coriolis: Optional[NDArray[np.float64]] = None,
    use_2nd_order_coriolis: bool = False,
    want: Sequence[bool] = _ALL_JACOBIANS,
) -> ImuFactorError:
    """
    Evaluate the IMU factor residual and the requested Jacobians.

    This is a pure function of its arguments: pim is only read, and only
    the Jacobians flagged in want are computed.

    Args:
        pim: Preintegrated measurements of the interval.
        pose_i, vel_i: State at keyframe i.
        pose_j, vel_j: State at keyframe j.
        bias: Current bias estimate (bias at keyframe i).
        gravity: Gravity vector in the navigation frame, shape (3,).
        omega_coriolis: Navigation-frame rotation rate Ω, shape (3,).
            Default: zero.
        use_2nd_order_coriolis: Include the centrifugal terms.
        want: Five flags selecting H1..H5. Default: all.

    Returns:
        ImuFactorError(error, H1, H2, H3, H4, H5); unrequested Jacobians
        are None.

    Raises:
        ValueError: If want does not hold five flags or a vector is malformed.
    """
    want = tuple(bool(w) for w in want)
    if len(want) != 5:
        raise ValueError(f"invalid preintegration input: want must hold 5 flags, got {len(want)}")
    vel_i = _as_vector3("vel_i", vel_i)
    vel_j = _as_vector3("vel_j", vel_j)
    gravity = _as_vector3("gravity", gravity)
    omega = np.zeros(3) if omega_coriolis is None else _as_vector3("omega_coriolis", omega_coriolis)

    dt = pim.delta_T_ij
    dt2 = dt * dt

    R_i = pose_i.rotation.matrix()
    R_j = pose_j.rotation.matrix()
    p_i = pose_i.translation
    p_j = pose_j.translation
    Omega = skew(omega)

    # Bias-corrected increments
    theta_corrected, delta_V, delta_P = pim.bias_corrected_delta(bias)
    bias_omega_incr = bias.gyroscope - pim.bias_hat.gyroscope

    # Position and velocity residuals
    pos_nav = p_j - p_i - vel_i * dt + Omega @ vel_i * dt2 - 0.5 * gravity * dt2
    vel_nav = vel_j - vel_i + 2.0 * Omega @ vel_i * dt - gravity * dt
    if use_2nd_order_coriolis:
        centrifugal = Omega @ Omega @ p_i
        pos_nav = pos_nav + 0.5 * centrifugal * dt2
        vel_nav = vel_nav + centrifugal * dt

    fp = R_i.T @ pos_nav - delta_P
    fv = R_i.T @ vel_nav - delta_V

    # Rotation residual, Coriolis-corrected
    omega_body = R_i.T @ omega
    phi = theta_corrected - omega_body * dt
    R_rel = R_i.T @ R_j
    E = Rot3.expmap(phi).transpose() @ R_rel
    fR = Rot3(E).logmap()

    error = np.concatenate([fp, fv, fR])
    if not any(want):
        return ImuFactorError(error)

    Jrinv_fR = right_jacobian_inverse(fR)
    Jr_phi = right_jacobian(phi)
    I3 = np.eye(3)
    Z3 = np.zeros((3, 3))

    H1 = H2 = H3 = H4 = H5 = None

    if want[0]:
        # pose_i: [δrotation, δtranslation]
        dfp_dt = -I3
        dfv_dt = Z3
        if use_2nd_order_coriolis:
            dfp_dt = dfp_dt + 0.5 * R_i.T @ Omega @ Omega @ R_i * dt2
            dfv_dt = R_i.T @ Omega @ Omega @ R_i * dt
        dfR_drot = Jrinv_fR @ (-R_rel.T + dt * E.T @ Jr_phi @ skew(omega_body))
        H1 = np.block(
            [
                [skew(fp + delta_P), dfp_dt],
                [skew(fv + delta_V), dfv_dt],
                [dfR_drot, Z3],
            ]
        )

    if want[1]:
        H2 = np.vstack(
            [
                R_i.T @ (-I3 * dt + Omega * dt2),
                R_i.T @ (-I3 + 2.0 * Omega * dt),
                Z3,
            ]
        )

    if want[2]:
        H3 = np.block(
            [
                [Z3, R_rel],
                [Z3, Z3],
                [Jrinv_fR, Z3],
            ]
        )

    if want[3]:
        H4 = np.vstack([Z3, R_i.T, Z3])

    if want[4]:
        psi = pim.del_R_del_bias_omega @ bias_omega_incr
        dfR_dbg = (
            -Jrinv_fR
            @ E.T
            @ Jr_phi
            @ right_jacobian_inverse(theta_corrected)
            @ right_jacobian(psi)
            @ pim.del_R_del_bias_omega
        )
        H5 = np.block(
            [
                [-pim.del_P_del_bias_acc, -pim.del_P_del_bias_omega],
                [-pim.del_V_del_bias_acc, -pim.del_V_del_bias_omega],
                [Z3, dfR_dbg],
            ]
        )

    return ImuFactorError(error, H1, H2, H3, H4, H5)


class ImuFactor:
    """
    Five-way factor holding a finished preintegration.

    The factor keeps its own copy of the measurements, so the caller may
    reset and reuse its PreintegratedMeasurements for the next interval.
    The noise model is the Gaussian with covariance preint_meas_cov.

    Attributes:
        variable_ids: Keys [pose_i, vel_i, pose_j, vel_j, bias].
        gravity: Gravity vector in the navigation frame, shape (3,).
        omega_coriolis: Navigation-frame rotation rate, shape (3,).
        use_2nd_order_coriolis: Include the centrifugal terms.
        noise_model: GaussianNoiseModel of the residual.

    Example:
        >>> factor = ImuFactor(0, 1, 2, 3, 4, pim, gravity=np.array([0.0, 0.0, -9.81]))
        >>> r, J = factor.linearize(values)
    """

    def __init__(
        self,
        pose_i: Hashable,
        vel_i: Hashable,
        pose_j: Hashable,
        vel_j: Hashable,
        bias: Hashable,
        pim: PreintegratedMeasurements,
        gravity: NDArray[np.float64],
        omega_coriolis: Optional[NDArray[np.float64]] = None,
        use_2nd_order_coriolis: bool = False,
    ):
        """
        Initialize ImuFactor.

        Args:
            pose_i, vel_i, pose_j, vel_j, bias: Variable keys.
            pim: Finished preintegration; copied.
            gravity: Gravity vector in the navigation frame, shape (3,).
            omega_coriolis: Navigation-frame rotation rate. Default: zero.
            use_2nd_order_coriolis: Include the centrifugal terms.

        Raises:
            ValueError: If preint_meas_cov is not positive definite (for
                example an interval with no samples).
        """
        self.variable_ids = [pose_i, vel_i, pose_j, vel_j, bias]
        self._pim = pim.copy()
        self.gravity = _as_vector3("gravity", gravity).copy()
        self.omega_coriolis = (
            np.zeros(3)
            if omega_coriolis is None
            else _as_vector3("omega_coriolis", omega_coriolis).copy()
        )
        self.use_2nd_order_coriolis = use_2nd_order_coriolis
        self.noise_model = GaussianNoiseModel.from_covariance(self._pim.preint_meas_cov)

    @property
    def preintegrated_measurements(self) -> PreintegratedMeasurements:
        return self._pim

    def evaluate_error(
        self,
        pose_i: Pose3,
        vel_i: NDArray[np.float64],
        pose_j: Pose3,
        vel_j: NDArray[np.float64],
        bias: ConstantBias,
        want: Sequence[bool] = _ALL_JACOBIANS,
    ) -> ImuFactorError:
        """Unwhitened residual and requested Jacobians at the given values."""
        return compute_error_and_jacobians(
            self._pim,
            pose_i,
            vel_i,
            pose_j,
            vel_j,
            bias,
            self.gravity,
            self.omega_coriolis,
            self.use_2nd_order_coriolis,
            want,
        )

    def compute_error(self, variables: Dict[Hashable, object]) -> float:
        """
        Squared Mahalanobis error rᵀ Σ⁻¹ r.

        Args:
            variables: Mapping from key to value (Pose3, velocity array or
                ConstantBias).

        Returns:
            Squared error (scalar).
        """
        x_vars = [variables[vid] for vid in self.variable_ids]
        r = self.evaluate_error(*x_vars, want=(False,) * 5).error
        return self.noise_model.squared_mahalanobis(r)

    def linearize(
        self, variables: Dict[Hashable, object]
    ) -> Tuple[NDArray[np.float64], List[NDArray[np.float64]]]:
        """
        Linearize the factor around current variable values.

        Args:
            variables: Mapping from key to value.

        Returns:
            Tuple of (whitened residual, whitened Jacobians) with one
            Jacobian per key in variable_ids order.
        """
        x_vars = [variables[vid] for vid in self.variable_ids]
        result = self.evaluate_error(*x_vars)
        r = self.noise_model.whiten(result.error)
        J = [self.noise_model.whiten_jacobian(H) for H in result.jacobians]
        return r, J

    def equals(self, other: "ImuFactor", tol: float = 1e-9) -> bool:
        return (
            isinstance(other, ImuFactor)
            and self.variable_ids == other.variable_ids
            and self.use_2nd_order_coriolis == other.use_2nd_order_coriolis
            and bool(np.allclose(self.gravity, other.gravity, rtol=0.0, atol=tol))
            and bool(np.allclose(self.omega_coriolis, other.omega_coriolis, rtol=0.0, atol=tol))
            and self._pim.equals(other._pim, tol)
        )

    def __repr__(self) -> str:
        keys = ",".join(str(k) for k in self.variable_ids)
        return (
            f"ImuFactor({keys}, gravity={np.array2string(self.gravity, precision=4)}, "
            f"omegaCoriolis={np.array2string(self.omega_coriolis, precision=4)}, "
            f"use2ndOrderCoriolis={self.use_2nd_order_coriolis}, {self._pim!r})"
        )
