"""
Gaussian noise model for IMU factor residuals.

A factor with residual r and covariance Σ contributes rᵀ Σ⁻¹ r to the least
squares cost. Writing the information matrix as Λ = Σ⁻¹ = Rᵀ R (R upper
triangular), the cost becomes ||R r||², so an optimizer only needs the
whitened residual R r and whitened Jacobians R H.

R is obtained without forming Σ⁻¹ explicitly: with the lower Cholesky
factor Σ = L Lᵀ, R = L⁻¹ (computed by a triangular solve) satisfies
Rᵀ R = L⁻ᵀ L⁻¹ = Σ⁻¹. This R is lower triangular; since only the product
Rᵀ R matters, any square root of Λ whitens correctly.
"""

import numpy as np
from numpy.typing import NDArray
from scipy import linalg


class GaussianNoiseModel:
    """
    Zero-mean Gaussian noise with full covariance.

    Attributes:
        dim: Residual dimension.

    Example:
        >>> model = GaussianNoiseModel.from_covariance(np.diag([4.0, 1.0]))
        >>> model.whiten(np.array([2.0, 1.0]))
        array([1., 1.])
    """

    def __init__(self, covariance: NDArray[np.float64], sqrt_information: NDArray[np.float64]):
        self._covariance = covariance
        self._sqrt_information = sqrt_information
        self.dim = covariance.shape[0]

    @classmethod
    def from_covariance(cls, covariance: NDArray[np.float64]) -> "GaussianNoiseModel":
        """
        Build a noise model from a covariance matrix.

        Args:
            covariance: Symmetric positive definite matrix, shape (n, n).

        Returns:
            GaussianNoiseModel.

        Raises:
            ValueError: If the covariance is not square, not finite, not
                symmetric, or not positive definite (for example the zero
                covariance of an empty preintegration interval).
        """
        Sigma = np.array(covariance, dtype=float)
        if Sigma.ndim != 2 or Sigma.shape[0] != Sigma.shape[1]:
            raise ValueError(f"covariance must be square, got shape {Sigma.shape}")
        if not np.all(np.isfinite(Sigma)):
            raise ValueError("covariance must be finite")
        scale = max(1.0, float(np.max(np.abs(Sigma))))
        if not np.allclose(Sigma, Sigma.T, rtol=0.0, atol=1e-9 * scale):
            raise ValueError("covariance must be symmetric")
        Sigma = 0.5 * (Sigma + Sigma.T)

        try:
            L = linalg.cholesky(Sigma, lower=True)
        except linalg.LinAlgError as exc:
            raise ValueError(f"covariance is not positive definite: {exc}") from exc

        sqrt_information = linalg.solve_triangular(L, np.eye(Sigma.shape[0]), lower=True)
        return cls(Sigma, sqrt_information)

    @property
    def covariance(self) -> NDArray[np.float64]:
        return self._covariance.copy()

    @property
    def sqrt_information(self) -> NDArray[np.float64]:
        """Square root R of the information matrix, Rᵀ R = Σ⁻¹."""
        return self._sqrt_information.copy()

    @property
    def information(self) -> NDArray[np.float64]:
        """Information matrix Λ = Σ⁻¹."""
        return self._sqrt_information.T @ self._sqrt_information

    def whiten(self, r: NDArray[np.float64]) -> NDArray[np.float64]:
        """Whitened residual R r."""
        return self._sqrt_information @ np.asarray(r, dtype=float)

    def whiten_jacobian(self, H: NDArray[np.float64]) -> NDArray[np.float64]:
        """Whitened Jacobian R H."""
        return self._sqrt_information @ np.asarray(H, dtype=float)

    def squared_mahalanobis(self, r: NDArray[np.float64]) -> float:
        """rᵀ Σ⁻¹ r."""
        w = self.whiten(r)
        return float(w @ w)

    def equals(self, other: "GaussianNoiseModel", tol: float = 1e-9) -> bool:
        return self.dim == other.dim and bool(
            np.allclose(self._covariance, other._covariance, rtol=0.0, atol=tol)
        )

    def __repr__(self) -> str:
        return f"GaussianNoiseModel(dim={self.dim}, sigmas={np.array2string(np.sqrt(np.diag(self._covariance)), precision=4)})"
