"""
Numerical differentiation on manifolds.

Central finite differences of a vector-valued function with respect to a
vector or a manifold-valued argument. Manifold arguments are perturbed
through their own retraction (x.retract(δ)), so the resulting Jacobian is
expressed in the same tangent space as the analytic Jacobians of the
preintegration engine and the IMU factor.

Used to verify analytic Jacobians (see tests/navigation).
"""

from typing import Any, Callable, Optional

import numpy as np


def numerical_derivative(
    f: Callable[[Any], np.ndarray],
    x: Any,
    delta: float = 1e-5,
    dim: Optional[int] = None,
) -> np.ndarray:
    """
    Compute ∂f/∂x numerically using central differences.

    For a vector x the perturbation is additive, x + δ·eᵢ. For an object
    with a retract() method (Rot3, Pose3, ConstantBias) the perturbation is
    x.retract(δ·eᵢ), and the tangent dimension is taken from x.dim.

    Args:
        f: Function returning a 1-D array of length m.
        x: Point at which to differentiate (array or manifold element).
        delta: Finite-difference step.
        dim: Tangent dimension; overrides x.dim / len(x) if given.

    Returns:
        Jacobian, shape (m, n).

    Example:
        >>> J = numerical_derivative(lambda v: np.array([v[0] * v[1]]), np.array([2.0, 3.0]))
        >>> np.allclose(J, [[3.0, 2.0]])
        True
    """
    if hasattr(x, "retract"):
        n = dim if dim is not None else x.dim

        def perturb(d):
            return x.retract(d)

    else:
        x = np.asarray(x, dtype=float)
        n = dim if dim is not None else x.size

        def perturb(d):
            return x + d

    y0 = np.atleast_1d(np.asarray(f(x), dtype=float))
    J = np.zeros((y0.size, n))

    for i in range(n):
        d = np.zeros(n)
        d[i] = delta
        y_plus = np.atleast_1d(np.asarray(f(perturb(d)), dtype=float))
        y_minus = np.atleast_1d(np.asarray(f(perturb(-d)), dtype=float))

        # Central difference
        J[:, i] = (y_plus - y_minus) / (2.0 * delta)

    return J
