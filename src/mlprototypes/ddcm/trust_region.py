"""
Trust-region building blocks with BFGS Hessian updates.

The quadratic model around the current parameter x is

    m(p) = f(x) + gᵀp + ½ pᵀBp,   ||p|| <= Δ

and every step function below returns the predicted reduction
m(0) - m(p) = -(gᵀp + ½ pᵀBp) alongside the step itself.

Functions:
1. dogleg_direction: dogleg approximation to the subproblem
2. constrained_direction: dogleg step that keeps selected entries positive
3. update_radius: standard radius update from the agreement ratio ρ
4. bfgs_update: BFGS update of the Hessian approximation B

Reference: Nocedal & Wright, Numerical Optimization, Ch. 4 and 6.
"""

import numpy as np
from dataclasses import dataclass
from typing import Sequence, Tuple


@dataclass
class TrustRegionOptions:
    """
    Settings for the adaptive trust-region estimator.

    Attributes:
        initial_radius: Starting trust radius Δ0
        max_radius: Upper bound on Δ
        eta: Acceptance threshold on the agreement ratio ρ
        gradient_tol: Stop once ||g|| falls below this on the full sample
        max_iter: Maximum number of trust-region iterations
        shrink_factor: Radius multiplier applied on a constraint violation
        max_shrinks: Constraint-driven radius shrinks per iteration
        curvature_tol: Skip the BFGS update when yᵀs is below this (relative)
    """
    initial_radius: float = 0.01
    max_radius: float = 10.0
    eta: float = 0.2
    gradient_tol: float = 1e-3
    max_iter: int = 50
    shrink_factor: float = 0.75
    max_shrinks: int = 50
    curvature_tol: float = 1e-10

    def __post_init__(self):
        if self.initial_radius <= 0:
            raise ValueError(f"initial_radius must be positive, got {self.initial_radius}")
        if self.max_radius < self.initial_radius:
            raise ValueError(
                f"max_radius ({self.max_radius}) must be >= initial_radius ({self.initial_radius})"
            )
        if not 0 <= self.eta < 0.25:
            raise ValueError(f"eta must be in [0, 0.25), got {self.eta}")
        if self.gradient_tol <= 0:
            raise ValueError(f"gradient_tol must be positive, got {self.gradient_tol}")
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be positive, got {self.max_iter}")
        if not 0 < self.shrink_factor < 1:
            raise ValueError(f"shrink_factor must be in (0, 1), got {self.shrink_factor}")


def predicted_reduction(gradient: np.ndarray, hessian: np.ndarray, p: np.ndarray) -> float:
    """m(0) - m(p) for the quadratic model."""
    return float(-(gradient @ p + 0.5 * p @ hessian @ p))


def _is_positive_definite(hessian: np.ndarray) -> bool:
    try:
        np.linalg.cholesky(hessian)
    except np.linalg.LinAlgError:
        return False
    return True


def _cauchy_point(radius: float, gradient: np.ndarray, hessian: np.ndarray) -> np.ndarray:
    g_norm = np.linalg.norm(gradient)
    gBg = gradient @ hessian @ gradient
    if gBg <= 0:
        tau = 1.0
    else:
        tau = min(g_norm ** 3 / (radius * gBg), 1.0)
    return -tau * radius * gradient / g_norm


def dogleg_direction(
    radius: float,
    gradient: np.ndarray,
    hessian: np.ndarray
) -> Tuple[np.ndarray, float]:
    """
    Dogleg step for the trust-region subproblem.

    - B positive definite and Newton step inside the region: Newton step
    - B positive definite otherwise: dogleg path from the unconstrained
      steepest-descent minimiser toward the Newton point, cut at ||p|| = Δ
    - B not positive definite: Cauchy point

    Parameters:
        radius: Trust radius Δ > 0
        gradient: g (k,)
        hessian: B (k × k), symmetric

    Returns:
        p: Step (k,)
        delta_m: Predicted reduction m(0) - m(p) >= 0

    Example:
        >>> g = np.array([1.0, 0.0])
        >>> B = np.eye(2)
        >>> p, dm = dogleg_direction(10.0, g, B)   # Newton step
        >>> p
        array([-1., -0.])
        >>> dm
        0.5
    """
    if radius <= 0:
        raise ValueError(f"radius must be positive, got {radius}")
    gradient = np.asarray(gradient, dtype=float)
    hessian = np.asarray(hessian, dtype=float)

    g_norm = np.linalg.norm(gradient)
    if g_norm == 0:
        p = np.zeros_like(gradient)
        return p, 0.0

    if not _is_positive_definite(hessian):
        p = _cauchy_point(radius, gradient, hessian)
        return p, predicted_reduction(gradient, hessian, p)

    p_newton = -np.linalg.solve(hessian, gradient)
    if np.linalg.norm(p_newton) <= radius:
        return p_newton, predicted_reduction(gradient, hessian, p_newton)

    gBg = gradient @ hessian @ gradient
    p_steepest = -(g_norm ** 2 / gBg) * gradient
    steepest_norm = np.linalg.norm(p_steepest)
    if steepest_norm >= radius:
        p = -radius * gradient / g_norm
        return p, predicted_reduction(gradient, hessian, p)

    # Solve ||p_U + τ (p_B - p_U)|| = Δ for τ in [0, 1]
    d = p_newton - p_steepest
    a = d @ d
    b = 2.0 * (p_steepest @ d)
    c = steepest_norm ** 2 - radius ** 2
    tau = (-b + np.sqrt(b * b - 4.0 * a * c)) / (2.0 * a)
    p = p_steepest + tau * d
    return p, predicted_reduction(gradient, hessian, p)


def constrained_direction(
    radius: float,
    gradient: np.ndarray,
    hessian: np.ndarray,
    parameter: np.ndarray,
    positive_indices: Sequence[int],
    shrink_factor: float = 0.75,
    max_shrinks: int = 50
) -> Tuple[np.ndarray, float, np.ndarray, float]:
    """
    Dogleg step that keeps parameter[positive_indices] strictly positive.

    While the candidate violates a constraint the radius is multiplied by
    `shrink_factor` and the dogleg step recomputed. If the shrink budget is
    spent, the last step is scaled back to stay inside the feasible set.

    Parameters:
        radius: Current trust radius
        gradient: g (k,)
        hessian: B (k × k)
        parameter: Current (feasible) parameter x (k,)
        positive_indices: Entries of x constrained to be > 0
        shrink_factor: Radius multiplier on violation, in (0, 1)
        max_shrinks: Maximum number of shrinks

    Returns:
        p: Feasible step
        delta_m: Predicted reduction for p
        next_parameter: x + p
        new_radius: Radius after any shrinking

    Raises:
        ValueError: If the current parameter is itself infeasible
    """
    parameter = np.asarray(parameter, dtype=float)
    positive_indices = np.asarray(positive_indices, dtype=int)
    if np.any(parameter[positive_indices] <= 0):
        raise ValueError("Current parameter violates the positivity constraints")

    for _ in range(max_shrinks + 1):
        p, delta_m = dogleg_direction(radius, gradient, hessian)
        candidate = parameter + p
        if np.all(candidate[positive_indices] > 0):
            return p, delta_m, candidate, radius
        radius *= shrink_factor

    # Scale back so every constrained entry stays at least 1% of its current value
    step = p[positive_indices]
    current = parameter[positive_indices]
    decreasing = step < 0
    fraction = np.min(0.99 * current[decreasing] / -step[decreasing])
    p = min(1.0, fraction) * p
    return p, predicted_reduction(gradient, hessian, p), parameter + p, radius


def update_radius(
    rho: float,
    step_norm: float,
    radius: float,
    max_radius: float
) -> float:
    """
    Update the trust radius from the agreement ratio.

    - ρ < 1/4: poor agreement, shrink to Δ/4
    - ρ > 3/4 and the step reached the boundary: expand to min(2Δ, Δ_max)
    - otherwise: keep Δ

    Returns:
        new_radius
    """
    if not np.isfinite(rho) or rho < 0.25:
        return 0.25 * radius
    if rho > 0.75 and step_norm >= radius * (1.0 - 1e-8):
        return min(2.0 * radius, max_radius)
    return radius


def bfgs_update(
    hessian: np.ndarray,
    s: np.ndarray,
    y: np.ndarray,
    curvature_tol: float = 1e-10
) -> np.ndarray:
    """
    BFGS update of the Hessian approximation.

        B+ = B - (B s sᵀ B) / (sᵀ B s) + (y yᵀ) / (yᵀ s)

    where s = x_next - x and y = g(x_next) - g(x).

    The update is skipped (a copy of B is returned) when the curvature
    condition yᵀs > curvature_tol · ||s|| ||y|| fails or sᵀBs <= 0, which
    keeps B symmetric positive definite when it starts that way.

    Returns:
        updated_hessian: (k × k)
    """
    hessian = np.asarray(hessian, dtype=float)
    s = np.asarray(s, dtype=float)
    y = np.asarray(y, dtype=float)

    sy = s @ y
    Bs = hessian @ s
    sBs = s @ Bs
    if sy <= curvature_tol * np.linalg.norm(s) * np.linalg.norm(y) or sBs <= 0:
        return hessian.copy()

    return hessian - np.outer(Bs, Bs) / sBs + np.outer(y, y) / sy
