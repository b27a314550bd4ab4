"""
Sequential minimal optimization for the non-negative SVM (NNSVM).

The NNSVM constrains the primal weight vector to be non-negative. Its dual is

    max_α  Σ α_i - ½ ||[Σ α_i y_i x_i]_+||²
    s.t.   0 ≤ α_i ≤ C,   Σ α_i y_i = 0

with primal solution w = [Σ α_i y_i x_i]_+ ≥ 0 (componentwise positive part).

Working pairs are chosen as the maximal violating pair (Bottou & Lin):
with g_i = 1 - y_i w·x_i and the box written in the signed variable y_i α_i
as A_i ≤ y_i α_i ≤ B_i,

    i = argmax { y_i g_i : y_i α_i < B_i }
    j = argmin { y_j g_j : A_j < y_j α_j }

and the solver stops when y_i g_i - y_j g_j ≤ eps. Because the positive part
makes the dual only piecewise quadratic, the step along the pair direction
is an exact line search over the breakpoints of [v]_+ rather than a single
Newton step.
"""

import numpy as np
import warnings
from typing import Optional, Tuple, Dict, List


def _positive_part_line_search(
    v: np.ndarray,
    d: np.ndarray,
    slope: float,
    max_step: float
) -> float:
    """
    Maximise  φ(λ) = λ·slope - ½ ||[v + λ d]_+||²  over  0 ≤ λ ≤ max_step.

    φ is concave and piecewise quadratic; its derivative

        φ'(λ) = slope - Σ_k [v_k + λ d_k]_+ d_k

    is non-increasing and linear between the breakpoints λ_k = -v_k / d_k.
    The root of φ' is located segment by segment.
    """
    def derivative(lam):
        return slope - np.dot(np.maximum(v + lam * d, 0.0), d)

    if max_step <= 0.0 or derivative(0.0) <= 0.0:
        return 0.0

    nonzero = d != 0
    breaks = -v[nonzero] / d[nonzero]
    breaks = np.unique(breaks[(breaks > 0.0) & (breaks < max_step)])

    lo, d_lo = 0.0, derivative(0.0)
    for hi in np.append(breaks, max_step):
        d_hi = derivative(hi)
        if d_hi <= 0.0:
            mid = 0.5 * (lo + hi)
            active = (v + mid * d) > 0.0
            curvature = np.dot(d[active], d[active])
            if curvature <= 0.0:
                return hi
            return float(np.clip(lo + d_lo / curvature, lo, hi))
        lo, d_lo = hi, d_hi

    return float(max_step)


class NNSMO:
    """
    SMO solver for the linear NNSVM dual.

    Parameters
    ----------
    c : float, default=10.0
        Box constraint C
    budget : int, optional
        Maximum number of support vectors; unlimited (number of samples) if None.
        A working pair never brings the count above the budget: with one slot
        left it contains at least one current support vector, and with none
        left only current support vectors.
    eps : float, default=1e-6
        Tolerance on the maximal KKT violation
    max_iter : int, default=1000
        Maximum number of pair updates
    verbose : bool, default=False
        Print progress

    Attributes
    ----------
    alpha_ : np.ndarray, shape (n_samples,)
        Dual variables
    weights_ : np.ndarray, shape (n_features,)
        Non-negative primal weights
    threshold_ : float
        Decision threshold; the decision value is w·x - threshold
    n_iter_ : int
        Number of pair updates performed
    converged_ : bool
        Whether the KKT violation fell below eps
    history : dict
        Dual objective and maximal violation per iteration
    """

    def __init__(
        self,
        c: float = 10.0,
        budget: Optional[int] = None,
        eps: float = 1e-6,
        max_iter: int = 1000,
        verbose: bool = False
    ):
        if c <= 0:
            raise ValueError(f"c must be positive, got {c}")
        if budget is not None and budget < 2:
            raise ValueError(f"budget must be at least 2, got {budget}")
        if eps <= 0:
            raise ValueError(f"eps must be positive, got {eps}")
        if max_iter < 1:
            raise ValueError(f"max_iter must be positive, got {max_iter}")

        self.c = c
        self.budget = budget
        self.eps = eps
        self.max_iter = max_iter
        self.verbose = verbose

        self.history: Dict[str, List[float]] = {
            'dual_objective': [],
            'violation': []
        }

    def _bounds(self, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Box [A_i, B_i] on the signed variable y_i α_i."""
        lower = np.where(y > 0, 0.0, -self.c)
        upper = np.where(y > 0, self.c, 0.0)
        return lower, upper

    def _select_pair(
        self,
        signed_alpha: np.ndarray,
        yg: np.ndarray,
        lower: np.ndarray,
        upper: np.ndarray,
        up_eligible: np.ndarray,
        down_eligible: np.ndarray
    ) -> Tuple[int, int, float]:
        """Maximal violating pair and its violation (-inf if none exists)."""
        up = up_eligible & (signed_alpha < upper)
        down = down_eligible & (signed_alpha > lower)
        if not np.any(up) or not np.any(down):
            return -1, -1, -np.inf

        i = int(np.flatnonzero(up)[np.argmax(yg[up])])
        j = int(np.flatnonzero(down)[np.argmin(yg[down])])
        return i, j, float(yg[i] - yg[j])

    def _select_working_pair(
        self,
        signed_alpha: np.ndarray,
        yg: np.ndarray,
        lower: np.ndarray,
        upper: np.ndarray,
        support: np.ndarray,
        budget: int
    ) -> Tuple[int, int, float]:
        """
        Maximal violating pair that keeps the support-vector count within budget.

        A pair update can turn at most its two members into support vectors, so
        with one free slot left at least one member must already have α > 0,
        and with none left both must.
        """
        n_support = np.count_nonzero(support)
        if n_support >= budget:
            return self._select_pair(signed_alpha, yg, lower, upper, support, support)

        everyone = np.ones_like(support)
        i, j, violation = self._select_pair(signed_alpha, yg, lower, upper, everyone, everyone)
        if i < 0 or n_support + 2 <= budget or support[i] or support[j]:
            return i, j, violation

        # One slot left: the better of (any i, old j) and (old i, any j)
        return max(
            self._select_pair(signed_alpha, yg, lower, upper, everyone, support),
            self._select_pair(signed_alpha, yg, lower, upper, support, everyone),
            key=lambda pair: pair[2]
        )

    def dual_objective(self, X: np.ndarray, y: np.ndarray, alpha: np.ndarray) -> float:
        """Σ α - ½ ||[Σ α_i y_i x_i]_+||²"""
        v = X.T @ (alpha * y)
        w = np.maximum(v, 0.0)
        return float(np.sum(alpha) - 0.5 * np.dot(w, w))

    def train(self, X: np.ndarray, y: np.ndarray) -> 'NNSMO':
        """
        Solve the dual for features X (n_samples × n_features) and labels y ∈ {-1, +1}.

        Returns:
            self: Trained solver
        """
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        if X.ndim != 2:
            raise ValueError(f"X must be 2D, got shape {X.shape}")
        if y.shape != (X.shape[0],):
            raise ValueError(f"y must have shape ({X.shape[0]},), got {y.shape}")
        if not np.all(np.isin(y, (-1.0, 1.0))):
            raise ValueError("y must contain only -1 and +1")

        n = X.shape[0]
        budget = n if self.budget is None else min(self.budget, n)
        lower, upper = self._bounds(y)

        alpha = np.zeros(n)
        v = np.zeros(X.shape[1])
        self.converged_ = False
        self.history = {'dual_objective': [], 'violation': []}

        for iteration in range(self.max_iter):
            w = np.maximum(v, 0.0)
            yg = y - X @ w  # y_i g_i with g_i = 1 - y_i w·x_i

            i, j, violation = self._select_working_pair(
                y * alpha, yg, lower, upper, alpha > 0, budget
            )
            self.history['violation'].append(violation)
            self.history['dual_objective'].append(
                float(np.sum(alpha) - 0.5 * np.dot(w, w))
            )

            if violation <= self.eps:
                self.converged_ = True
                if self.verbose:
                    print(f"✓ Converged at iteration {iteration} (violation={violation:.2e})")
                break

            max_step = min(upper[i] - y[i] * alpha[i], y[j] * alpha[j] - lower[j])
            d = X[i] - X[j]
            lam = _positive_part_line_search(v, d, y[i] - y[j], max_step)

            if lam <= 0.0:
                # Flat direction: the violation cannot be reduced along this pair
                self.converged_ = True
                if self.verbose:
                    print(f"Stopped at iteration {iteration}: no ascent along the working pair")
                break

            alpha[i] += y[i] * lam
            alpha[j] -= y[j] * lam
            np.clip(alpha, 0.0, self.c, out=alpha)
            v += lam * d

            if self.verbose and iteration % 100 == 0:
                print(f"Iter {iteration:4d}: dual = {self.history['dual_objective'][-1]:.6f}, "
                      f"violation = {violation:.2e}, #SV = {np.count_nonzero(alpha)}")
        else:
            iteration = self.max_iter
            warnings.warn(
                f"NNSMO did not converge in {self.max_iter} iterations "
                f"(violation={self.history['violation'][-1]:.2e})",
                RuntimeWarning
            )

        self.n_iter_ = iteration
        self.alpha_ = alpha
        self.weights_ = np.maximum(X.T @ (alpha * y), 0.0)
        self.threshold_ = self._compute_threshold(X, y, alpha, self.weights_)
        self._X = X
        self._y = y
        return self

    def _compute_threshold(
        self,
        X: np.ndarray,
        y: np.ndarray,
        alpha: np.ndarray,
        w: np.ndarray
    ) -> float:
        """
        Threshold b with decision value w·x - b.

        Averaged over free support vectors (0 < α < C), where y(w·x - b) = 1.
        Without free support vectors, b is the midpoint of the interval
        allowed by the KKT conditions of the bounded ones.
        """
        candidates = X @ w - y
        tol = 1e-8 * self.c
        free = (alpha > tol) & (alpha < self.c - tol)
        if np.any(free):
            return float(np.mean(candidates[free]))

        at_zero = alpha <= tol
        # α = 0: y(w·x - b) ≥ 1; α = C: y(w·x - b) ≤ 1
        upper_side = (at_zero & (y > 0)) | (~at_zero & (y < 0))
        lower_side = ~upper_side
        ub = np.min(candidates[upper_side]) if np.any(upper_side) else np.inf
        lb = np.max(candidates[lower_side]) if np.any(lower_side) else -np.inf
        if np.isfinite(ub) and np.isfinite(lb):
            return float(0.5 * (ub + lb))
        return float(ub if np.isfinite(ub) else lb)

    def get_nnsvm(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Trained model.

        Returns:
            support_vectors: (n_sv × n_features) training points with α > 0
            sv_coef: (n_sv,) coefficients α_i y_i
            weights: (n_features,) non-negative primal weights
        """
        if not hasattr(self, 'alpha_'):
            raise ValueError("Model not fitted. Call train() first.")
        sv = self.alpha_ > 0
        return self._X[sv], (self.alpha_ * self._y)[sv], self.weights_
