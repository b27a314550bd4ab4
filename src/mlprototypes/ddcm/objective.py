"""
Objective function for the discrete-choice model with latent persistence.

Utility of alternative j for person n, given the latent weight α ∈ (0, 1):

    U_nj(α) = β1ᵀ x1_nj + α · β2ᵀ x2_nj + Σ_t α^(t+1) · past_njt

where α ~ Beta(p, q) independently per person. The parameter vector is

    θ = [β1 (K1), β2 (K2), p, q],   p > 0, q > 0

The choice probability integrates the logit probability over α:

    P_n(θ) = ∫ softmax(U_n(α))_{y_n} Beta(α; p, q) dα

and is evaluated with Gauss-Legendre nodes on (0, 1). The Beta density at
the nodes is renormalised into a discrete mixing distribution so that the
mixing weights always sum to one, even when p or q < 1 puts mass near the
endpoints.

The estimator minimises the negative mean log-likelihood

    f(θ) = -(1/S) Σ_{n ∈ sample} log P_n(θ)
"""

import numpy as np
from scipy.special import logsumexp, roots_legendre
from typing import Optional, Tuple

from .data import ChoiceData


class ChoiceObjective:
    """
    Negative mean log-likelihood of the DDCM, with gradient and Hessian.

    All compute_* methods take an optional `indices` argument that restricts
    the evaluation to a working sample of people (as produced by
    AdaptiveSampler). `indices=None` evaluates on every person.

    Parameters:
        data: ChoiceData instance
        n_quadrature: Number of Gauss-Legendre nodes for the α integral
        hessian_step: Relative step for the finite-difference Hessian

    Example:
        >>> objective = ChoiceObjective(data)
        >>> theta = np.array([1.0, -0.5, 0.8, 2.0, 2.0])
        >>> f = objective.compute_objective(theta)
        >>> g = objective.compute_gradient(theta)
    """

    def __init__(
        self,
        data: ChoiceData,
        n_quadrature: int = 32,
        hessian_step: float = 1e-5
    ):
        if n_quadrature < 2:
            raise ValueError(f"n_quadrature must be at least 2, got {n_quadrature}")
        if hessian_step <= 0:
            raise ValueError(f"hessian_step must be positive, got {hessian_step}")

        self.data = data
        self.n_quadrature = n_quadrature
        self.hessian_step = hessian_step

        # Gauss-Legendre nodes mapped from (-1, 1) to (0, 1)
        t, w = roots_legendre(n_quadrature)
        self.nodes = 0.5 * (t + 1.0)
        self.log_node_weights = np.log(0.5 * w)
        self.log_nodes = np.log(self.nodes)
        self.log_one_minus_nodes = np.log1p(-self.nodes)

        # α^(t+1) for every node and past period: (Q × T)
        exponents = np.arange(1, data.n_past + 1)
        self.node_powers = self.nodes[:, None] ** exponents[None, :]

        k1 = data.n_first_stage
        k2 = data.n_second_stage
        self._beta1 = slice(0, k1)
        self._beta2 = slice(k1, k1 + k2)
        self.positive_indices = np.array([k1 + k2, k1 + k2 + 1])

    @property
    def n_parameters(self) -> int:
        return self.data.n_parameters

    def is_feasible(self, theta: np.ndarray) -> bool:
        """Check the Beta shape constraints p > 0, q > 0."""
        theta = np.asarray(theta, dtype=float)
        return bool(np.all(np.isfinite(theta)) and np.all(theta[self.positive_indices] > 0))

    def _check_parameter(self, theta: np.ndarray) -> np.ndarray:
        theta = np.asarray(theta, dtype=float)
        if theta.shape != (self.n_parameters,):
            raise ValueError(
                f"theta must have shape ({self.n_parameters},), got {theta.shape}"
            )
        return theta

    def _select(self, indices: Optional[np.ndarray]):
        d = self.data
        if indices is None:
            return d.first_stage_x, d.second_stage_x, d.unknown_x_past, d.first_stage_y
        indices = np.asarray(indices, dtype=int)
        if len(indices) == 0:
            raise ValueError("indices must select at least one person")
        return (
            d.first_stage_x[indices],
            d.second_stage_x[indices],
            d.unknown_x_past[indices],
            d.first_stage_y[indices]
        )

    def log_mixing_weights(self, p: float, q: float) -> np.ndarray:
        """
        Log of the discretised Beta(p, q) mixing weights at the quadrature nodes.

        Returns:
            log_m: (Q,) log weights, logsumexp(log_m) == 0
        """
        log_m = (
            self.log_node_weights
            + (p - 1.0) * self.log_nodes
            + (q - 1.0) * self.log_one_minus_nodes
        )
        return log_m - logsumexp(log_m)

    def _forward(
        self,
        theta: np.ndarray,
        indices: Optional[np.ndarray]
    ) -> Tuple[np.ndarray, ...]:
        """
        Shared forward pass.

        Returns:
            log_p: (S,) log choice probabilities
            log_m: (Q,) log mixing weights
            log_pi: (S × J × Q) log logit probabilities of every alternative
            selected data blocks
        """
        x1, x2, past, y = self._select(indices)
        beta1 = theta[self._beta1]
        beta2 = theta[self._beta2]
        p, q = theta[self.positive_indices]

        v1 = x1 @ beta1  # (S, J)
        v2 = x2 @ beta2  # (S, J)
        stock = past @ self.node_powers.T  # (S, J, Q)
        U = v1[:, :, None] + self.nodes[None, None, :] * v2[:, :, None] + stock

        log_pi = U - logsumexp(U, axis=1, keepdims=True)  # (S, J, Q)
        rows = np.arange(len(y))
        log_pi_chosen = log_pi[rows, y, :]  # (S, Q)

        log_m = self.log_mixing_weights(p, q)
        log_p = logsumexp(log_pi_chosen + log_m[None, :], axis=1)
        return log_p, log_m, log_pi, log_pi_chosen, x1, x2, y

    def compute_contributions(
        self,
        theta: np.ndarray,
        indices: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        Per-person objective contributions l_n = -log P_n(θ).

        The objective is their mean. Infeasible θ gives +inf everywhere.
        """
        theta = self._check_parameter(theta)
        if not self.is_feasible(theta):
            n = self.data.n_people if indices is None else len(indices)
            return np.full(n, np.inf)
        log_p = self._forward(theta, indices)[0]
        return -log_p

    def compute_objective(
        self,
        theta: np.ndarray,
        indices: Optional[np.ndarray] = None
    ) -> float:
        """Negative mean log-likelihood on the working sample."""
        return float(np.mean(self.compute_contributions(theta, indices)))

    def compute_choice_probability(
        self,
        theta: np.ndarray,
        indices: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """Probability P_n(θ) of each person's observed choice."""
        return np.exp(-self.compute_contributions(theta, indices))

    def predict_proba(
        self,
        theta: np.ndarray,
        indices: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        Predicted probability of every alternative.

        Returns:
            probabilities: (S × J), rows sum to one
        """
        theta = self._check_parameter(theta)
        if not self.is_feasible(theta):
            raise ValueError("theta violates the constraints p > 0, q > 0")
        _, log_m, log_pi = self._forward(theta, indices)[:3]
        return np.exp(logsumexp(log_pi + log_m[None, None, :], axis=2))

    def compute_gradient(
        self,
        theta: np.ndarray,
        indices: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        Analytic gradient of the negative mean log-likelihood.

        With posterior node weights r_nk = m_k π_{n,y,k} / P_n:

            ∂log P_n/∂β1 = Σ_k r_nk (x1_ny - Σ_j π_njk x1_nj)
            ∂log P_n/∂β2 = Σ_k r_nk α_k (x2_ny - Σ_j π_njk x2_nj)
            ∂log P_n/∂p  = Σ_k r_nk log α_k - Σ_k m_k log α_k
            ∂log P_n/∂q  = Σ_k r_nk log(1-α_k) - Σ_k m_k log(1-α_k)

        Raises:
            ValueError: If θ is infeasible
        """
        theta = self._check_parameter(theta)
        if not self.is_feasible(theta):
            raise ValueError("theta violates the constraints p > 0, q > 0")

        log_p, log_m, log_pi, log_pi_chosen, x1, x2, y = self._forward(theta, indices)
        rows = np.arange(len(y))

        r = np.exp(log_pi_chosen + log_m[None, :] - log_p[:, None])  # (S, Q)
        pi = np.exp(log_pi)  # (S, J, Q)

        # Expected attributes under the logit probabilities at every node
        x1_bar = np.einsum('sjq,sjk->sqk', pi, x1)  # (S, Q, K1)
        x2_bar = np.einsum('sjq,sjk->sqk', pi, x2)  # (S, Q, K2)
        diff1 = x1[rows, y, :][:, None, :] - x1_bar
        diff2 = x2[rows, y, :][:, None, :] - x2_bar

        g_beta1 = np.einsum('sq,sqk->sk', r, diff1)
        g_beta2 = np.einsum('sq,sqk->sk', r * self.nodes[None, :], diff2)

        m = np.exp(log_m)
        g_p = r @ self.log_nodes - m @ self.log_nodes
        g_q = r @ self.log_one_minus_nodes - m @ self.log_one_minus_nodes

        grad_log_p = np.hstack([g_beta1, g_beta2, g_p[:, None], g_q[:, None]])
        return -np.mean(grad_log_p, axis=0)

    def compute_hessian(
        self,
        theta: np.ndarray,
        indices: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        Hessian by central differences of the analytic gradient.

        Steps that would cross p = 0 or q = 0 fall back to a one-sided
        difference. The result is symmetrised.
        """
        theta = self._check_parameter(theta)
        if not self.is_feasible(theta):
            raise ValueError("theta violates the constraints p > 0, q > 0")

        k = len(theta)
        H = np.zeros((k, k))
        for i in range(k):
            h = self.hessian_step * max(1.0, abs(theta[i]))
            forward = theta.copy()
            forward[i] += h
            backward = theta.copy()
            backward[i] -= h
            if i in self.positive_indices and backward[i] <= 0:
                H[:, i] = (
                    self.compute_gradient(forward, indices)
                    - self.compute_gradient(theta, indices)
                ) / h
            else:
                H[:, i] = (
                    self.compute_gradient(forward, indices)
                    - self.compute_gradient(backward, indices)
                ) / (2.0 * h)
        return 0.5 * (H + H.T)
