"""
Dual-tree local linear regression.

For a query point q the local linear estimate is

    ŷ(q) = [1 qᵀ] β(q),   (Σ_r K(q, r) z_r z_rᵀ) β(q) = Σ_r K(q, r) y_r z_r

with z_r = [1 rᵀ]. Both sides are kernel sums over the reference set, so
they can be approximated by a dual-tree traversal over a query tree and a
reference tree: whenever the kernel is nearly constant between a query node
and a reference node, the node pair's contribution is replaced by the node's
moment statistics times the midpoint of the kernel bounds, and the induced
error is charged against the per-query error budget

    |error| ≤ relative_error · ||lhs, rhs||₁ + N · absolute_error

Usage:
    >>> model = LocalRegression(bandwidth=0.3, kernel='epanechnikov')
    >>> model.fit(X_train, y_train)
    >>> y_loo = model.predict()          # leave-one-out on the training set
    >>> y_hat = model.predict(X_test)
"""

import numpy as np
from typing import Optional, Tuple

from .kernels import make_kernel
from .tree import TreeNode, build_tree, squared_distance_range


class _Contribution:
    """Lower bound, estimate and upper bound of a postponed kernel sum."""

    def __init__(self, dim: int):
        self.lhs_l = np.zeros((dim, dim))
        self.lhs_e = np.zeros((dim, dim))
        self.lhs_u = np.zeros((dim, dim))
        self.rhs_l = np.zeros(dim)
        self.rhs_e = np.zeros(dim)
        self.rhs_u = np.zeros(dim)
        self.pruned = 0.0
        self.used_error = 0.0

    def add(self, other: '_Contribution'):
        self.lhs_l += other.lhs_l
        self.lhs_e += other.lhs_e
        self.lhs_u += other.lhs_u
        self.rhs_l += other.rhs_l
        self.rhs_e += other.rhs_e
        self.rhs_u += other.rhs_u
        self.pruned += other.pruned
        self.used_error += other.used_error


class _Summary:
    """Bounds that hold for every query point below a node."""

    def __init__(self, dim: int):
        self.lhs_l = np.zeros((dim, dim))
        self.lhs_u = np.zeros((dim, dim))
        self.rhs_l = np.zeros(dim)
        self.rhs_u = np.zeros(dim)
        self.pruned_l = 0.0
        self.used_error_u = 0.0


def _l1_lower_bound(lower: np.ndarray, upper: np.ndarray) -> float:
    """Lower bound on Σ|v| for lower ≤ v ≤ upper."""
    return float(np.sum(np.where(lower > 0, lower, 0.0))
                 + np.sum(np.where(upper < 0, -upper, 0.0)))


class LocalRegression:
    """
    Local linear regression with dual-tree approximation.

    Parameters
    ----------
    bandwidth : float
        Kernel bandwidth h
    kernel : {'gaussian', 'epanechnikov'}, default='gaussian'
    relative_error : float, default=0.1
        Relative error tolerance on the kernel sums
    absolute_error : float, default=0.0
        Absolute error tolerance per reference point
    leaf_size : int, default=20
        Maximum number of points per kd-tree leaf
    verbose : bool, default=False
        Print traversal statistics

    Attributes
    ----------
    pruned_ : np.ndarray, shape (n_queries,)
        Number of reference points accounted for per query (approximated
        or computed exactly); equals the effective reference count
    used_error_ : np.ndarray, shape (n_queries,)
        Accumulated absolute error bound per query
    lhs_ : np.ndarray, shape (n_queries, D+1, D+1)
    rhs_ : np.ndarray, shape (n_queries, D+1)
        Approximated weighted least-squares systems
    n_prunes_ : int
        Node pairs approximated (or skipped outside the kernel support)
    n_base_cases_ : int
        Leaf pairs evaluated exactly
    """

    def __init__(
        self,
        bandwidth: float,
        kernel: str = 'gaussian',
        relative_error: float = 0.1,
        absolute_error: float = 0.0,
        leaf_size: int = 20,
        verbose: bool = False
    ):
        if relative_error < 0:
            raise ValueError(f"relative_error must be non-negative, got {relative_error}")
        if absolute_error < 0:
            raise ValueError(f"absolute_error must be non-negative, got {absolute_error}")
        if leaf_size < 1:
            raise ValueError(f"leaf_size must be positive, got {leaf_size}")

        self.kernel = make_kernel(kernel, bandwidth)
        self.bandwidth = bandwidth
        self.relative_error = relative_error
        self.absolute_error = absolute_error
        self.leaf_size = leaf_size
        self.verbose = verbose

    def fit(self, reference: np.ndarray, targets: np.ndarray) -> 'LocalRegression':
        """
        Build the reference tree.

        Parameters:
            reference: Reference points (n × D)
            targets: Reference targets (n,)

        Returns:
            self
        """
        reference = np.asarray(reference, dtype=float)
        targets = np.asarray(targets, dtype=float)
        if reference.ndim != 2:
            raise ValueError(f"reference must be 2D, got shape {reference.shape}")
        if targets.shape != (reference.shape[0],):
            raise ValueError(
                f"targets must have shape ({reference.shape[0]},), got {targets.shape}"
            )
        if reference.shape[0] < 2:
            raise ValueError("At least 2 reference points are required")

        self.reference_ = reference
        self.targets_ = targets
        self.reference_tree_ = build_tree(reference, targets, self.leaf_size)
        return self

    def _check_fitted(self):
        if not hasattr(self, 'reference_tree_'):
            raise ValueError("Model not fitted. Call fit() first.")

    def _prepare_query(self, query: Optional[np.ndarray]) -> Tuple[np.ndarray, bool]:
        if query is None:
            return self.reference_, True
        query = np.asarray(query, dtype=float)
        if query.ndim != 2 or query.shape[1] != self.reference_.shape[1]:
            raise ValueError(
                f"query must have shape (n, {self.reference_.shape[1]}), got {query.shape}"
            )
        return query, False

    # ------------------------------------------------------------------
    # Dual-tree traversal
    # ------------------------------------------------------------------

    def predict(self, query: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Local linear estimates at the query points.

        Parameters:
            query: Query points (m × D). If None, the estimate is computed at
                   every reference point leaving that point out
                   (monochromatic mode, N - 1 effective references).

        Returns:
            predictions: (m,) estimates
        """
        self._check_fitted()
        query, monochromatic = self._prepare_query(query)

        dim = self.reference_.shape[1] + 1
        n_queries = query.shape[0]
        self._query = query
        self._monochromatic = monochromatic
        self._effective_references = self.reference_.shape[0] - (1 if monochromatic else 0)

        self.lhs_ = np.zeros((n_queries, dim, dim))
        self._lhs_l = np.zeros((n_queries, dim, dim))
        self._lhs_u = np.zeros((n_queries, dim, dim))
        self.rhs_ = np.zeros((n_queries, dim))
        self._rhs_l = np.zeros((n_queries, dim))
        self._rhs_u = np.zeros((n_queries, dim))
        self.pruned_ = np.zeros(n_queries)
        self.used_error_ = np.zeros(n_queries)
        self.n_prunes_ = 0
        self.n_base_cases_ = 0

        query_tree = (self.reference_tree_ if monochromatic
                      else build_tree(query, None, self.leaf_size))
        for node in query_tree.iter_nodes():
            node.postponed = _Contribution(dim)
            node.summary = _Summary(dim)

        self._dualtree(query_tree, self.reference_tree_)
        self._final_push_down(query_tree)

        if self.verbose:
            print(f"Dual-tree local regression: {n_queries} queries, "
                  f"{self.n_prunes_} prunes, {self.n_base_cases_} base cases, "
                  f"max used error {self.used_error_.max():.3e}")

        return self._solve(query, self.lhs_, self.rhs_)

    def _delta(self, rnode: TreeNode, sq_range: Tuple[float, float]) -> _Contribution:
        """Bounds on the contribution of rnode from kernel bounds on the distance range."""
        k_lo = float(self.kernel.eval_unnorm_on_sq(sq_range[1]))
        k_hi = float(self.kernel.eval_unnorm_on_sq(sq_range[0]))
        k_mid = 0.5 * (k_lo + k_hi)
        half_width = 0.5 * (k_hi - k_lo)

        delta = _Contribution(len(rnode.weighted_average_info))
        delta.lhs_e = k_mid * rnode.average_info
        delta.lhs_l = delta.lhs_e - half_width * rnode.abs_average_info
        delta.lhs_u = delta.lhs_e + half_width * rnode.abs_average_info
        delta.rhs_e = k_mid * rnode.weighted_average_info
        delta.rhs_l = delta.rhs_e - half_width * rnode.abs_weighted_average_info
        delta.rhs_u = delta.rhs_e + half_width * rnode.abs_weighted_average_info

        max_deviation = max(
            float(np.max(delta.lhs_u - delta.lhs_l)),
            float(np.max(delta.rhs_u - delta.rhs_l))
        )
        delta.pruned = float(rnode.count)
        delta.used_error = 0.5 * max_deviation
        return delta

    def _can_summarize(self, delta: _Contribution, qnode: TreeNode, rnode: TreeNode) -> bool:
        summary, postponed = qnode.summary, qnode.postponed
        lower_bound_l1 = (
            _l1_lower_bound(summary.lhs_l + postponed.lhs_l, summary.lhs_u + postponed.lhs_u)
            + _l1_lower_bound(summary.rhs_l + postponed.rhs_l, summary.rhs_u + postponed.rhs_u)
        )
        pruned_l = summary.pruned_l + postponed.pruned
        used_error_u = summary.used_error_u + postponed.used_error
        remaining = max(self._effective_references - pruned_l, float(rnode.count))

        allowed = rnode.count * (
            self.relative_error * lower_bound_l1
            + self._effective_references * self.absolute_error
            - used_error_u
        ) / remaining
        return delta.used_error <= allowed

    def _dualtree(self, qnode: TreeNode, rnode: TreeNode):
        sq_range = squared_distance_range(qnode, rnode)
        overlap = self._monochromatic and qnode.overlaps(rnode)

        if not overlap:
            if self.kernel.can_prune_extrinsically(sq_range):
                qnode.postponed.pruned += rnode.count
                self.n_prunes_ += 1
                return
            delta = self._delta(rnode, sq_range)
            if self._can_summarize(delta, qnode, rnode):
                qnode.postponed.add(delta)
                self.n_prunes_ += 1
                return

        if qnode.is_leaf and rnode.is_leaf:
            self._base_case(qnode, rnode)
            return

        if qnode.is_leaf or (not rnode.is_leaf and rnode.count >= qnode.count):
            # Split the reference node, closer child first
            children = sorted(
                rnode.children, key=lambda c: squared_distance_range(qnode, c)[0]
            )
            for child in children:
                self._dualtree(qnode, child)
            return

        # Split the query node
        for child in qnode.children:
            child.postponed.add(qnode.postponed)
        qnode.postponed = _Contribution(len(qnode.postponed.rhs_e))
        for child in qnode.children:
            self._dualtree(child, rnode)
        self._reaccumulate(qnode)

    def _base_case(self, qnode: TreeNode, rnode: TreeNode):
        self.n_base_cases_ += 1
        q_idx = qnode.indices
        r_idx = rnode.indices

        diff = self._query[q_idx][:, None, :] - self.reference_[r_idx][None, :, :]
        weights = self.kernel.eval_unnorm_on_sq(np.sum(diff ** 2, axis=2))
        counts = np.full(len(q_idx), float(len(r_idx)))
        if self._monochromatic:
            is_self = q_idx[:, None] == r_idx[None, :]
            weights = np.where(is_self, 0.0, weights)
            counts -= is_self.sum(axis=1)

        z = np.hstack([np.ones((len(r_idx), 1)), self.reference_[r_idx]])
        lhs = np.einsum('qr,ri,rj->qij', weights, z, z)
        rhs = (weights * self.targets_[r_idx]) @ z

        self.lhs_[q_idx] += lhs
        self._lhs_l[q_idx] += lhs
        self._lhs_u[q_idx] += lhs
        self.rhs_[q_idx] += rhs
        self._rhs_l[q_idx] += rhs
        self._rhs_u[q_idx] += rhs
        self.pruned_[q_idx] += counts

        self._reaccumulate(qnode)

    def _reaccumulate(self, qnode: TreeNode):
        """Refresh the node summary from its children (or its queries)."""
        summary = qnode.summary
        if qnode.is_leaf:
            idx = qnode.indices
            summary.lhs_l = self._lhs_l[idx].min(axis=0)
            summary.lhs_u = self._lhs_u[idx].max(axis=0)
            summary.rhs_l = self._rhs_l[idx].min(axis=0)
            summary.rhs_u = self._rhs_u[idx].max(axis=0)
            summary.pruned_l = float(self.pruned_[idx].min())
            summary.used_error_u = float(self.used_error_[idx].max())
            return

        parts = [(c.summary, c.postponed) for c in qnode.children]
        summary.lhs_l = np.minimum.reduce([s.lhs_l + p.lhs_l for s, p in parts])
        summary.lhs_u = np.maximum.reduce([s.lhs_u + p.lhs_u for s, p in parts])
        summary.rhs_l = np.minimum.reduce([s.rhs_l + p.rhs_l for s, p in parts])
        summary.rhs_u = np.maximum.reduce([s.rhs_u + p.rhs_u for s, p in parts])
        summary.pruned_l = min(s.pruned_l + p.pruned for s, p in parts)
        summary.used_error_u = max(s.used_error_u + p.used_error for s, p in parts)

    def _final_push_down(self, qnode: TreeNode):
        """Push postponed contributions down to the individual queries."""
        postponed = qnode.postponed
        if qnode.is_leaf:
            idx = qnode.indices
            self.lhs_[idx] += postponed.lhs_e
            self._lhs_l[idx] += postponed.lhs_l
            self._lhs_u[idx] += postponed.lhs_u
            self.rhs_[idx] += postponed.rhs_e
            self._rhs_l[idx] += postponed.rhs_l
            self._rhs_u[idx] += postponed.rhs_u
            self.pruned_[idx] += postponed.pruned
            self.used_error_[idx] += postponed.used_error
            return

        for child in qnode.children:
            child.postponed.add(postponed)
            self._final_push_down(child)

    # ------------------------------------------------------------------
    # Exact computation and solving
    # ------------------------------------------------------------------

    def compute_systems_naive(
        self,
        query: Optional[np.ndarray] = None
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Exact weighted least-squares systems by brute force.

        Returns:
            lhs: (m, D+1, D+1) Σ_r K z_r z_rᵀ per query
            rhs: (m, D+1) Σ_r K y_r z_r per query
        """
        self._check_fitted()
        query, monochromatic = self._prepare_query(query)

        z = np.hstack([np.ones((self.reference_.shape[0], 1)), self.reference_])
        sq = np.sum((query[:, None, :] - self.reference_[None, :, :]) ** 2, axis=2)
        weights = self.kernel.eval_unnorm_on_sq(sq)
        if monochromatic:
            np.fill_diagonal(weights, 0.0)

        lhs = np.einsum('qr,ri,rj->qij', weights, z, z)
        rhs = (weights * self.targets_) @ z
        return lhs, rhs

    def predict_naive(self, query: Optional[np.ndarray] = None) -> np.ndarray:
        """Exact local linear estimates (O(m · n))."""
        lhs, rhs = self.compute_systems_naive(query)
        query, _ = self._prepare_query(query)
        return self._solve(query, lhs, rhs)

    @staticmethod
    def _solve(query: np.ndarray, lhs: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        """ŷ = [1 qᵀ] β with lhs β = rhs; least squares where lhs is singular."""
        z = np.hstack([np.ones((query.shape[0], 1)), query])
        predictions = np.empty(query.shape[0])
        for i in range(query.shape[0]):
            try:
                beta = np.linalg.solve(lhs[i], rhs[i])
            except np.linalg.LinAlgError:
                beta = np.linalg.lstsq(lhs[i], rhs[i], rcond=None)[0]
            predictions[i] = z[i] @ beta
        return predictions

    def __repr__(self) -> str:
        return (
            f"LocalRegression(kernel={self.kernel!r}, "
            f"relative_error={self.relative_error}, "
            f"absolute_error={self.absolute_error}, leaf_size={self.leaf_size})"
        )
