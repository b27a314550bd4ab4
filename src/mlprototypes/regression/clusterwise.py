"""
Clusterwise linear regression via the EM algorithm.

The data are modelled as a mixture of K linear regressions with Gaussian
noise:

    p(y | x) = Σ_k π_k N(y | [1 xᵀ] β_k, σ_k²)

E-step: responsibilities r_nk ∝ π_k N(y_n | [1 x_nᵀ] β_k, σ_k²)
M-step: β_k by weighted least squares with weights r_·k,
        π_k = mean_n r_nk,
        σ_k² = Σ_n r_nk (y_n - [1 x_nᵀ] β_k)² / Σ_n r_nk

σ_k is the per-cluster bandwidth.
"""

import numpy as np
import warnings
from scipy.special import logsumexp
from sklearn.cluster import KMeans
from typing import Optional, Literal, Tuple, Union


class ClusterwiseRegression:
    """
    Mixture of linear regressions fitted by EM.

    Parameters
    ----------
    n_clusters : int, default=2
        Number of regression components K
    max_iter : int, default=100
        Maximum EM iterations
    tol : float, default=1e-6
        Convergence tolerance on the change in mean log-likelihood
    init : {'kmeans', 'random'}, default='kmeans'
        Initial responsibilities: k-means hard assignment on the joint
        (x, y) space, or random soft assignment
    min_bandwidth : float, default=1e-6
        Lower bound on each σ_k
    random_state : int, optional
        Random seed
    verbose : bool, default=False
        Print progress

    Attributes
    ----------
    coefficients_ : np.ndarray, shape (n_clusters, n_features + 1)
        [intercept, slopes] per cluster
    mixing_probabilities_ : np.ndarray, shape (n_clusters,)
    bandwidths_ : np.ndarray, shape (n_clusters,)
        Noise standard deviation σ_k per cluster
    responsibilities_ : np.ndarray, shape (n_samples, n_clusters)
    labels_ : np.ndarray, shape (n_samples,)
        Most responsible cluster per training point
    history : dict
        'log_likelihood' per iteration

    Examples
    --------
    >>> model = ClusterwiseRegression(n_clusters=2, random_state=0).fit(X, y)
    >>> model.predict(X[:5])                  # mixture prediction
    >>> model.predict(X[:5], cluster=1)       # one component
    >>> model.predict_with_error(X[0], y[0])  # (prediction, squared error)
    """

    def __init__(
        self,
        n_clusters: int = 2,
        max_iter: int = 100,
        tol: float = 1e-6,
        init: Literal['kmeans', 'random'] = 'kmeans',
        min_bandwidth: float = 1e-6,
        random_state: Optional[int] = None,
        verbose: bool = False
    ):
        if n_clusters < 1:
            raise ValueError(f"n_clusters must be positive, got {n_clusters}")
        if max_iter < 1:
            raise ValueError(f"max_iter must be positive, got {max_iter}")
        if tol <= 0:
            raise ValueError(f"tol must be positive, got {tol}")
        if init not in ('kmeans', 'random'):
            raise ValueError(f"init must be 'kmeans' or 'random', got {init}")
        if min_bandwidth <= 0:
            raise ValueError(f"min_bandwidth must be positive, got {min_bandwidth}")

        self.n_clusters = n_clusters
        self.max_iter = max_iter
        self.tol = tol
        self.init = init
        self.min_bandwidth = min_bandwidth
        self.random_state = random_state
        self.verbose = verbose

        self.history = {'log_likelihood': []}

    @staticmethod
    def _design(X: np.ndarray) -> np.ndarray:
        return np.hstack([np.ones((X.shape[0], 1)), X])

    def _initial_responsibilities(self, X: np.ndarray, y: np.ndarray) -> np.ndarray:
        n = X.shape[0]
        if self.init == 'kmeans':
            joint = np.hstack([X, y[:, None]])
            scale = joint.std(axis=0)
            joint = (joint - joint.mean(axis=0)) / np.where(scale > 0, scale, 1.0)
            labels = KMeans(
                n_clusters=self.n_clusters, n_init=10, random_state=self.random_state
            ).fit_predict(joint)
            R = np.full((n, self.n_clusters), 1e-3)
            R[np.arange(n), labels] = 1.0
        else:
            rng = np.random.default_rng(self.random_state)
            R = rng.dirichlet(np.ones(self.n_clusters), size=n)
        return R / R.sum(axis=1, keepdims=True)

    def _m_step(self, Z: np.ndarray, y: np.ndarray, R: np.ndarray):
        n, d = Z.shape
        weights = R.sum(axis=0)
        coefficients = np.empty((self.n_clusters, d))
        bandwidths = np.empty(self.n_clusters)

        for k in range(self.n_clusters):
            r = R[:, k]
            A = Z.T @ (r[:, None] * Z) + 1e-10 * np.eye(d)
            coefficients[k] = np.linalg.lstsq(A, Z.T @ (r * y), rcond=None)[0]
            residuals = y - Z @ coefficients[k]
            variance = np.sum(r * residuals ** 2) / max(weights[k], 1e-12)
            bandwidths[k] = max(np.sqrt(variance), self.min_bandwidth)

        return coefficients, weights / n, bandwidths

    def _log_joint(self, Z: np.ndarray, y: np.ndarray) -> np.ndarray:
        """log π_k + log N(y_n | z_nᵀ β_k, σ_k²)   (n × K)"""
        residuals = y[:, None] - Z @ self.coefficients_.T
        sigma = self.bandwidths_[None, :]
        log_density = (
            -0.5 * np.log(2 * np.pi) - np.log(sigma) - 0.5 * (residuals / sigma) ** 2
        )
        with np.errstate(divide='ignore'):
            log_pi = np.log(self.mixing_probabilities_)
        return log_density + log_pi[None, :]

    def fit(self, X: np.ndarray, y: np.ndarray) -> 'ClusterwiseRegression':
        """
        Fit the mixture by EM.

        Parameters:
            X: Features (n_samples × n_features)
            y: Targets (n_samples,)

        Returns:
            self: Fitted model
        """
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        if X.ndim != 2:
            raise ValueError(f"X must be 2D, got shape {X.shape}")
        if y.shape != (X.shape[0],):
            raise ValueError(f"y must have shape ({X.shape[0]},), got {y.shape}")
        if X.shape[0] < self.n_clusters:
            raise ValueError(
                f"Need at least n_clusters={self.n_clusters} samples, got {X.shape[0]}"
            )

        Z = self._design(X)
        R = self._initial_responsibilities(X, y)
        self.history = {'log_likelihood': []}
        self.converged_ = False
        prev_ll = -np.inf

        for iteration in range(self.max_iter):
            # M-step
            self.coefficients_, self.mixing_probabilities_, self.bandwidths_ = \
                self._m_step(Z, y, R)

            # E-step
            log_joint = self._log_joint(Z, y)
            log_norm = logsumexp(log_joint, axis=1)
            R = np.exp(log_joint - log_norm[:, None])

            ll = float(np.mean(log_norm))
            self.history['log_likelihood'].append(ll)

            if self.verbose and (iteration % 10 == 0 or iteration == self.max_iter - 1):
                print(f"Iter {iteration:3d}: mean log-likelihood = {ll:.6f}, "
                      f"π = {np.round(self.mixing_probabilities_, 3)}")

            if abs(ll - prev_ll) < self.tol:
                self.converged_ = True
                if self.verbose:
                    print(f"✓ Converged at iteration {iteration}")
                break
            prev_ll = ll

        if not self.converged_:
            warnings.warn(
                f"EM did not converge in {self.max_iter} iterations",
                RuntimeWarning
            )

        self.n_iter_ = iteration + 1
        self.responsibilities_ = R
        self.labels_ = np.argmax(R, axis=1)
        self.log_likelihood_ = self.history['log_likelihood'][-1]
        return self

    def _check_fitted(self):
        if not hasattr(self, 'coefficients_'):
            raise ValueError("Model not fitted. Call fit() first.")

    def _as_design(self, x: np.ndarray) -> Tuple[np.ndarray, bool]:
        x = np.asarray(x, dtype=float)
        single = x.ndim == 1
        X = np.atleast_2d(x)
        n_features = self.coefficients_.shape[1] - 1
        if X.shape[1] != n_features:
            raise ValueError(f"Expected {n_features} features, got {X.shape[1]}")
        return self._design(X), single

    def predict(self, x: np.ndarray, cluster: Optional[int] = None) -> Union[float, np.ndarray]:
        """
        Predict targets.

        Parameters:
            x: A point (n_features,) or points (m × n_features)
            cluster: Component to predict with; if None, the mixture
                     prediction Σ_k π_k [1 xᵀ] β_k

        Returns:
            prediction: float for a single point, else (m,) array
        """
        self._check_fitted()
        Z, single = self._as_design(x)

        if cluster is None:
            predictions = (Z @ self.coefficients_.T) @ self.mixing_probabilities_
        else:
            if not 0 <= cluster < self.n_clusters:
                raise ValueError(
                    f"cluster must be in [0, {self.n_clusters - 1}], got {cluster}"
                )
            predictions = Z @ self.coefficients_[cluster]

        return float(predictions[0]) if single else predictions

    def predict_proba(self, x: np.ndarray, target) -> np.ndarray:
        """Posterior cluster memberships given points and their targets (m × K)."""
        self._check_fitted()
        Z, _ = self._as_design(x)
        log_joint = self._log_joint(Z, np.atleast_1d(np.asarray(target, dtype=float)))
        return np.exp(log_joint - logsumexp(log_joint, axis=1)[:, None])

    def predict_with_error(self, x: np.ndarray, target):
        """
        Predict with the cluster that best explains the observed target.

        Parameters:
            x: A point (n_features,) or points (m × n_features)
            target: Observed target(s)

        Returns:
            prediction: Prediction of the most probable cluster
            squared_error: (target - prediction)²
        """
        self._check_fitted()
        Z, single = self._as_design(x)
        target = np.atleast_1d(np.asarray(target, dtype=float))
        if target.shape != (Z.shape[0],):
            raise ValueError(f"target must have {Z.shape[0]} entries, got {target.shape}")

        best = np.argmax(self._log_joint(Z, target), axis=1)
        predictions = np.einsum('nd,nd->n', Z, self.coefficients_[best])
        squared_error = (target - predictions) ** 2

        if single:
            return float(predictions[0]), float(squared_error[0])
        return predictions, squared_error

    def __repr__(self) -> str:
        return (
            f"ClusterwiseRegression(n_clusters={self.n_clusters}, "
            f"max_iter={self.max_iter}, init='{self.init}')"
        )
