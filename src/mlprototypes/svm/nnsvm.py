"""
Non-negative support vector machine (binary, linear).

A linear SVM whose weight vector is constrained to be non-negative, which
makes the learned model usable as a feature-weighting scheme: features with
zero weight are discarded.

Usage:
    >>> model = NNSVM(c=10.0)
    >>> model.train(X_train, y_train)
    >>> model.classify(X_test[0])
    1
    >>> model.batch_classify(X_test)
    array([1, 0, 0, ...])
"""

import numpy as np
from typing import Optional

from .nnsmo import NNSMO


class NNSVM:
    """
    Binary non-negative SVM trained with NNSMO.

    Parameters
    ----------
    c : float, default=10.0
        Box constraint C
    budget : int, optional
        Maximum number of support vectors (default: number of training samples)
    eps : float, default=1e-6
        KKT tolerance
    max_iter : int, default=1000
        Maximum number of SMO pair updates
    verbose : bool, default=False
        Print training progress

    Attributes
    ----------
    classes_ : np.ndarray, shape (2,)
        The two training labels; classes_[1] is the positive class
    weights_ : np.ndarray, shape (n_features,)
        Non-negative weight vector w
    threshold_ : float
        Threshold; a point is positive when w·x - threshold > 0
    support_vectors_ : np.ndarray, shape (n_sv, n_features)
    sv_coef_ : np.ndarray, shape (n_sv,)
        α_i y_i of each support vector
    n_support_ : int
    """

    def __init__(
        self,
        c: float = 10.0,
        budget: Optional[int] = None,
        eps: float = 1e-6,
        max_iter: int = 1000,
        verbose: bool = False
    ):
        self.c = c
        self.budget = budget
        self.eps = eps
        self.max_iter = max_iter
        self.verbose = verbose

    def train(self, X: np.ndarray, y: np.ndarray) -> 'NNSVM':
        """
        Train on features X (n_samples × n_features) and binary labels y.

        Parameters:
            X: Training features
            y: Labels with exactly two distinct values; the larger is the
               positive class (classify returns 1 for it)

        Returns:
            self: Trained model

        Raises:
            ValueError: If y does not contain exactly two classes
        """
        X = np.asarray(X, dtype=float)
        y = np.asarray(y)
        if X.ndim != 2:
            raise ValueError(f"X must be 2D, got shape {X.shape}")
        if len(y) != X.shape[0]:
            raise ValueError(f"X and y must have the same length, got {X.shape[0]} and {len(y)}")

        self.classes_ = np.unique(y)
        if len(self.classes_) != 2:
            raise ValueError(
                f"NNSVM is a binary classifier; y must contain exactly 2 classes, "
                f"got {len(self.classes_)}"
            )

        signed = np.where(y == self.classes_[1], 1.0, -1.0)

        if self.verbose:
            print(f"Training NNSVM: {X.shape[0]} samples, {X.shape[1]} features, "
                  f"c={self.c}, eps={self.eps:g}, max_iter={self.max_iter}")

        self.solver_ = NNSMO(
            c=self.c,
            budget=self.budget,
            eps=self.eps,
            max_iter=self.max_iter,
            verbose=self.verbose
        )
        self.solver_.train(X, signed)

        self.support_vectors_, self.sv_coef_, self.weights_ = self.solver_.get_nnsvm()
        self.threshold_ = self.solver_.threshold_
        self.n_support_ = len(self.sv_coef_)

        if self.verbose:
            print(f"  Support vectors: {self.n_support_}, threshold: {self.threshold_:.4f}")

        return self

    def _check_fitted(self):
        if not hasattr(self, 'weights_'):
            raise ValueError("Model not fitted. Call train() first.")

    def decision_function(self, X: np.ndarray) -> np.ndarray:
        """w·x - threshold for each row of X (or a single vector)."""
        self._check_fitted()
        X = np.asarray(X, dtype=float)
        if X.shape[-1] != len(self.weights_):
            raise ValueError(
                f"Expected {len(self.weights_)} features, got {X.shape[-1]}"
            )
        return X @ self.weights_ - self.threshold_

    def classify(self, x: np.ndarray) -> int:
        """1 if w·x - threshold > 0, else 0."""
        return 1 if float(self.decision_function(np.ravel(x))) > 0.0 else 0

    def batch_classify(self, X: np.ndarray) -> np.ndarray:
        """classify() applied to every row of X."""
        return (self.decision_function(np.atleast_2d(X)) > 0.0).astype(int)

    def score(self, X: np.ndarray, y: np.ndarray) -> float:
        """Accuracy against labels given in the training label encoding."""
        predicted = self.classes_[self.batch_classify(X)]
        return float(np.mean(predicted == np.asarray(y)))
