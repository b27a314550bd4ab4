"""
Loss functions for collaborative filtering.

1. Reconstruction loss: masked matrix factorization objective
2. RMSE on observed (or held-out) ratings
"""

import numpy as np
from typing import Optional


def reconstruction_loss(
    V: np.ndarray,
    W: np.ndarray,
    H: np.ndarray,
    M: np.ndarray,
    lambda_reg: float
) -> float:
    """
    Reconstruction loss with regularization.

    L = Σ M_iu (v_iu - w_iᵀ h_u)² + λ(||W||² + ||H||²)

    Parameters:
        V: Rating matrix (items × users)
        W: Item latent factors (items × rank)
        H: User latent factors (rank × users)
        M: Observation mask / weights (items × users)
        lambda_reg: Regularization strength

    Returns:
        loss: Scalar loss
    """
    residuals = V - W @ H
    weighted_se = np.sum(M * residuals ** 2)
    reg_term = lambda_reg * (np.sum(W ** 2) + np.sum(H ** 2))
    return float(weighted_se + reg_term)


def compute_rmse(V: np.ndarray, V_hat: np.ndarray, mask: Optional[np.ndarray] = None) -> float:
    """
    RMSE between observed and reconstructed ratings.

    Parameters:
        V: Rating matrix (items × users)
        V_hat: Reconstructed ratings (items × users)
        mask: Optional boolean mask selecting the entries to score

    Returns:
        rmse: Root mean squared error (NaN if the mask selects nothing)
    """
    residuals = V - V_hat
    if mask is not None:
        residuals = residuals[mask.astype(bool)]
    if residuals.size == 0:
        return float('nan')
    return float(np.sqrt(np.mean(residuals ** 2)))
