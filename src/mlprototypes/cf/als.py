"""
Alternating Least Squares (ALS) update functions for collaborative filtering.

The rating matrix V (items × users) is only partially observed. With the
observation mask M (M[i,u] = 1 if user u rated item i) the factorisation
V ≈ W H minimises

    L = Σ_{i,u} M_iu (v_iu - w_iᵀ h_u)² + λ(||W||² + ||H||²)

where W is items × rank and H is rank × users. Any non-negative weight
matrix can be passed in place of M (confidence-weighted ALS).

ALS alternates between:
1. Fixing H, updating every item row w_i
2. Fixing W, updating every user column h_u

Each update has a closed-form solution obtained by setting the gradient to zero.
"""

import numpy as np


def _regularisation(weights: np.ndarray, lambda_reg: float, weighted: bool) -> np.ndarray:
    """
    Per-row ridge strength.

    With `weighted=True` each row's λ is scaled by its number (total weight)
    of observations, which keeps heavy raters from being under-regularised.
    """
    counts = np.sum(weights, axis=1)
    if weighted:
        return lambda_reg * np.maximum(counts, 1.0)
    return np.full(weights.shape[0], lambda_reg)


def update_item_factors(
    H: np.ndarray,
    V: np.ndarray,
    M: np.ndarray,
    lambda_reg: float,
    weighted_regularization: bool = False
) -> np.ndarray:
    """
    Update item latent factors W given fixed user factors H.

    For each item i:
        w_i = (H M_i Hᵀ + λI)⁻¹ H M_i v_i

    where M_i = diag(M[i, :]) and v_i is the i-th row of V.

    Parameters:
        H: User latent factors (rank × users)
        V: Rating matrix (items × users); unobserved entries are ignored
        M: Observation mask / weights (items × users)
        lambda_reg: Regularization parameter (λ >= 0)
        weighted_regularization: Scale λ by each item's number of ratings

    Returns:
        W: Updated item latent factors (items × rank)

    Example:
        >>> H = np.random.randn(5, 100)     # rank 5, 100 users
        >>> V = np.random.rand(40, 100)     # 40 items
        >>> M = (np.random.rand(40, 100) < 0.2).astype(float)
        >>> W = update_item_factors(H, V, M, lambda_reg=0.1)
        >>> W.shape
        (40, 5)

    Notes:
        - Solves all item systems in one batched np.linalg.solve call
        - O(items × rank³) per update
    """
    rank = H.shape[0]
    lambdas = _regularisation(M, lambda_reg, weighted_regularization)

    # Batched gram matrices: A[i] = H diag(M[i]) Hᵀ + λ_i I
    A = np.einsum('ku,iu,lu->ikl', H, M, H)
    A += lambdas[:, None, None] * np.eye(rank)[None, :, :]

    # Batched targets: b[i] = H (M[i] * v_i)
    b = (M * V) @ H.T  # (items, rank)

    return np.linalg.solve(A, b[:, :, None])[:, :, 0]


def update_user_factors(
    W: np.ndarray,
    V: np.ndarray,
    M: np.ndarray,
    lambda_reg: float,
    weighted_regularization: bool = False
) -> np.ndarray:
    """
    Update user latent factors H given fixed item factors W.

    For each user u:
        h_u = (Wᵀ M_u W + λI)⁻¹ Wᵀ M_u v_u

    where M_u = diag(M[:, u]) and v_u is the u-th column of V.

    Parameters:
        W: Item latent factors (items × rank)
        V: Rating matrix (items × users)
        M: Observation mask / weights (items × users)
        lambda_reg: Regularization parameter (λ >= 0)
        weighted_regularization: Scale λ by each user's number of ratings

    Returns:
        H: Updated user latent factors (rank × users)

    Notes:
        - This step is typically the bottleneck (users >> items)
    """
    rank = W.shape[1]
    lambdas = _regularisation(M.T, lambda_reg, weighted_regularization)

    A = np.einsum('ik,iu,il->ukl', W, M, W)
    A += lambdas[:, None, None] * np.eye(rank)[None, :, :]

    b = (M * V).T @ W  # (users, rank)

    return np.linalg.solve(A, b[:, :, None])[:, :, 0].T


def compute_reconstruction_error(
    W: np.ndarray,
    H: np.ndarray,
    V: np.ndarray,
    M: np.ndarray
) -> float:
    """
    Compute masked reconstruction error (without regularization).

    Error = Σ_{i,u} M_iu (v_iu - w_iᵀ h_u)²

    Parameters:
        W: Item factors (items × rank)
        H: User factors (rank × users)
        V: Rating matrix (items × users)
        M: Observation mask / weights (items × users)

    Returns:
        error: Scalar reconstruction error

    Example:
        >>> error = compute_reconstruction_error(W, H, V, M)
        >>> print(f"Observed RMSE: {np.sqrt(error / M.sum()):.4f}")
    """
    residuals = V - W @ H
    return float(np.sum(M * residuals ** 2))


def run_als(
    V: np.ndarray,
    M: np.ndarray,
    rank: int,
    lambda_reg: float = 0.1,
    max_iter: int = 50,
    tol: float = 1e-5,
    weighted_regularization: bool = False,
    random_seed=None
):
    """
    Alternate item and user updates until the relative change in the
    regularised loss falls below `tol`.

    Returns:
        W: Item factors (items × rank)
        H: User factors (rank × users)
        losses: Regularised loss after each iteration
    """
    if rank < 1:
        raise ValueError(f"rank must be positive, got {rank}")
    if lambda_reg < 0:
        raise ValueError(f"lambda_reg must be non-negative, got {lambda_reg}")

    rng = np.random.default_rng(random_seed)
    n_items, n_users = V.shape
    W = rng.standard_normal((n_items, rank)) * 0.1
    H = rng.standard_normal((rank, n_users)) * 0.1

    losses = []
    prev_loss = np.inf
    for _ in range(max_iter):
        H = update_user_factors(W, V, M, lambda_reg, weighted_regularization)
        W = update_item_factors(H, V, M, lambda_reg, weighted_regularization)

        loss = (
            compute_reconstruction_error(W, H, V, M)
            + lambda_reg * (np.sum(W ** 2) + np.sum(H ** 2))
        )
        losses.append(loss)
        if abs(prev_loss - loss) / (abs(prev_loss) + 1e-10) < tol:
            break
        prev_loss = loss

    return W, H, losses
