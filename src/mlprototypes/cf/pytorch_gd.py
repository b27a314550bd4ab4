"""
PyTorch gradient descent for masked matrix factorization.

An alternative to ALS that minimises the same objective

    L = Σ M_iu (v_iu - w_iᵀ h_u)² + λ(||W||² + ||H||²)

with automatic differentiation and a first-order optimizer. Useful for
large or GPU-resident rating matrices and as a cross-check on ALS.

Usage:
    >>> from mlprototypes.cf.pytorch_gd import PyTorchMFOptimizer
    >>> opt = PyTorchMFOptimizer(n_items=40, n_users=100, rank=5)
    >>> opt.fit(V, M, max_iter=200)
    >>> W, H = opt.get_factors()
"""

import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim
from typing import Tuple, Optional, Literal, Dict, List


# optimizer_type -> (torch optimizer class, extra keyword arguments)
_OPTIMIZERS = {
    'adam': (optim.Adam, {}),
    'sgd': (optim.SGD, {'momentum': 0.9}),
    'adamw': (optim.AdamW, {}),
}


class PyTorchMFOptimizer:
    """
    PyTorch-based optimizer for masked matrix factorization.

    Parameters
    ----------
    n_items : int
        Number of items (rows of V)
    n_users : int
        Number of users (columns of V)
    rank : int, default=10
        Rank of the factorisation
    lambda_reg : float, default=0.1
        L2 regularization parameter
    optimizer_type : {'adam', 'sgd', 'adamw'}, default='adam'
        Optimizer to use
    lr : float, default=0.05
        Learning rate
    device : {'cpu', 'cuda', 'mps'}, default='cpu'
        Device to run on
    random_seed : int, optional
        Seed for the factor initialisation

    Attributes
    ----------
    W : torch.nn.Parameter, shape (n_items, rank)
        Item latent factors
    H : torch.nn.Parameter, shape (rank, n_users)
        User latent factors
    history : dict
        Training history (loss, reconstruction_loss, regularization_loss)
    n_iter_ : int
        Gradient steps taken by the last fit
    converged_ : bool
        Whether the last fit met the tolerance
    """

    def __init__(
        self,
        n_items: int,
        n_users: int,
        rank: int = 10,
        lambda_reg: float = 0.1,
        optimizer_type: Literal['adam', 'sgd', 'adamw'] = 'adam',
        lr: float = 0.05,
        device: Literal['cpu', 'cuda', 'mps'] = 'cpu',
        random_seed: Optional[int] = None
    ):
        if rank < 1:
            raise ValueError(f"rank must be positive, got {rank}")
        if lambda_reg < 0:
            raise ValueError(f"lambda_reg must be non-negative, got {lambda_reg}")
        if optimizer_type not in _OPTIMIZERS:
            raise ValueError(
                f"Unknown optimizer: {optimizer_type}. Choose from {sorted(_OPTIMIZERS)}"
            )

        self.n_items = n_items
        self.n_users = n_users
        self.rank = rank
        self.lambda_reg = lambda_reg
        self.optimizer_type = optimizer_type
        self.lr = lr
        self.device = device

        generator = torch.Generator(device='cpu')
        if random_seed is not None:
            generator.manual_seed(random_seed)
        else:
            generator.seed()

        # Small random start, as in the ALS initialisation
        self.W = nn.Parameter(0.1 * torch.randn(n_items, rank, generator=generator).to(device))
        self.H = nn.Parameter(0.1 * torch.randn(rank, n_users, generator=generator).to(device))

        optimizer_class, extra = _OPTIMIZERS[optimizer_type]
        self.optimizer = optimizer_class([self.W, self.H], lr=lr, **extra)

        self.history: Dict[str, List[float]] = {
            key: [] for key in ('loss', 'reconstruction_loss', 'regularization_loss')
        }
        self.n_iter_ = 0
        self.converged_ = False

    def compute_loss(
        self,
        V: torch.Tensor,
        M: torch.Tensor
    ) -> Tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
        """
        Total, reconstruction and regularization loss.

        Parameters
        ----------
        V : torch.Tensor, shape (n_items, n_users)
            Rating matrix
        M : torch.Tensor, shape (n_items, n_users)
            Observation mask / weights
        """
        residuals = V - self.W @ self.H
        recon_loss = torch.sum(M * residuals ** 2)
        reg_loss = self.lambda_reg * (torch.sum(self.W ** 2) + torch.sum(self.H ** 2))
        return recon_loss + reg_loss, recon_loss, reg_loss

    def fit(
        self,
        V: np.ndarray,
        M: np.ndarray,
        max_iter: int = 500,
        tol: float = 1e-6,
        verbose: bool = True
    ) -> 'PyTorchMFOptimizer':
        """
        Fit the factors by gradient descent.

        Parameters
        ----------
        V : np.ndarray, shape (n_items, n_users)
            Rating matrix (unobserved entries are ignored through M)
        M : np.ndarray, shape (n_items, n_users)
            Observation mask / weights
        max_iter : int, default=500
            Maximum number of gradient steps
        tol : float, default=1e-6
            Stop once the relative change of the loss falls below tol
        verbose : bool, default=True
            Print progress every 50 steps

        Returns
        -------
        self : PyTorchMFOptimizer
        """
        if V.shape != (self.n_items, self.n_users) or M.shape != V.shape:
            raise ValueError(
                f"V and M must have shape ({self.n_items}, {self.n_users}), "
                f"got {V.shape} and {M.shape}"
            )

        # Unobserved ratings may be NaN; they carry zero weight anyway
        V_torch = torch.as_tensor(np.nan_to_num(V), dtype=torch.float32, device=self.device)
        M_torch = torch.as_tensor(M, dtype=torch.float32, device=self.device)

        self.converged_ = False
        previous = None

        for step in range(max_iter):
            self.optimizer.zero_grad()
            total, recon, reg = self.compute_loss(V_torch, M_torch)
            total.backward()
            self.optimizer.step()

            current = total.item()
            for key, value in zip(self.history, (current, recon.item(), reg.item())):
                self.history[key].append(value)
            self.n_iter_ = step + 1

            if verbose and step % 50 == 0:
                print(f"Step {step:4d}: loss = {current:10.4f} "
                      f"(recon = {recon.item():10.4f}, reg = {reg.item():8.4f})")

            if previous is not None and abs(previous - current) <= tol * (abs(previous) + 1e-10):
                self.converged_ = True
                if verbose:
                    print(f"✓ Converged at iteration {step}")
                break
            previous = current

        if verbose and not self.converged_:
            print(f"Stopped after {max_iter} steps without convergence")

        return self

    def get_factors(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Factors as NumPy arrays.

        Returns
        -------
        W : np.ndarray, shape (n_items, rank)
        H : np.ndarray, shape (rank, n_users)
        """
        return (
            self.W.detach().cpu().numpy().astype(float),
            self.H.detach().cpu().numpy().astype(float)
        )

    def reconstruction_error(self, V: np.ndarray, M: np.ndarray) -> float:
        """Masked reconstruction error (without regularization)."""
        if self.n_iter_ == 0:
            raise RuntimeError("Must fit model first")
        W, H = self.get_factors()
        return float(np.sum(M * (V - W @ H) ** 2))

    def predict(self) -> np.ndarray:
        """Reconstructed rating matrix W H."""
        W, H = self.get_factors()
        return W @ H


def compare_als_vs_pytorch(
    V: np.ndarray,
    M: np.ndarray,
    rank: int = 5,
    lambda_reg: float = 0.1,
    max_iter: int = 50,
    random_seed: int = 42,
    verbose: bool = True
) -> Dict[str, object]:
    """
    Fit the same masked factorisation with ALS and with PyTorch.

    Returns
    -------
    results : dict
        - W_als, H_als, W_pytorch, H_pytorch: factors
        - recon_error_als, recon_error_pytorch: masked reconstruction errors
        - final_loss_als, final_loss_pytorch: regularised losses
        - als_losses, pytorch_losses: loss curves
    """
    from .als import run_als, compute_reconstruction_error

    n_items, n_users = V.shape

    if verbose:
        print("=" * 60)
        print("Comparing ALS vs PyTorch Gradient Descent")
        print("=" * 60)
        print(f"Problem size: {n_items} items × {n_users} users, rank {rank}")
        print()

    W_als, H_als, als_losses = run_als(
        V, M, rank, lambda_reg=lambda_reg, max_iter=max_iter, random_seed=random_seed
    )
    recon_error_als = compute_reconstruction_error(W_als, H_als, V, M)

    # Gradient descent needs many more (cheaper) steps than ALS
    optimizer = PyTorchMFOptimizer(
        n_items, n_users, rank=rank, lambda_reg=lambda_reg,
        lr=0.05, random_seed=random_seed
    )
    optimizer.fit(V, M, max_iter=max_iter * 20, verbose=verbose)
    W_pt, H_pt = optimizer.get_factors()
    recon_error_pytorch = optimizer.reconstruction_error(V, M)

    if verbose:
        print()
        print(f"{'Metric':<30} {'ALS':>12} {'PyTorch':>12}")
        print("-" * 60)
        print(f"{'Final Loss':<30} {als_losses[-1]:12.4f} {optimizer.history['loss'][-1]:12.4f}")
        print(f"{'Reconstruction Error':<30} {recon_error_als:12.4f} {recon_error_pytorch:12.4f}")

    return {
        'W_als': W_als,
        'H_als': H_als,
        'W_pytorch': W_pt,
        'H_pytorch': H_pt,
        'recon_error_als': recon_error_als,
        'recon_error_pytorch': recon_error_pytorch,
        'final_loss_als': als_losses[-1],
        'final_loss_pytorch': optimizer.history['loss'][-1],
        'als_losses': als_losses,
        'pytorch_losses': optimizer.history['loss']
    }
