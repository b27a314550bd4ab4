"""
Collaborative Filtering

Masked alternating least squares factorisation of a (user, item, rating)
table and neighbourhood-based top-N recommendation.
"""

from .als import (
    update_item_factors,
    update_user_factors,
    compute_reconstruction_error,
    run_als
)
from .losses import reconstruction_loss, compute_rmse
from .recommender import CF

# PyTorch implementation (optional dependency)
try:
    from .pytorch_gd import PyTorchMFOptimizer, compare_als_vs_pytorch
    PYTORCH_AVAILABLE = True
except ImportError:
    PYTORCH_AVAILABLE = False
    PyTorchMFOptimizer = None
    compare_als_vs_pytorch = None

__all__ = [
    # ALS
    'update_item_factors',
    'update_user_factors',
    'compute_reconstruction_error',
    'run_als',
    # Losses
    'reconstruction_loss',
    'compute_rmse',
    # Recommender
    'CF',
    # PyTorch
    'PyTorchMFOptimizer',
    'compare_als_vs_pytorch',
    'PYTORCH_AVAILABLE',
]
