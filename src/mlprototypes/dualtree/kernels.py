"""
Smoothing kernels for dual-tree computations.

Kernels are evaluated unnormalised on squared distances, which is all a
local regression estimate needs since the normalising constant cancels
between the two sides of the weighted least-squares system.
"""

import numpy as np
from typing import Tuple, Union


class GaussianKernel:
    """K(d) = exp(-d² / (2h²))"""

    name = 'gaussian'

    def __init__(self, bandwidth: float):
        if bandwidth <= 0:
            raise ValueError(f"bandwidth must be positive, got {bandwidth}")
        self.bandwidth = float(bandwidth)
        self.bandwidth_sq = self.bandwidth ** 2

    def eval_unnorm_on_sq(self, distance_sq: Union[float, np.ndarray]):
        return np.exp(-0.5 * np.asarray(distance_sq) / self.bandwidth_sq)

    def can_prune_extrinsically(self, squared_distance_range: Tuple[float, float]) -> bool:
        """The Gaussian kernel has infinite support."""
        return False

    def __repr__(self) -> str:
        return f"GaussianKernel(bandwidth={self.bandwidth})"


class EpanechnikovKernel:
    """K(d) = max(1 - d² / h², 0)"""

    name = 'epanechnikov'

    def __init__(self, bandwidth: float):
        if bandwidth <= 0:
            raise ValueError(f"bandwidth must be positive, got {bandwidth}")
        self.bandwidth = float(bandwidth)
        self.bandwidth_sq = self.bandwidth ** 2

    def eval_unnorm_on_sq(self, distance_sq: Union[float, np.ndarray]):
        return np.maximum(1.0 - np.asarray(distance_sq) / self.bandwidth_sq, 0.0)

    def can_prune_extrinsically(self, squared_distance_range: Tuple[float, float]) -> bool:
        """True when every pair is outside the kernel support (zero contribution)."""
        return self.bandwidth_sq <= squared_distance_range[0]

    def __repr__(self) -> str:
        return f"EpanechnikovKernel(bandwidth={self.bandwidth})"


KERNELS = {
    'gaussian': GaussianKernel,
    'epanechnikov': EpanechnikovKernel,
}


def make_kernel(name: str, bandwidth: float):
    """Kernel instance by name ('gaussian' or 'epanechnikov')."""
    try:
        kernel_class = KERNELS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown kernel: {name}. Choose from {sorted(KERNELS)}"
        ) from None
    return kernel_class(bandwidth)
