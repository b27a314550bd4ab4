"""
Dual-tree Local Regression

Local linear regression whose kernel sums are approximated by a dual-tree
traversal with a guaranteed error bound.
"""

from .kernels import GaussianKernel, EpanechnikovKernel, make_kernel
from .tree import TreeNode, build_tree, squared_distance_range
from .local_regression import LocalRegression

__all__ = [
    # Kernels
    'GaussianKernel',
    'EpanechnikovKernel',
    'make_kernel',
    # Tree
    'TreeNode',
    'build_tree',
    'squared_distance_range',
    # Regression
    'LocalRegression',
]
