"""
kd-tree with per-node moment statistics for local regression.

The partition itself comes from scipy's cKDTree; every node is wrapped in a
TreeNode that adds the bounding box of its points and, for reference trees,
the moments a local linear regression needs. With z = [1, x]:

    average_info          = Σ z zᵀ          ((D+1) × (D+1))
    weighted_average_info = Σ y z           (D+1)

together with the same sums taken over absolute values, which bound how far
a kernel-weighted sum can move when the kernel value varies across the node.
"""

import numpy as np
from scipy.spatial import cKDTree
from typing import Optional, List, Tuple


class TreeNode:
    """
    One kd-tree node.

    Attributes:
        indices: Indices (into the original point set) of the node's points
        start, end: Position of the node's points in the tree ordering; two
                    nodes of the same tree share points iff these overlap
        lo, hi: Bounding box
        children: [] for leaves, else [lesser, greater]
    """

    def __init__(self, indices: np.ndarray, start: int, end: int, points: np.ndarray):
        self.indices = indices
        self.start = start
        self.end = end
        self.count = len(indices)
        node_points = points[indices]
        self.lo = node_points.min(axis=0)
        self.hi = node_points.max(axis=0)
        self.children: List['TreeNode'] = []

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def overlaps(self, other: 'TreeNode') -> bool:
        return self.start < other.end and other.start < self.end

    def compute_statistics(self, points: np.ndarray, targets: np.ndarray):
        """Moment statistics of the node's reference points."""
        if self.is_leaf:
            z = np.hstack([np.ones((self.count, 1)), points[self.indices]])
            y = targets[self.indices]
            self.average_info = z.T @ z
            self.abs_average_info = np.abs(z).T @ np.abs(z)
            self.weighted_average_info = z.T @ y
            self.abs_weighted_average_info = np.abs(z).T @ np.abs(y)
            return

        # Combine bottom-up from the children
        for child in self.children:
            child.compute_statistics(points, targets)
        self.average_info = sum(c.average_info for c in self.children)
        self.abs_average_info = sum(c.abs_average_info for c in self.children)
        self.weighted_average_info = sum(c.weighted_average_info for c in self.children)
        self.abs_weighted_average_info = sum(c.abs_weighted_average_info for c in self.children)

    def iter_nodes(self):
        """Pre-order traversal."""
        yield self
        for child in self.children:
            yield from child.iter_nodes()

    def __repr__(self) -> str:
        return f"TreeNode(count={self.count}, leaf={self.is_leaf})"


def build_tree(
    points: np.ndarray,
    targets: Optional[np.ndarray] = None,
    leaf_size: int = 20
) -> TreeNode:
    """
    Build a kd-tree over `points` (n × D).

    Parameters:
        points: Point coordinates
        targets: Regression targets; when given, every node gets the moment
                 statistics used for approximating reference contributions
        leaf_size: Maximum number of points per leaf (approximately; nodes of
                   duplicated points may exceed it)

    Returns:
        root: Root TreeNode
    """
    if leaf_size < 1:
        raise ValueError(f"leaf_size must be positive, got {leaf_size}")

    kdtree = cKDTree(points, leafsize=leaf_size)
    root = _wrap(kdtree.tree, points)
    if targets is not None:
        root.compute_statistics(points, np.asarray(targets, dtype=float))
    return root


def _wrap(node, points: np.ndarray) -> TreeNode:
    wrapped = TreeNode(np.asarray(node.indices), node.start_idx, node.end_idx, points)
    if node.lesser is not None and node.greater is not None:
        wrapped.children = [_wrap(node.lesser, points), _wrap(node.greater, points)]
    return wrapped


def squared_distance_range(a: TreeNode, b: TreeNode) -> Tuple[float, float]:
    """Minimum and maximum squared distance between the boxes of two nodes."""
    gap = np.maximum(0.0, np.maximum(b.lo - a.hi, a.lo - b.hi))
    span = np.maximum(b.hi - a.lo, a.hi - b.lo)
    return float(np.dot(gap, gap)), float(np.dot(span, span))
