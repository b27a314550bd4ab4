"""
Tests for kernels, the moment kd-tree and dual-tree local regression.
"""

import numpy as np
import pytest
from mlprototypes.dualtree import (
    GaussianKernel,
    EpanechnikovKernel,
    make_kernel,
    build_tree,
    squared_distance_range,
    LocalRegression
)


@pytest.fixture
def regression_data():
    """Non-negative 2D inputs with a smooth positive target."""
    rng = np.random.default_rng(7)
    X = rng.uniform(0.0, 1.0, size=(400, 2))
    y = 2.0 + np.sin(3.0 * X[:, 0]) + X[:, 1] ** 2 + 0.05 * rng.standard_normal(400)
    return X, y


class TestKernels:
    """Test kernel evaluation and extrinsic pruning."""

    def test_gaussian_values(self):
        kernel = GaussianKernel(2.0)
        assert kernel.eval_unnorm_on_sq(0.0) == 1.0
        assert kernel.eval_unnorm_on_sq(8.0) == pytest.approx(np.exp(-1.0))
        assert not kernel.can_prune_extrinsically((100.0, 200.0))

    def test_epanechnikov_values(self):
        kernel = EpanechnikovKernel(2.0)
        assert kernel.eval_unnorm_on_sq(0.0) == 1.0
        assert kernel.eval_unnorm_on_sq(2.0) == pytest.approx(0.5)
        assert kernel.eval_unnorm_on_sq(9.0) == 0.0

    def test_epanechnikov_support_pruning(self):
        kernel = EpanechnikovKernel(1.0)
        assert kernel.can_prune_extrinsically((1.0, 4.0))
        assert not kernel.can_prune_extrinsically((0.5, 4.0))

    def test_vectorised(self):
        values = GaussianKernel(1.0).eval_unnorm_on_sq(np.array([0.0, 1.0, 4.0]))
        assert values.shape == (3,)
        assert np.all(np.diff(values) < 0)

    def test_make_kernel(self):
        assert isinstance(make_kernel('Gaussian', 0.5), GaussianKernel)
        assert isinstance(make_kernel('epanechnikov', 0.5), EpanechnikovKernel)
        with pytest.raises(ValueError, match="Unknown kernel"):
            make_kernel('triangular', 0.5)

    def test_invalid_bandwidth(self):
        with pytest.raises(ValueError, match="bandwidth must be positive"):
            GaussianKernel(0.0)


class TestTree:
    """Test the kd-tree wrapper and its statistics."""

    def test_leaves_partition_points(self, regression_data):
        X, y = regression_data
        root = build_tree(X, y, leaf_size=16)
        leaves = [node for node in root.iter_nodes() if node.is_leaf]

        all_indices = np.concatenate([leaf.indices for leaf in leaves])
        np.testing.assert_array_equal(np.sort(all_indices), np.arange(len(X)))
        assert root.count == len(X)

    def test_bounding_boxes_contain_points(self, regression_data):
        X, _ = regression_data
        root = build_tree(X, leaf_size=16)
        for node in root.iter_nodes():
            pts = X[node.indices]
            assert np.all(pts >= node.lo) and np.all(pts <= node.hi)

    def test_root_statistics(self, regression_data):
        """Test that the root moments equal the full-data sums."""
        X, y = regression_data
        root = build_tree(X, y, leaf_size=16)
        z = np.hstack([np.ones((len(X), 1)), X])

        np.testing.assert_allclose(root.average_info, z.T @ z)
        np.testing.assert_allclose(root.weighted_average_info, z.T @ y)
        np.testing.assert_allclose(root.abs_weighted_average_info, np.abs(z).T @ np.abs(y))

    def test_children_overlap(self, regression_data):
        X, _ = regression_data
        root = build_tree(X, leaf_size=16)
        lesser, greater = root.children
        assert root.overlaps(lesser)
        assert not lesser.overlaps(greater)

    def test_invalid_leaf_size(self, regression_data):
        X, _ = regression_data
        with pytest.raises(ValueError, match="leaf_size must be positive"):
            build_tree(X, leaf_size=0)

    def test_squared_distance_range(self):
        a = build_tree(np.array([[0.0, 0.0], [1.0, 1.0]]))
        b = build_tree(np.array([[3.0, 0.0], [4.0, 1.0]]))
        lo, hi = squared_distance_range(a, b)
        assert lo == pytest.approx(4.0)
        assert hi == pytest.approx(17.0)

    def test_distance_range_overlapping_boxes(self):
        a = build_tree(np.array([[0.0, 0.0], [2.0, 2.0]]))
        b = build_tree(np.array([[1.0, 1.0], [3.0, 3.0]]))
        lo, _ = squared_distance_range(a, b)
        assert lo == 0.0


class TestLocalRegression:
    """Test the dual-tree estimates against brute force."""

    def test_validation(self):
        with pytest.raises(ValueError, match="relative_error must be non-negative"):
            LocalRegression(0.1, relative_error=-0.1)
        with pytest.raises(ValueError, match="Unknown kernel"):
            LocalRegression(0.1, kernel='cosine')

    def test_fit_requires_two_points(self):
        with pytest.raises(ValueError, match="At least 2 reference points"):
            LocalRegression(0.1).fit(np.ones((1, 2)), np.ones(1))

    def test_predict_before_fit(self):
        with pytest.raises(ValueError, match="Model not fitted"):
            LocalRegression(0.1).predict(np.ones((3, 2)))

    def test_query_shape(self, regression_data):
        X, y = regression_data
        model = LocalRegression(0.2).fit(X, y)
        with pytest.raises(ValueError, match="query must have shape"):
            model.predict(np.ones((3, 5)))

    def test_exact_when_no_error_allowed(self, regression_data):
        """Test that zero tolerances reproduce the brute-force estimate."""
        X, y = regression_data
        query = np.random.default_rng(1).uniform(0.1, 0.9, size=(50, 2))
        model = LocalRegression(0.15, relative_error=0.0, leaf_size=10).fit(X, y)

        np.testing.assert_allclose(model.predict(query), model.predict_naive(query), rtol=1e-8)
        np.testing.assert_allclose(model.used_error_, 0.0, atol=1e-12)

    def test_bichromatic_error_bound(self, regression_data):
        """Test that the approximate systems stay within the reported error."""
        X, y = regression_data
        query = np.random.default_rng(2).uniform(0.0, 1.0, size=(120, 2))
        model = LocalRegression(0.3, relative_error=0.05, leaf_size=10).fit(X, y)
        model.predict(query)
        lhs, rhs = model.compute_systems_naive(query)

        slack = 1e-9 * (1.0 + np.abs(lhs).max())
        assert np.all(np.abs(model.lhs_ - lhs) <= model.used_error_[:, None, None] + slack)
        assert np.all(np.abs(model.rhs_ - rhs) <= model.used_error_[:, None] + slack)

    def test_error_within_relative_budget(self, regression_data):
        """Test used error against relative_error times the exact L1 norm."""
        X, y = regression_data
        query = np.random.default_rng(3).uniform(0.0, 1.0, size=(80, 2))
        model = LocalRegression(0.3, relative_error=0.05, leaf_size=10).fit(X, y)
        model.predict(query)
        lhs, rhs = model.compute_systems_naive(query)

        l1 = np.abs(lhs).sum(axis=(1, 2)) + np.abs(rhs).sum(axis=1)
        assert np.all(model.used_error_ <= 0.05 * l1 * (1.0 + 1e-9))
        assert model.n_prunes_ > 0

    def test_every_reference_accounted_for(self, regression_data):
        X, y = regression_data
        query = np.random.default_rng(4).uniform(0.0, 1.0, size=(30, 2))
        model = LocalRegression(0.2, relative_error=0.1).fit(X, y)
        model.predict(query)
        np.testing.assert_allclose(model.pruned_, len(X))

    def test_monochromatic_leave_one_out(self, regression_data):
        """Test that predict() without queries leaves each point out."""
        X, y = regression_data
        model = LocalRegression(0.2, relative_error=0.0, leaf_size=10).fit(X, y)

        loo = model.predict()
        np.testing.assert_allclose(model.pruned_, len(X) - 1)
        np.testing.assert_allclose(loo, model.predict_naive(), rtol=1e-8)

        lhs, _ = model.compute_systems_naive()
        z = np.hstack([np.ones((len(X), 1)), X])
        # No self weight: the full sum minus K(0) z_i z_iᵀ
        full = np.einsum('qr,ri,rj->qij',
                         model.kernel.eval_unnorm_on_sq(
                             np.sum((X[:, None] - X[None]) ** 2, axis=2)), z, z)
        np.testing.assert_allclose(lhs[0], full[0] - np.outer(z[0], z[0]))

    def test_epanechnikov_accuracy(self, regression_data):
        """Test approximate predictions are close to exact ones."""
        X, y = regression_data
        query = np.random.default_rng(5).uniform(0.1, 0.9, size=(60, 2))
        model = LocalRegression(0.25, kernel='epanechnikov', relative_error=1e-5, leaf_size=10)
        model.fit(X, y)

        approx = model.predict(query)
        exact = model.predict_naive(query)
        np.testing.assert_allclose(approx, exact, atol=0.05)

    def test_recovers_linear_function(self):
        """Test that local linear regression is exact on a linear target."""
        rng = np.random.default_rng(6)
        X = rng.uniform(0.0, 1.0, size=(200, 2))
        y = 1.0 + 2.0 * X[:, 0] - 0.5 * X[:, 1]
        query = rng.uniform(0.2, 0.8, size=(20, 2))

        model = LocalRegression(0.3, relative_error=0.0).fit(X, y)
        expected = 1.0 + 2.0 * query[:, 0] - 0.5 * query[:, 1]
        np.testing.assert_allclose(model.predict(query), expected, atol=1e-8)

    def test_verbose(self, regression_data, capsys):
        X, y = regression_data
        LocalRegression(0.2, verbose=True).fit(X, y).predict(X[:10])
        assert "Dual-tree local regression" in capsys.readouterr().out
