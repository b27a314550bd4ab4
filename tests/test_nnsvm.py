"""
Tests for the non-negative SVM and its SMO solver.
"""

import warnings

import numpy as np
import pytest
from mlprototypes.svm import NNSMO, NNSVM
from mlprototypes.svm.nnsmo import _positive_part_line_search


@pytest.fixture
def separable_data():
    """Two well-separated classes; feature 2 favours the negative class."""
    rng = np.random.default_rng(0)
    n = 20
    X_pos = np.column_stack([
        3.0 + rng.uniform(-0.5, 0.5, n),
        3.0 + rng.uniform(-0.5, 0.5, n),
        rng.uniform(0.0, 0.5, n),
    ])
    X_neg = np.column_stack([
        1.0 + rng.uniform(-0.5, 0.5, n),
        1.0 + rng.uniform(-0.5, 0.5, n),
        2.0 + rng.uniform(0.0, 1.0, n),
    ])
    X = np.vstack([X_pos, X_neg])
    y = np.concatenate([np.ones(n, dtype=int), np.zeros(n, dtype=int)])
    return X, y


class TestLineSearch:
    """Test the exact line search over the piecewise quadratic dual."""

    def test_smooth_quadratic(self):
        """Test the unconstrained maximiser with no breakpoints."""
        lam = _positive_part_line_search(np.zeros(2), np.array([1.0, 1.0]), 2.0, 10.0)
        assert lam == pytest.approx(1.0)

    def test_across_breakpoint(self):
        """Test a maximiser where one coordinate is clipped by the positive part."""
        lam = _positive_part_line_search(np.array([-1.0, 0.0]), np.array([1.0, 1.0]), 1.0, 10.0)
        assert lam == pytest.approx(1.0)

    def test_capped_by_box(self):
        lam = _positive_part_line_search(np.zeros(1), np.array([1.0]), 5.0, 2.0)
        assert lam == 2.0

    def test_no_ascent(self):
        """Test that a non-positive slope gives a zero step."""
        assert _positive_part_line_search(np.ones(2), np.ones(2), -1.0, 1.0) == 0.0

    def test_flat_direction(self):
        """Test that an inactive direction runs to the box."""
        lam = _positive_part_line_search(np.array([-5.0]), np.array([1.0]), 1.0, 3.0)
        assert lam == 3.0


class TestNNSMO:
    """Test the SMO solver."""

    def test_validation(self):
        with pytest.raises(ValueError, match="c must be positive"):
            NNSMO(c=0.0)
        with pytest.raises(ValueError, match="budget must be at least 2"):
            NNSMO(budget=1)
        with pytest.raises(ValueError, match="eps must be positive"):
            NNSMO(eps=0.0)
        with pytest.raises(ValueError, match="max_iter must be positive"):
            NNSMO(max_iter=0)

    def test_rejects_non_signed_labels(self, separable_data):
        X, y = separable_data
        with pytest.raises(ValueError, match="only -1 and \\+1"):
            NNSMO().train(X, y)

    def test_converges(self, separable_data):
        X, y = separable_data
        solver = NNSMO(c=10.0).train(X, np.where(y == 1, 1.0, -1.0))
        assert solver.converged_
        assert solver.n_iter_ < solver.max_iter

    def test_dual_feasibility(self, separable_data):
        """Test the box and equality constraints on α."""
        X, y = separable_data
        signed = np.where(y == 1, 1.0, -1.0)
        solver = NNSMO(c=10.0).train(X, signed)

        assert np.all(solver.alpha_ >= 0.0)
        assert np.all(solver.alpha_ <= solver.c)
        assert abs(np.dot(solver.alpha_, signed)) < 1e-8

    def test_dual_objective_non_decreasing(self, separable_data):
        X, y = separable_data
        solver = NNSMO(c=10.0).train(X, np.where(y == 1, 1.0, -1.0))
        objective = np.array(solver.history['dual_objective'])
        assert np.all(np.diff(objective) >= -1e-9)

    def test_weights_are_positive_part(self, separable_data):
        """Test w = [Σ α_i y_i x_i]_+."""
        X, y = separable_data
        signed = np.where(y == 1, 1.0, -1.0)
        solver = NNSMO(c=10.0).train(X, signed)
        np.testing.assert_allclose(
            solver.weights_, np.maximum(X.T @ (solver.alpha_ * signed), 0.0)
        )

    def test_budget_limits_support_vectors(self, separable_data):
        """Test that no more than `budget` points become support vectors."""
        X, y = separable_data
        solver = NNSMO(c=10.0, budget=4, max_iter=200)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RuntimeWarning)
            solver.train(X, np.where(y == 1, 1.0, -1.0))
        assert np.count_nonzero(solver.alpha_) <= 4

    @pytest.mark.parametrize("budget", [2, 3, 5, 7])
    @pytest.mark.parametrize("seed", range(5))
    def test_budget_holds_on_random_data(self, budget, seed):
        """Test the support-vector cap for odd and even budgets on overlapping classes."""
        rng = np.random.default_rng(seed)
        X = rng.uniform(0.0, 1.0, size=(60, 4))
        y = np.where(rng.uniform(size=60) < 0.5, 1.0, -1.0)
        y[:2] = [1.0, -1.0]

        solver = NNSMO(c=1.0, budget=budget, max_iter=300)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RuntimeWarning)
            solver.train(X, y)
        assert np.count_nonzero(solver.alpha_) <= budget

    def test_last_slot_pair_keeps_a_support_vector(self):
        """Test that with one slot left the pair never holds two new points."""
        solver = NNSMO(c=1.0, budget=3)
        y = np.array([1.0, 1.0, -1.0, -1.0])
        alpha = np.array([0.5, 0.0, 0.5, 0.0])
        lower, upper = solver._bounds(y)
        # Unrestricted choice would be the two new points 1 and 3
        yg = np.array([0.2, 1.0, 0.1, -1.0])

        i, j, violation = solver._select_working_pair(
            y * alpha, yg, lower, upper, alpha > 0, budget=3
        )
        assert alpha[i] > 0 or alpha[j] > 0
        assert (i, j) == (0, 3)
        assert violation == pytest.approx(1.2)

    def test_get_nnsvm_before_train(self):
        with pytest.raises(ValueError, match="Model not fitted"):
            NNSMO().get_nnsvm()

    def test_get_nnsvm(self, separable_data):
        X, y = separable_data
        signed = np.where(y == 1, 1.0, -1.0)
        solver = NNSMO(c=10.0).train(X, signed)
        sv, coef, weights = solver.get_nnsvm()

        assert sv.shape[0] == coef.shape[0] == np.count_nonzero(solver.alpha_)
        assert sv.shape[1] == X.shape[1]
        np.testing.assert_allclose(weights, solver.weights_)

    def test_warns_when_not_converged(self, separable_data):
        X, y = separable_data
        with pytest.warns(RuntimeWarning, match="did not converge"):
            NNSMO(c=10.0, max_iter=1, eps=1e-12).train(X, np.where(y == 1, 1.0, -1.0))


class TestNNSVM:
    """Test the classifier interface."""

    def test_separates_training_data(self, separable_data):
        X, y = separable_data
        model = NNSVM(c=10.0).train(X, y)
        assert model.score(X, y) == 1.0

    def test_weights_non_negative(self, separable_data):
        """Test that the feature favouring the negative class gets zero weight."""
        X, y = separable_data
        model = NNSVM(c=10.0).train(X, y)
        assert np.all(model.weights_ >= 0.0)
        assert model.weights_[2] == 0.0
        assert model.weights_[:2].sum() > 0.0

    def test_classify_returns_zero_or_one(self, separable_data):
        X, y = separable_data
        model = NNSVM(c=10.0).train(X, y)
        assert model.classify(X[0]) == 1
        assert model.classify(X[-1]) == 0

    def test_batch_classify_matches_classify(self, separable_data):
        X, y = separable_data
        model = NNSVM(c=10.0).train(X, y)
        batch = model.batch_classify(X)
        assert batch.dtype.kind == 'i'
        np.testing.assert_array_equal(batch, [model.classify(x) for x in X])

    def test_string_labels(self, separable_data):
        """Test that the larger label is treated as the positive class."""
        X, y = separable_data
        labels = np.where(y == 1, 'spam', 'ham')
        model = NNSVM(c=10.0).train(X, labels)
        assert list(model.classes_) == ['ham', 'spam']
        assert model.score(X, labels) == 1.0

    def test_support_vectors(self, separable_data):
        X, y = separable_data
        model = NNSVM(c=10.0).train(X, y)
        assert model.n_support_ == len(model.sv_coef_) == model.support_vectors_.shape[0]
        assert model.n_support_ >= 2

    def test_rejects_multiclass(self, separable_data):
        X, _ = separable_data
        y = np.arange(len(X)) % 3
        with pytest.raises(ValueError, match="exactly 2 classes"):
            NNSVM().train(X, y)

    def test_rejects_length_mismatch(self, separable_data):
        X, y = separable_data
        with pytest.raises(ValueError, match="same length"):
            NNSVM().train(X, y[:-1])

    def test_unfitted(self):
        with pytest.raises(ValueError, match="Model not fitted"):
            NNSVM().classify(np.ones(3))

    def test_feature_mismatch(self, separable_data):
        X, y = separable_data
        model = NNSVM(c=10.0).train(X, y)
        with pytest.raises(ValueError, match="Expected 3 features"):
            model.batch_classify(np.ones((2, 4)))

    def test_verbose(self, separable_data, capsys):
        X, y = separable_data
        NNSVM(c=10.0, verbose=True).train(X, y)
        out = capsys.readouterr().out
        assert "Training NNSVM" in out
        assert "Support vectors" in out
