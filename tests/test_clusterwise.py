"""
Tests for clusterwise (mixture of linear regressions) EM.
"""

import numpy as np
import pytest
from mlprototypes.regression import ClusterwiseRegression


@pytest.fixture
def two_lines():
    """Two well-separated noisy lines on [0, 1]."""
    rng = np.random.default_rng(0)
    n = 150
    x = rng.uniform(0.0, 1.0, size=(2 * n, 1))
    component = np.repeat([0, 1], n)
    intercepts = np.array([1.0, -1.0])
    slopes = np.array([2.0, -2.0])
    y = intercepts[component] + slopes[component] * x[:, 0] + 0.1 * rng.standard_normal(2 * n)
    return x, y, component


@pytest.fixture
def fitted(two_lines):
    x, y, _ = two_lines
    return ClusterwiseRegression(n_clusters=2, random_state=0).fit(x, y)


class TestInit:
    """Test parameter validation."""

    def test_validation(self):
        with pytest.raises(ValueError, match="n_clusters must be positive"):
            ClusterwiseRegression(n_clusters=0)
        with pytest.raises(ValueError, match="max_iter must be positive"):
            ClusterwiseRegression(max_iter=0)
        with pytest.raises(ValueError, match="tol must be positive"):
            ClusterwiseRegression(tol=0.0)
        with pytest.raises(ValueError, match="init must be"):
            ClusterwiseRegression(init='spectral')
        with pytest.raises(ValueError, match="min_bandwidth must be positive"):
            ClusterwiseRegression(min_bandwidth=0.0)

    def test_too_few_samples(self):
        with pytest.raises(ValueError, match="Need at least n_clusters=3 samples"):
            ClusterwiseRegression(n_clusters=3).fit(np.ones((2, 1)), np.ones(2))

    def test_predict_before_fit(self):
        with pytest.raises(ValueError, match="Model not fitted"):
            ClusterwiseRegression().predict(np.ones(1))


class TestFit:
    """Test recovery of a known mixture."""

    def test_recovers_lines(self, fitted):
        order = np.argsort(fitted.coefficients_[:, 0])
        coefficients = fitted.coefficients_[order]
        np.testing.assert_allclose(coefficients[0], [-1.0, -2.0], atol=0.1)
        np.testing.assert_allclose(coefficients[1], [1.0, 2.0], atol=0.1)

    def test_mixing_and_bandwidths(self, fitted):
        np.testing.assert_allclose(fitted.mixing_probabilities_, [0.5, 0.5], atol=0.05)
        assert fitted.mixing_probabilities_.sum() == pytest.approx(1.0)
        np.testing.assert_allclose(fitted.bandwidths_, 0.1, atol=0.03)

    def test_labels_match_components(self, fitted, two_lines):
        _, _, component = two_lines
        # Labels are defined up to a permutation
        agreement = np.mean(fitted.labels_ == component)
        assert max(agreement, 1 - agreement) > 0.97

    def test_responsibilities_are_distributions(self, fitted):
        R = fitted.responsibilities_
        assert R.shape == (300, 2)
        np.testing.assert_allclose(R.sum(axis=1), 1.0)

    def test_log_likelihood_non_decreasing(self, fitted):
        ll = np.array(fitted.history['log_likelihood'])
        assert np.all(np.diff(ll) >= -1e-8)
        assert fitted.log_likelihood_ == ll[-1]
        assert fitted.converged_
        assert fitted.n_iter_ == len(ll)

    def test_random_init(self, two_lines):
        """Test EM from random soft responsibilities."""
        x, y, _ = two_lines
        model = ClusterwiseRegression(n_clusters=2, init='random', max_iter=500, random_state=1)
        model.fit(x, y)
        ll = np.array(model.history['log_likelihood'])
        assert np.all(np.isfinite(ll))
        assert np.all(np.diff(ll) >= -1e-8)

    def test_single_cluster_is_least_squares(self, two_lines):
        x, y, _ = two_lines
        model = ClusterwiseRegression(n_clusters=1).fit(x, y)
        Z = np.hstack([np.ones((len(x), 1)), x])
        expected = np.linalg.lstsq(Z, y, rcond=None)[0]
        np.testing.assert_allclose(model.coefficients_[0], expected, atol=1e-8)

    def test_warns_when_not_converged(self, two_lines):
        x, y, _ = two_lines
        with pytest.warns(RuntimeWarning, match="EM did not converge"):
            ClusterwiseRegression(n_clusters=2, max_iter=1, init='random', random_state=0).fit(x, y)

    def test_verbose(self, two_lines, capsys):
        x, y, _ = two_lines
        ClusterwiseRegression(n_clusters=2, random_state=0, verbose=True).fit(x, y)
        assert "mean log-likelihood" in capsys.readouterr().out


class TestPredict:
    """Test prediction interfaces."""

    def test_mixture_prediction(self, fitted):
        x = np.array([[0.5]])
        expected = fitted.predict(x, cluster=0) * fitted.mixing_probabilities_[0] \
            + fitted.predict(x, cluster=1) * fitted.mixing_probabilities_[1]
        np.testing.assert_allclose(fitted.predict(x), expected)

    def test_single_point_returns_float(self, fitted):
        assert isinstance(fitted.predict(np.array([0.5])), float)
        assert isinstance(fitted.predict(np.array([0.5]), cluster=1), float)

    def test_invalid_cluster(self, fitted):
        with pytest.raises(ValueError, match="cluster must be in"):
            fitted.predict(np.array([0.5]), cluster=2)

    def test_feature_mismatch(self, fitted):
        with pytest.raises(ValueError, match="Expected 1 features"):
            fitted.predict(np.ones((2, 3)))

    def test_predict_with_error_picks_matching_line(self, fitted):
        """Test that the observed target selects its own component."""
        prediction, squared_error = fitted.predict_with_error(np.array([0.5]), 2.0)
        assert prediction == pytest.approx(2.0, abs=0.1)
        assert squared_error == pytest.approx((2.0 - prediction) ** 2)

        prediction, _ = fitted.predict_with_error(np.array([0.5]), -2.0)
        assert prediction == pytest.approx(-2.0, abs=0.1)

    def test_predict_with_error_batch(self, fitted, two_lines):
        x, y, _ = two_lines
        predictions, errors = fitted.predict_with_error(x, y)
        assert predictions.shape == errors.shape == (300,)
        assert np.mean(errors) < 0.05

    def test_predict_with_error_length_mismatch(self, fitted, two_lines):
        x, y, _ = two_lines
        with pytest.raises(ValueError, match="target must have"):
            fitted.predict_with_error(x, y[:-1])

    def test_predict_proba(self, fitted):
        proba = fitted.predict_proba(np.array([[0.5], [0.5]]), [2.0, -2.0])
        assert proba.shape == (2, 2)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)
        assert np.argmax(proba[0]) != np.argmax(proba[1])

    def test_repr(self, fitted):
        assert "n_clusters=2" in repr(fitted)
