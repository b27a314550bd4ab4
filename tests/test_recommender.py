"""
Tests for the CF recommender: data cleaning, parameters and recommendations.
"""

import numpy as np
import pytest
from mlprototypes.cf import CF


@pytest.fixture
def ratings():
    """(user, item, rating) table with 8 users and 6 items."""
    rated = {
        0: [(0, 5.0), (1, 3.0), (5, 1.0)],
        1: [(0, 4.0), (2, 2.0), (3, 5.0)],
        2: [(1, 1.0), (4, 4.0), (5, 2.0)],
        3: [(0, 5.0), (3, 4.0), (4, 1.0)],
        4: [(2, 3.0), (3, 2.0), (5, 5.0)],
        5: [(1, 4.0), (2, 4.0), (4, 2.0)],
        6: [(0, 2.0), (1, 5.0), (3, 3.0)],
        # User 7 has rated every item but one
        7: [(0, 3.0), (1, 3.0), (2, 3.0), (3, 3.0), (4, 3.0)],
    }
    rows = [(user, item, r) for user, pairs in rated.items() for item, r in pairs]
    return np.array(rows, dtype=float).T


@pytest.fixture
def cf(ratings):
    return CF(ratings, num_recs=2, num_users_for_similarity=3, rank=3, random_seed=0)


class TestDataCleaning:
    """Test conversion of the rating table to a sparse matrix."""

    def test_matrix_shape(self, cf):
        assert cf.cleaned_data.shape == (6, 8)
        assert cf.n_items == 6
        assert cf.n_users == 8

    def test_values_placed(self):
        """Test that ratings land at (item, user)."""
        data = np.array([[0, 1, 2], [1, 0, 1], [5.0, 3.0, 4.0]])
        cf = CF(data)
        dense = cf.cleaned_data.toarray()
        assert dense[1, 0] == 5.0
        assert dense[0, 1] == 3.0
        assert dense[1, 2] == 4.0

    def test_duplicates_keep_last(self):
        """Test that a repeated (user, item) pair keeps the last rating."""
        data = np.array([[0, 0, 1], [0, 0, 1], [1.0, 4.0, 2.0]])
        with pytest.warns(UserWarning, match="duplicate"):
            cf = CF(data)
        assert cf.cleaned_data.toarray()[0, 0] == 4.0
        assert cf.cleaned_data.nnz == 2

    def test_rejects_bad_shape(self):
        with pytest.raises(ValueError, match="data must have shape"):
            CF(np.ones((2, 4)))

    def test_rejects_negative_ids(self):
        with pytest.raises(ValueError, match="non-negative integers"):
            CF(np.array([[-1, 0], [0, 1], [1.0, 2.0]]))

    def test_setting_data_resets_factors(self, cf, ratings):
        """Test that new data clears a previous factorisation."""
        cf.fit()
        cf.data = ratings
        assert cf.W is None and cf.H is None


class TestParameters:
    """Test parameter validation and setters."""

    def test_invalid_num_recs_ignored(self, cf):
        with pytest.warns(UserWarning, match="num_recs"):
            cf.num_recs = 0
        assert cf.num_recs == 2

    def test_invalid_neighbourhood_ignored(self, cf):
        with pytest.warns(UserWarning, match="num_users_for_similarity"):
            cf.num_users_for_similarity = -1
        assert cf.num_users_for_similarity == 3

    def test_valid_setters(self, cf):
        cf.num_recs = 4
        cf.num_users_for_similarity = 1
        assert cf.num_recs == 4
        assert cf.num_users_for_similarity == 1

    def test_constructor_validation(self, ratings):
        with pytest.raises(ValueError, match="lambda_reg must be non-negative"):
            CF(ratings, lambda_reg=-1.0)
        with pytest.raises(ValueError, match="Unknown optimizer"):
            CF(ratings, optimizer='sgd')
        with pytest.raises(ValueError, match="rank must be positive"):
            CF(ratings, rank=0)

    def test_estimated_rank(self, ratings):
        """Test the density-based rank is capped by the matrix size."""
        cf = CF(ratings, random_seed=0).fit()
        assert cf.W.shape[1] <= min(cf.n_items, cf.n_users)


class TestFactorisation:
    """Test the ALS factorisation."""

    def test_rating_before_fit(self, cf):
        with pytest.raises(ValueError, match="Model not fitted"):
            _ = cf.rating

    def test_fit_shapes(self, cf):
        cf.fit()
        assert cf.W.shape == (6, 3)
        assert cf.H.shape == (3, 8)
        assert cf.rating.shape == (6, 8)
        assert len(cf.history['loss']) > 0

    def test_training_rmse_small(self, cf):
        """Test that the factorisation fits the observed ratings."""
        cf.lambda_reg = 0.01
        cf.max_iter = 200
        cf.fit()
        assert cf.training_rmse() < 1.0

    def test_predict(self, cf):
        cf.fit()
        assert cf.predict(user=1, item=2) == pytest.approx(cf.rating[2, 1])
        with pytest.raises(ValueError, match="user must be in"):
            cf.predict(user=8, item=0)


class TestRecommendations:
    """Test neighbourhood-based top-N recommendations."""

    def test_shape_all_users(self, cf):
        recs = cf.get_recommendations()
        assert recs.shape == (8, 2)
        assert recs.dtype.kind == 'i'

    def test_excludes_rated_items(self, cf):
        """Test that recommended items were not rated by the user."""
        recs = cf.get_recommendations(num=3)
        dense = cf._mask.toarray()
        for user, row in enumerate(recs):
            for item in row[row >= 0]:
                assert dense[item, user] == 0

    def test_padding_when_few_unrated(self, cf):
        """Test that rows are padded with -1 when too few items remain."""
        recs = cf.get_recommendations(users=[7], num=3)
        assert recs.shape == (1, 3)
        assert recs[0, 0] == 5
        np.testing.assert_array_equal(recs[0, 1:], [-1, -1])

    def test_no_duplicate_items(self, cf):
        recs = cf.get_recommendations(num=3)
        for row in recs:
            valid = row[row >= 0]
            assert len(np.unique(valid)) == len(valid)

    def test_selected_users_match_full_run(self, cf):
        """Test that a subset of users gets the same rows as a full run."""
        full = cf.get_recommendations()
        subset = cf.get_recommendations(users=[0, 3])
        np.testing.assert_array_equal(subset, full[[0, 3]])

    def test_single_user_id(self, cf):
        """Test that a scalar user id gives one row."""
        full = cf.get_recommendations()
        single = cf.get_recommendations(users=3)
        assert single.shape == (1, full.shape[1])
        np.testing.assert_array_equal(single[0], full[3])

    def test_validation(self, cf):
        with pytest.raises(ValueError, match="num must be positive"):
            cf.get_recommendations(num=0)
        with pytest.raises(ValueError, match="neighbours must be positive"):
            cf.get_recommendations(neighbours=0)
        with pytest.raises(ValueError, match="must be smaller than the number of users"):
            cf.get_recommendations(neighbours=8)
        with pytest.raises(ValueError, match="users must be in"):
            cf.get_recommendations(users=[10])


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
