"""
Collaborative filtering recommender.

Input is a (user, item, rating) table with one rating per column:

    data[0, k] = user id, data[1, k] = item id, data[2, k] = rating

The table is cleaned into a sparse item × user rating matrix, factorised
with ALS (V ≈ W H), and recommendations for a user are the items with the
highest average factorised rating among that user's nearest neighbours in
rating space, excluding items the user already rated.

Usage:
    >>> cf = CF(data, num_recs=10)
    >>> recs = cf.get_recommendations()                 # all users
    >>> recs = cf.get_recommendations(users=[0, 3])     # selected users
    >>> recs = cf.get_recommendations([0, 3], num=5, neighbours=20)
"""

import numpy as np
import scipy.sparse as sparse
import warnings
from typing import Optional, Literal, Sequence
from sklearn.neighbors import NearestNeighbors

from .als import run_als
from .losses import compute_rmse


class CF:
    """
    Collaborative filtering via alternating least squares.

    Parameters
    ----------
    data : np.ndarray, shape (3, n_ratings)
        (user, item, rating) table; user and item ids are non-negative integers
    num_recs : int, default=5
        Default number of recommendations per user
    num_users_for_similarity : int, default=5
        Default neighbourhood size
    rank : int, optional
        Rank of the factorisation. If None, estimated from the density of
        the rating matrix as int(100 · density) + 5, capped by the matrix size.
    lambda_reg : float, default=0.1
        L2 regularization of the factors
    max_iter : int, default=50
        Maximum ALS iterations
    optimizer : {'als', 'pytorch'}, default='als'
        Factorisation backend
    verbose : bool, default=False
        Print factorisation progress
    random_seed : int, optional
        Seed for factor initialisation

    Attributes
    ----------
    cleaned_data : scipy.sparse.csc_matrix, shape (n_items, n_users)
        Observed ratings
    W : np.ndarray, shape (n_items, rank)
        Item factors
    H : np.ndarray, shape (rank, n_users)
        User factors
    rating : np.ndarray, shape (n_items, n_users)
        Factorised rating matrix W H

    Examples
    --------
    >>> data = np.array([[0, 0, 1, 2], [0, 1, 1, 0], [5., 3., 4., 1.]])
    >>> cf = CF(data, num_recs=1, num_users_for_similarity=1)
    >>> cf.get_recommendations(users=[2])
    """

    def __init__(
        self,
        data: np.ndarray,
        num_recs: int = 5,
        num_users_for_similarity: int = 5,
        rank: Optional[int] = None,
        lambda_reg: float = 0.1,
        max_iter: int = 50,
        optimizer: Literal['als', 'pytorch'] = 'als',
        verbose: bool = False,
        random_seed: Optional[int] = None
    ):
        if lambda_reg < 0:
            raise ValueError(f"lambda_reg must be non-negative, got {lambda_reg}")
        if max_iter < 1:
            raise ValueError(f"max_iter must be positive, got {max_iter}")
        if optimizer not in ('als', 'pytorch'):
            raise ValueError(f"Unknown optimizer: {optimizer}")
        if rank is not None and rank < 1:
            raise ValueError(f"rank must be positive, got {rank}")

        self._num_recs = 5
        self._num_users_for_similarity = 5
        self.num_recs = num_recs
        self.num_users_for_similarity = num_users_for_similarity

        self.rank = rank
        self.lambda_reg = lambda_reg
        self.max_iter = max_iter
        self.optimizer = optimizer
        self.verbose = verbose
        self.random_seed = random_seed

        self.W: Optional[np.ndarray] = None
        self.H: Optional[np.ndarray] = None
        self.history = {'loss': []}

        self.data = data

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    @property
    def num_recs(self) -> int:
        return self._num_recs

    @num_recs.setter
    def num_recs(self, recs: int):
        if recs < 1:
            warnings.warn("CF.num_recs: invalid value (< 1) ignored.", UserWarning)
            return
        self._num_recs = int(recs)

    @property
    def num_users_for_similarity(self) -> int:
        return self._num_users_for_similarity

    @num_users_for_similarity.setter
    def num_users_for_similarity(self, num: int):
        if num < 1:
            warnings.warn(
                "CF.num_users_for_similarity: invalid value (< 1) ignored.",
                UserWarning
            )
            return
        self._num_users_for_similarity = int(num)

    @property
    def data(self) -> np.ndarray:
        return self._data

    @data.setter
    def data(self, d: np.ndarray):
        """Set a new (user, item, rating) table; clears any factorisation."""
        d = np.asarray(d, dtype=float)
        if d.ndim != 2 or d.shape[0] != 3:
            raise ValueError(f"data must have shape (3, n_ratings), got {d.shape}")
        if d.shape[1] == 0:
            raise ValueError("data must contain at least one rating")
        ids = d[:2]
        if np.any(ids < 0) or not np.all(np.equal(np.mod(ids, 1), 0)):
            raise ValueError("user and item ids must be non-negative integers")
        self._data = d
        self.W = None
        self.H = None
        self.clean_data()

    @property
    def n_users(self) -> int:
        return self.cleaned_data.shape[1]

    @property
    def n_items(self) -> int:
        return self.cleaned_data.shape[0]

    @property
    def rating(self) -> np.ndarray:
        """Factorised rating matrix W H (items × users)."""
        if self.W is None or self.H is None:
            raise ValueError("Model not fitted. Call fit() first.")
        return self.W @ self.H

    # ------------------------------------------------------------------
    # Data preparation and factorisation
    # ------------------------------------------------------------------

    def clean_data(self):
        """
        Convert the (user, item, rating) table to a sparse item × user matrix.

        When a (user, item) pair occurs more than once the last rating wins.
        """
        users = self._data[0].astype(int)
        items = self._data[1].astype(int)
        ratings = self._data[2]

        n_users = users.max() + 1
        n_items = items.max() + 1

        keys = items * n_users + users
        _, first_in_reversed = np.unique(keys[::-1], return_index=True)
        keep = len(keys) - 1 - first_in_reversed
        if len(keep) < len(keys):
            warnings.warn(
                f"{len(keys) - len(keep)} duplicate (user, item) ratings; keeping the last.",
                UserWarning
            )

        self.cleaned_data = sparse.csc_matrix(
            (ratings[keep], (items[keep], users[keep])),
            shape=(n_items, n_users)
        )
        self._mask = sparse.csc_matrix(
            (np.ones(len(keep)), (items[keep], users[keep])),
            shape=(n_items, n_users)
        )

    def _estimate_rank(self) -> int:
        density = self.cleaned_data.nnz / float(self.n_items * self.n_users)
        return max(1, min(int(100 * density) + 5, self.n_items, self.n_users))

    def fit(self) -> 'CF':
        """
        Factorise the cleaned rating matrix.

        Returns:
            self: Fitted recommender
        """
        V = self.cleaned_data.toarray()
        M = self._mask.toarray()
        rank = self.rank if self.rank is not None else self._estimate_rank()

        if self.verbose:
            print("Factorising rating matrix...")
            print(f"  Data: {self.n_items} items × {self.n_users} users")
            print(f"  Observed: {int(M.sum())} ({100*M.mean():.1f}%)")
            print(f"  Rank: {rank}, λ={self.lambda_reg:.4f}, optimizer={self.optimizer}")

        if self.optimizer == 'als':
            self.W, self.H, losses = run_als(
                V, M, rank,
                lambda_reg=self.lambda_reg,
                max_iter=self.max_iter,
                random_seed=self.random_seed
            )
            self.history['loss'] = losses
        else:
            from .pytorch_gd import PyTorchMFOptimizer
            opt = PyTorchMFOptimizer(
                n_items=self.n_items,
                n_users=self.n_users,
                rank=rank,
                lambda_reg=self.lambda_reg,
                random_seed=self.random_seed
            )
            opt.fit(V, M, max_iter=self.max_iter, verbose=self.verbose)
            self.W, self.H = opt.get_factors()
            self.history['loss'] = opt.history['loss']

        if self.verbose:
            print(f"  Observed RMSE: {self.training_rmse():.4f}")
            print()

        return self

    def training_rmse(self) -> float:
        """RMSE of the factorisation on the observed ratings."""
        return compute_rmse(
            self.cleaned_data.toarray(), self.rating, self._mask.toarray()
        )

    def predict(self, user: int, item: int) -> float:
        """Factorised rating of `item` by `user`."""
        if not 0 <= user < self.n_users:
            raise ValueError(f"user must be in [0, {self.n_users - 1}], got {user}")
        if not 0 <= item < self.n_items:
            raise ValueError(f"item must be in [0, {self.n_items - 1}], got {item}")
        return float(self.rating[item, user])

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def get_recommendations(
        self,
        users: Optional[Sequence[int]] = None,
        num: Optional[int] = None,
        neighbours: Optional[int] = None
    ) -> np.ndarray:
        """
        Recommend items for the given users.

        Parameters:
            users: User ids; all users if None
            num: Recommendations per user; num_recs if None
            neighbours: Neighbourhood size; num_users_for_similarity if None

        Returns:
            recommendations: (len(users) × num) item ids, best first. Rows are
                             padded with -1 when a user has fewer unrated items.

        Raises:
            ValueError: If a user id is out of range or the neighbourhood is
                        larger than the number of other users
        """
        if self.W is None or self.H is None:
            self.fit()

        if users is None:
            users = np.arange(self.n_users)
        else:
            users = np.atleast_1d(np.asarray(users, dtype=int))
        num = self.num_recs if num is None else num
        neighbours = self.num_users_for_similarity if neighbours is None else neighbours

        if num < 1:
            raise ValueError(f"num must be positive, got {num}")
        if neighbours < 1:
            raise ValueError(f"neighbours must be positive, got {neighbours}")
        if neighbours > self.n_users - 1:
            raise ValueError(
                f"neighbours ({neighbours}) must be smaller than the number of users ({self.n_users})"
            )
        if np.any(users < 0) or np.any(users >= self.n_users):
            raise ValueError(f"users must be in [0, {self.n_users - 1}]")

        rating = self.rating
        query = self._create_query(rating, users)
        neighbourhood = self._get_neighbourhood(rating, query, users, neighbours)
        averages = self._calculate_average(rating, neighbourhood)
        return self._calculate_top_recommendations(averages, users, num)

    def _create_query(self, rating: np.ndarray, users: np.ndarray) -> np.ndarray:
        """Item preferences of the query users (users × items)."""
        return rating[:, users].T

    def _get_neighbourhood(
        self,
        rating: np.ndarray,
        query: np.ndarray,
        users: np.ndarray,
        neighbours: int
    ) -> np.ndarray:
        """Nearest other users in rating space (len(users) × neighbours)."""
        knn = NearestNeighbors(n_neighbors=neighbours + 1)
        knn.fit(rating.T)
        _, candidates = knn.kneighbors(query)

        neighbourhood = np.empty((len(users), neighbours), dtype=int)
        for row, user in enumerate(users):
            others = candidates[row][candidates[row] != user]
            neighbourhood[row] = others[:neighbours]
        return neighbourhood

    def _calculate_average(self, rating: np.ndarray, neighbourhood: np.ndarray) -> np.ndarray:
        """Average neighbour rating of every item (len(users) × items)."""
        return np.mean(rating.T[neighbourhood], axis=1)

    def _calculate_top_recommendations(
        self,
        averages: np.ndarray,
        users: np.ndarray,
        num: int
    ) -> np.ndarray:
        """Top `num` unrated items per user by neighbourhood average."""
        rated = self._mask.tocsc()
        recommendations = np.full((len(users), num), -1, dtype=int)
        for row, user in enumerate(users):
            scores = averages[row].copy()
            seen = rated[:, user].nonzero()[0]
            scores[seen] = -np.inf
            order = np.argsort(-scores, kind='stable')
            order = order[np.isfinite(scores[order])][:num]
            recommendations[row, :len(order)] = order
        return recommendations

    def __repr__(self) -> str:
        return (
            f"CF(n_users={self.n_users}, n_items={self.n_items}, "
            f"n_ratings={self.cleaned_data.nnz}, num_recs={self.num_recs}, "
            f"num_users_for_similarity={self.num_users_for_similarity})"
        )
