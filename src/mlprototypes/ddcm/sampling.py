"""
Adaptive subsampling of people for DDCM estimation.

The estimator starts on a small random fraction of the population and
grows the working sample whenever the statistical error of the objective
difference outweighs the predicted model reduction. People are visited in
a fixed shuffled order, so the working sample is always a prefix of that
order and earlier people are never dropped.
"""

import numpy as np
from typing import Optional


class AdaptiveSampler:
    """
    Expanding random subsample over the people of a dataset.

    Parameters:
        n_people: Population size (N)
        random_seed: Seed for the shuffle

    Attributes:
        order: Shuffled person indices
        sample_size: Number of people currently in the working sample

    Example:
        >>> sampler = AdaptiveSampler(n_people=1000, random_seed=0)
        >>> sampler.shuffle()
        >>> idx = sampler.expand_subset(10.0)   # first 10% of people
        >>> len(idx)
        100
        >>> idx = sampler.expand_subset(5.0)    # 50 more
        >>> sampler.sample_size
        150
    """

    def __init__(self, n_people: int, random_seed: Optional[int] = None):
        if n_people < 2:
            raise ValueError(f"n_people must be at least 2, got {n_people}")
        self.n_people = n_people
        self.random_seed = random_seed
        self._rng = np.random.default_rng(random_seed)
        self.order = np.arange(n_people)
        self.sample_size = 0

    def shuffle(self) -> None:
        """Shuffle the visiting order and reset the working sample."""
        self.order = self._rng.permutation(self.n_people)
        self.sample_size = 0

    @property
    def is_exhausted(self) -> bool:
        """True once every person is in the working sample."""
        return self.sample_size >= self.n_people

    @property
    def indices(self) -> np.ndarray:
        """Person indices of the current working sample."""
        return self.order[:self.sample_size]

    def expand_subset(self, percent: float) -> np.ndarray:
        """
        Add `percent` % of the population to the working sample.

        At least one new person is added while any remain; the sample never
        exceeds the population.

        Parameters:
            percent: Percentage of N to add, in [0, 100]

        Returns:
            indices: Person indices of the expanded working sample

        Raises:
            ValueError: If percent is negative or not finite
        """
        if not np.isfinite(percent) or percent < 0:
            raise ValueError(f"percent must be a non-negative number, got {percent}")

        n_added = int(np.ceil(min(percent, 100.0) / 100.0 * self.n_people))
        n_added = max(1, n_added)
        self.sample_size = min(self.n_people, self.sample_size + n_added)
        return self.indices

    def finite_population_correction(self) -> float:
        """(N - S) / (N - 1) for the current sample size S."""
        return (self.n_people - self.sample_size) / (self.n_people - 1.0)

    def __repr__(self) -> str:
        return (
            f"AdaptiveSampler(n_people={self.n_people}, "
            f"sample_size={self.sample_size})"
        )
