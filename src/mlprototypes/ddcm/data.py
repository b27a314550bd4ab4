"""
ChoiceData: Container for discrete-choice (DDCM) data.

Each person n faces the same J alternatives and picks exactly one of them.
The container holds, per person:
- first_stage_x: observed alternative attributes (J × K1)
- second_stage_x: attributes scaled by the latent persistence weight (J × K2)
- unknown_x_past: past values of an unobserved characteristic (J × T)
- first_stage_y: index of the chosen alternative
"""

import numpy as np
from typing import Optional, Sequence


class ChoiceData:
    """
    Container for discrete-choice data.

    All per-person blocks are stacked into 3-D arrays with the person
    index first.

    Attributes:
        first_stage_x (np.ndarray): (N × J × K1) observed attributes
        second_stage_x (np.ndarray): (N × J × K2) persistence-scaled attributes
        unknown_x_past (np.ndarray): (N × J × T) past values of the unobserved characteristic
        first_stage_y (np.ndarray): (N,) chosen alternative per person
        n_people (int): Number of people (N)
        n_alternatives (int): Number of alternatives (J)
        n_parameters (int): Length of the parameter vector, K1 + K2 + 2

    Example:
        >>> x1 = np.random.randn(100, 3, 2)
        >>> x2 = np.random.randn(100, 3, 1)
        >>> past = np.random.rand(100, 3, 4)
        >>> y = np.random.randint(0, 3, 100)
        >>> data = ChoiceData(x1, x2, past, y)
        >>> data.n_parameters
        5
    """

    def __init__(
        self,
        first_stage_x: np.ndarray,
        second_stage_x: np.ndarray,
        unknown_x_past: np.ndarray,
        first_stage_y: np.ndarray
    ):
        """
        Initialize ChoiceData.

        Parameters:
            first_stage_x: Observed attributes (N × J × K1)
            second_stage_x: Persistence-scaled attributes (N × J × K2)
            unknown_x_past: Past values of the unobserved characteristic (N × J × T)
            first_stage_y: Chosen alternative indices (N,)

        Raises:
            ValueError: If dimensions don't match or choices are out of range
        """
        first_stage_x = np.asarray(first_stage_x, dtype=float)
        second_stage_x = np.asarray(second_stage_x, dtype=float)
        unknown_x_past = np.asarray(unknown_x_past, dtype=float)
        first_stage_y = np.asarray(first_stage_y)

        for name, block in (
            ('first_stage_x', first_stage_x),
            ('second_stage_x', second_stage_x),
            ('unknown_x_past', unknown_x_past)
        ):
            if block.ndim != 3:
                raise ValueError(f"{name} must be 3D array, got shape {block.shape}")
        if first_stage_y.ndim != 1:
            raise ValueError(f"first_stage_y must be 1D array, got shape {first_stage_y.shape}")

        n_people, n_alternatives = first_stage_x.shape[:2]
        for name, block in (
            ('second_stage_x', second_stage_x),
            ('unknown_x_past', unknown_x_past)
        ):
            if block.shape[:2] != (n_people, n_alternatives):
                raise ValueError(
                    f"{name} leading shape {block.shape[:2]} must match "
                    f"first_stage_x ({n_people}, {n_alternatives})"
                )
        if len(first_stage_y) != n_people:
            raise ValueError(
                f"first_stage_y length ({len(first_stage_y)}) must match "
                f"number of people ({n_people})"
            )
        if n_people < 2:
            raise ValueError(f"Need at least 2 people, got {n_people}")
        if n_alternatives < 2:
            raise ValueError(f"Need at least 2 alternatives, got {n_alternatives}")
        if not np.all(np.equal(np.mod(first_stage_y, 1), 0)):
            raise ValueError("first_stage_y must contain integer alternative indices")
        first_stage_y = first_stage_y.astype(int)
        if np.any(first_stage_y < 0) or np.any(first_stage_y >= n_alternatives):
            raise ValueError(
                f"first_stage_y must be in [0, {n_alternatives - 1}]"
            )

        self.first_stage_x = first_stage_x
        self.second_stage_x = second_stage_x
        self.unknown_x_past = unknown_x_past
        self.first_stage_y = first_stage_y

        self.n_people = n_people
        self.n_alternatives = n_alternatives
        self.n_first_stage = first_stage_x.shape[2]
        self.n_second_stage = second_stage_x.shape[2]
        self.n_past = unknown_x_past.shape[2]
        self.n_parameters = self.n_first_stage + self.n_second_stage + 2

    def subset(self, indices: Sequence[int]) -> 'ChoiceData':
        """
        Get a new ChoiceData holding only the given people.

        Parameters:
            indices: Person indices to keep

        Returns:
            data: ChoiceData restricted to `indices`
        """
        indices = np.asarray(indices, dtype=int)
        return ChoiceData(
            self.first_stage_x[indices],
            self.second_stage_x[indices],
            self.unknown_x_past[indices],
            self.first_stage_y[indices]
        )

    def choice_shares(self, indices: Optional[np.ndarray] = None) -> np.ndarray:
        """Fraction of people choosing each alternative."""
        y = self.first_stage_y if indices is None else self.first_stage_y[indices]
        return np.bincount(y, minlength=self.n_alternatives) / len(y)

    def __repr__(self) -> str:
        return (
            f"ChoiceData("
            f"n_people={self.n_people}, "
            f"n_alternatives={self.n_alternatives}, "
            f"n_first_stage={self.n_first_stage}, "
            f"n_second_stage={self.n_second_stage}, "
            f"n_past={self.n_past})"
        )

    def summary(self) -> str:
        """Get detailed summary of the data."""
        shares = self.choice_shares()
        lines = [
            "=" * 50,
            "ChoiceData Summary",
            "=" * 50,
            f"Number of people:         {self.n_people}",
            f"Number of alternatives:   {self.n_alternatives}",
            f"Parameters:               {self.n_parameters}",
            f"  - First stage (beta1):  {self.n_first_stage}",
            f"  - Second stage (beta2): {self.n_second_stage}",
            f"  - Beta shape (p, q):    2",
            f"Past periods:             {self.n_past}",
            "",
            "Choice shares:",
        ]
        for j, share in enumerate(shares):
            lines.append(f"  - Alternative {j}:        {100*share:.1f}%")
        lines.append("=" * 50)
        return "\n".join(lines)
