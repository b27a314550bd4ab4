"""
Synthetic Data Generation for DDCM Testing
==========================================

Draws attributes, latent persistence weights and choices from the model
itself, so that estimators can be checked against a known parameter.

Data generating process for person n:
    α_n ~ Beta(p, q)
    U_nj = β1ᵀ x1_nj + α_n · β2ᵀ x2_nj + Σ_t α_n^(t+1) past_njt + ε_nj
    ε_nj ~ Gumbel(0, 1)   (logit errors)
    y_n = argmax_j U_nj
"""

import numpy as np
from typing import Tuple, Optional

from .data import ChoiceData


def default_parameter(n_first_stage: int, n_second_stage: int) -> np.ndarray:
    """
    Parameter used by generate_choice_data when none is given.

    β1 spaced evenly in [-1, 1], β2 = 0.8, (p, q) = (2, 3).
    """
    beta1 = np.linspace(1.0, -1.0, n_first_stage) if n_first_stage > 1 else np.array([1.0])
    beta2 = np.full(n_second_stage, 0.8)
    return np.concatenate([beta1, beta2, [2.0, 3.0]])


def generate_choice_data(
    n_people: int = 1000,
    n_alternatives: int = 3,
    n_first_stage: int = 2,
    n_second_stage: int = 1,
    n_past: int = 3,
    true_parameter: Optional[np.ndarray] = None,
    past_scale: float = 1.0,
    random_state: Optional[int] = None
) -> Tuple[ChoiceData, np.ndarray]:
    """
    Generate choice data from the DDCM.

    Parameters:
        n_people: Number of people (N)
        n_alternatives: Number of alternatives (J)
        n_first_stage: Observed attributes per alternative (K1)
        n_second_stage: Persistence-scaled attributes per alternative (K2)
        n_past: Past periods of the unobserved characteristic (T)
        true_parameter: θ = [β1, β2, p, q]; defaults to default_parameter()
        past_scale: Scale of the past values (uniform on [0, past_scale])
        random_state: Random seed for reproducibility

    Returns:
        data: ChoiceData
        true_parameter: θ used to draw the choices

    Raises:
        ValueError: If sizes are invalid or θ is infeasible

    Example:
        >>> data, theta = generate_choice_data(n_people=500, random_state=0)
        >>> data.n_parameters == len(theta)
        True
    """
    if random_state is not None:
        np.random.seed(random_state)

    if n_people < 2:
        raise ValueError(f"n_people must be at least 2, got {n_people}")
    if n_alternatives < 2:
        raise ValueError(f"n_alternatives must be at least 2, got {n_alternatives}")
    if n_first_stage < 1 or n_second_stage < 1 or n_past < 1:
        raise ValueError("n_first_stage, n_second_stage and n_past must be positive")

    if true_parameter is None:
        true_parameter = default_parameter(n_first_stage, n_second_stage)
    true_parameter = np.asarray(true_parameter, dtype=float)
    n_parameters = n_first_stage + n_second_stage + 2
    if true_parameter.shape != (n_parameters,):
        raise ValueError(
            f"true_parameter must have length {n_parameters}, got shape {true_parameter.shape}"
        )
    beta1 = true_parameter[:n_first_stage]
    beta2 = true_parameter[n_first_stage:n_first_stage + n_second_stage]
    p, q = true_parameter[-2:]
    if p <= 0 or q <= 0:
        raise ValueError(f"Beta shape parameters must be positive, got p={p}, q={q}")

    first_stage_x = np.random.randn(n_people, n_alternatives, n_first_stage)
    second_stage_x = np.random.randn(n_people, n_alternatives, n_second_stage)
    unknown_x_past = np.random.rand(n_people, n_alternatives, n_past) * past_scale

    alpha = np.random.beta(p, q, size=n_people)
    powers = alpha[:, None] ** np.arange(1, n_past + 1)[None, :]  # (N, T)
    stock = np.einsum('njt,nt->nj', unknown_x_past, powers)

    utility = (
        first_stage_x @ beta1
        + alpha[:, None] * (second_stage_x @ beta2)
        + stock
        + np.random.gumbel(size=(n_people, n_alternatives))
    )
    first_stage_y = np.argmax(utility, axis=1)

    data = ChoiceData(first_stage_x, second_stage_x, unknown_x_past, first_stage_y)
    return data, true_parameter
