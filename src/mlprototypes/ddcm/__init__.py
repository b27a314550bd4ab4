"""
Discrete-Choice Model (DDCM) Estimation

Trust-region maximum likelihood with BFGS Hessian updates on an adaptively
growing random sample of people.
"""

from .data import ChoiceData
from .objective import ChoiceObjective
from .sampling import AdaptiveSampler
from .trust_region import (
    TrustRegionOptions,
    dogleg_direction,
    constrained_direction,
    update_radius,
    bfgs_update
)
from .estimator import DDCMEstimator
from .synthetic import generate_choice_data, default_parameter

__all__ = [
    # Data
    "ChoiceData",
    "generate_choice_data",
    "default_parameter",
    # Objective
    "ChoiceObjective",
    # Sampling
    "AdaptiveSampler",
    # Trust region
    "TrustRegionOptions",
    "dogleg_direction",
    "constrained_direction",
    "update_radius",
    "bfgs_update",
    # Estimator
    "DDCMEstimator",
]
