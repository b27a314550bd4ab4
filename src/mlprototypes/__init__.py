"""
mlprototypes: Prototype Machine-Learning Algorithms

A collection of research-prototype estimators:
- Discrete-choice model estimation with an adaptive-sampling trust-region method
- Collaborative filtering via alternating least squares
- Non-negative support vector machine trained by SMO
- Dual-tree local linear regression with guaranteed error bounds
- Clusterwise linear regression via EM
"""

__version__ = "0.1.0"

# Discrete-choice model estimation
from .ddcm import (
    ChoiceData,
    generate_choice_data,
    ChoiceObjective,
    AdaptiveSampler,
    TrustRegionOptions,
    DDCMEstimator
)

# Collaborative filtering
from .cf import CF, run_als

# Non-negative SVM
from .svm import NNSMO, NNSVM

# Dual-tree local regression
from .dualtree import LocalRegression

# Clusterwise regression
from .regression import ClusterwiseRegression

__all__ = [
    # DDCM
    "ChoiceData",
    "generate_choice_data",
    "ChoiceObjective",
    "AdaptiveSampler",
    "TrustRegionOptions",
    "DDCMEstimator",

    # Collaborative filtering
    "CF",
    "run_als",

    # SVM
    "NNSMO",
    "NNSVM",

    # Local regression
    "LocalRegression",

    # Clusterwise regression
    "ClusterwiseRegression",
]
