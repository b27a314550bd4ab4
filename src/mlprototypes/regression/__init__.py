"""
Regression

Clusterwise (mixture of) linear regression fitted by EM.
"""

from .clusterwise import ClusterwiseRegression

__all__ = [
    'ClusterwiseRegression',
]
