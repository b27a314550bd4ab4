"""
Non-negative SVM

Linear binary SVM with a non-negative weight vector, trained by SMO on its dual.
"""

from .nnsmo import NNSMO
from .nnsvm import NNSVM

__all__ = [
    'NNSMO',
    'NNSVM',
]
