"""Extraction strategy implementations."""

from .standard import StandardStealthStrategy
from .brute_force import BruteForceSweepStrategy
from .evasion import EvasionFirstStrategy, alternate_entry_points
from .multi_vector import MultiVectorStrategy
from .hybrid import HybridStrategy

# Registration order is also the selector's tie-break order
STRATEGY_CLASSES = [
    StandardStealthStrategy,
    BruteForceSweepStrategy,
    EvasionFirstStrategy,
    MultiVectorStrategy,
    HybridStrategy,
]

__all__ = [
    "StandardStealthStrategy",
    "BruteForceSweepStrategy",
    "EvasionFirstStrategy",
    "MultiVectorStrategy",
    "HybridStrategy",
    "STRATEGY_CLASSES",
    "alternate_entry_points",
]
