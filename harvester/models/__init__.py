from .item import CanonicalItem, RawItem
from .outcome import ErrorKind, StrategyOutcome

__all__ = [
    "CanonicalItem",
    "RawItem",
    "ErrorKind",
    "StrategyOutcome",
]
