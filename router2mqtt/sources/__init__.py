"""
Counter Sources - colaboradores que leen contadores del router
"""
from .base import CounterSource
from .fiberhome import DEFAULT_COUNTERS, FiberHomeCounterSource, extract_counters

__all__ = [
    "CounterSource",
    "FiberHomeCounterSource",
    "DEFAULT_COUNTERS",
    "extract_counters",
]
