"""
App - Bridge lifecycle (builder, scheduler, controller, main)
"""
from .builder import BridgeBuilder
from .controller import BridgeController, main
from .scheduler import CycleScheduler

__all__ = [
    "BridgeBuilder",
    "BridgeController",
    "CycleScheduler",
    "main",
]
