"""
Broker - MQTT Publishing (QoS 1, retained)
"""
from .connection import ConnectionManager, ConnectionState
from .batch import CycleBatch, PublishBatchTracker
from .timers import Deadline

__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "CycleBatch",
    "PublishBatchTracker",
    "Deadline",
]
