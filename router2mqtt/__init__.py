"""
router2mqtt - FiberHome router counters → Home Assistant via MQTT
=================================================================

Extrae contadores de tráfico PON del router (HG6145F) y los publica como
sensores de Home Assistant (MQTT Discovery, QoS 1, retained).

Public API:
- BridgeConfig: Configuración del sistema (Pydantic)
- BridgeController: Controlador principal
- ConnectionManager: Conexión MQTT compartida
- PublishBatchTracker: Acks por ciclo
- CycleScheduler: Loop fetch → publish

Usage:
    # Run bridge
    python -m router2mqtt

    # Or programmatically
    from router2mqtt import BridgeConfig, BridgeController

    config = BridgeConfig.load("config/router2mqtt/config.yaml")
    controller = BridgeController(config)
    controller.run()
"""

__version__ = "1.0.0"

from .config import BridgeConfig
from .app import BridgeController, CycleScheduler, main
from .broker import ConnectionManager, PublishBatchTracker

__all__ = [
    # Config
    "BridgeConfig",
    # App
    "BridgeController",
    "CycleScheduler",
    "main",
    # Broker
    "ConnectionManager",
    "PublishBatchTracker",
]
