"""
Exceptions
==========

Jerarquía de errores del bridge router → MQTT.

Solo ConnectionSetupError es fatal (el proceso nunca podría progresar);
el resto se recupera a nivel de ciclo.
"""
from typing import Optional


class Router2MqttError(Exception):
    """Base de todos los errores de router2mqtt."""


class FetchError(Router2MqttError):
    """El counter source no pudo obtener lecturas (navegación, login, respuesta malformada)."""


class InvalidReadingError(Router2MqttError):
    """Nombre de contador que no puede embeberse en un segmento de topic."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid counter name {name!r}: {reason}")


class NotConnectedError(Router2MqttError):
    """Publish intentado sin conexión lista con el broker."""

    def __init__(self, topic: str):
        self.topic = topic
        super().__init__(f"Broker not connected, cannot publish to {topic}")


class PublishDeliveryFailed(Router2MqttError):
    """Fallo de entrega de un publish individual (no aborta el batch)."""

    def __init__(self, topic: str, cause: Optional[str] = None):
        self.topic = topic
        self.cause = cause
        super().__init__(f"Delivery to {topic} failed: {cause}")


class ShutdownTimeout(Router2MqttError):
    """El cierre graceful excedió su límite; se escala a cierre forzado."""

    def __init__(self, timeout: float, pending: int = 0):
        self.timeout = timeout
        self.pending = pending
        super().__init__(
            f"Graceful shutdown exceeded {timeout:.1f}s with {pending} acks pending"
        )


class ConnectionSetupError(Router2MqttError):
    """Error irrecuperable en el setup inicial de la conexión (ej: host no resoluble)."""


__all__ = [
    "Router2MqttError",
    "FetchError",
    "InvalidReadingError",
    "NotConnectedError",
    "PublishDeliveryFailed",
    "ShutdownTimeout",
    "ConnectionSetupError",
]
