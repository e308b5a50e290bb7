"""
Sensors
=======

Lógica de negocio de los sensores: conversión de unidades y
construcción de mensajes de Home Assistant Discovery.
NO conoce detalles de MQTT (eso es del broker.ConnectionManager).
"""
from .units import DisplayValue, UnitConverter, is_valid_byte_count
from .descriptors import (
    DeviceInfo,
    SensorPublishUnit,
    SensorTopicPair,
    build_descriptors,
    build_sensor_units,
    sensor_topics,
)

__all__ = [
    'DisplayValue',
    'UnitConverter',
    'is_valid_byte_count',
    'DeviceInfo',
    'SensorPublishUnit',
    'SensorTopicPair',
    'build_descriptors',
    'build_sensor_units',
    'sensor_topics',
]
