"""
Sensor Descriptor Builder
=========================

Construye los mensajes de Home Assistant MQTT Discovery para cada contador.

Responsabilidad:
- Conoce la estructura de los payloads (discovery config + state)
- Deriva topics de forma determinística de (device_id, counter_name)
- NO conoce MQTT (eso es del ConnectionManager)

Topics:
- <discovery_prefix>/sensor/<device_id>/<counter_name lower>/config
- <discovery_prefix>/sensor/<device_id>/<counter_name lower>/state
"""
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping

from ..exceptions import InvalidReadingError
from .units import DisplayValue

FORBIDDEN_TOPIC_CHARS = ('/', '+', '#', '\x00')

DEFAULT_ICON = "mdi:server-network"


@dataclass(frozen=True)
class DeviceInfo:
    """Metadata del dispositivo publicado en cada discovery document."""
    device_id: str = "router_hg6145f"
    name: str = "Router Device"
    model: str = "HG6145F"
    manufacturer: str = "FiberHome"
    discovery_prefix: str = "homeassistant"
    icon: str = DEFAULT_ICON


@dataclass(frozen=True)
class SensorTopicPair:
    config_topic: str
    state_topic: str


@dataclass(frozen=True)
class SensorPublishUnit:
    """Un mensaje a publicar: siempre retained y QoS 1."""
    topic: str
    payload: str
    retain: bool = True
    qos: int = 1


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def validate_counter_name(name: str) -> str:
    """
    Verifica que el nombre pueda usarse como segmento de topic.

    Raises:
        InvalidReadingError: nombre vacío o con separador/wildcards MQTT
    """
    if not isinstance(name, str) or not name:
        raise InvalidReadingError(str(name), "empty name")
    for char in FORBIDDEN_TOPIC_CHARS:
        if char in name:
            raise InvalidReadingError(name, f"contains forbidden character {char!r}")
    return name


def sensor_topics(device: DeviceInfo, counter_name: str) -> SensorTopicPair:
    """Topics de discovery y state para un contador (función pura)."""
    validate_counter_name(counter_name)
    entity_id = counter_name.lower()
    base = f"{device.discovery_prefix}/sensor/{device.device_id}/{entity_id}"
    return SensorTopicPair(
        config_topic=f"{base}/config",
        state_topic=f"{base}/state",
    )


def discovery_payload(
    device: DeviceInfo,
    counter_name: str,
    unit: str,
    topics: SensorTopicPair,
) -> Dict[str, Any]:
    return {
        "name": f"Router {counter_name}",
        "state_topic": topics.state_topic,
        "unique_id": f"{device.device_id}_{counter_name.lower()}",
        "device_class": "data_size",
        "state_class": "total",
        "unit_of_measurement": unit,
        "icon": device.icon,
        "value_template": f"{{{{ value_json.{counter_name} }}}}",
        "device": {
            "identifiers": [device.device_id],
            "name": device.name,
            "model": device.model,
            "manufacturer": device.manufacturer,
        },
    }


def build_sensor_units(
    device: DeviceInfo,
    counter_name: str,
    value: DisplayValue,
) -> List[SensorPublishUnit]:
    """
    Construye el par (discovery, state) de un contador.

    Args:
        device: Metadata del dispositivo
        counter_name: Nombre del contador (ej: "ponBytesSent")
        value: Valor ya convertido

    Returns:
        [discovery unit, state unit] en ese orden

    Raises:
        InvalidReadingError: Si el nombre no es seguro como segmento de topic
    """
    topics = sensor_topics(device, counter_name)
    config = discovery_payload(device, counter_name, value.unit, topics)
    state = {counter_name: value.value}
    return [
        SensorPublishUnit(topic=topics.config_topic, payload=json_dumps(config)),
        SensorPublishUnit(topic=topics.state_topic, payload=json_dumps(state)),
    ]


def build_descriptors(
    device: DeviceInfo,
    readings: Mapping[str, DisplayValue],
) -> List[SensorPublishUnit]:
    """
    Construye todos los units de un ciclo (2 por lectura, discovery primero).

    Raises:
        InvalidReadingError: Con el primer nombre inválido encontrado.
            Para descartar solo la lectura inválida usar build_sensor_units().
    """
    units: List[SensorPublishUnit] = []
    for name, value in readings.items():
        units.extend(build_sensor_units(device, name, value))
    return units


__all__ = [
    "DeviceInfo",
    "SensorTopicPair",
    "SensorPublishUnit",
    "validate_counter_name",
    "sensor_topics",
    "discovery_payload",
    "build_sensor_units",
    "build_descriptors",
    "json_dumps",
]
