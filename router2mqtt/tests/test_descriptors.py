"""
Sensor Descriptor Tests
=======================

Invariantes testeadas:
1. 2 × |readings| units, discovery antes que state
2. Payloads exactos del ejemplo ponBytesSent / ponBytesReceived
3. Todos los units son retained con QoS 1
4. Repetir el build produce bytes idénticos (discovery idempotente)
5. Nombres no aptos para topic → InvalidReadingError
"""
import json

import pytest

from router2mqtt.exceptions import InvalidReadingError
from router2mqtt.sensors import (
    DeviceInfo,
    UnitConverter,
    build_descriptors,
    build_sensor_units,
    sensor_topics,
)


def readings_for(converter, raw):
    return {name: converter.convert(value) for name, value in raw.items()}


@pytest.mark.unit
class TestBuildDescriptors:
    """Tests de build_descriptors"""

    def test_two_units_per_reading_discovery_first(self, device, converter):
        """
        Invariante: 2 units por lectura, el de discovery precede al de state.
        """
        readings = readings_for(converter, {"a": 1, "b": 2, "c": 3})

        units = build_descriptors(device, readings)

        assert len(units) == 6
        for config_unit, state_unit in zip(units[::2], units[1::2]):
            assert config_unit.topic.endswith("/config")
            assert state_unit.topic.endswith("/state")
            assert config_unit.topic[:-len("config")] == state_unit.topic[:-len("state")]

    def test_all_units_retained_qos1(self, device, converter):
        units = build_descriptors(device, readings_for(converter, {"ponBytesSent": 1}))

        assert all(unit.retain is True and unit.qos == 1 for unit in units)

    def test_empty_readings(self, device):
        assert build_descriptors(device, {}) == []

    def test_example_payloads(self, device, converter):
        """
        Invariante: ponBytesSent=1073741824, ponBytesReceived=0 con device
        router_hg6145f y política gigabytes produce los 4 mensajes esperados.
        """
        readings = readings_for(converter, {"ponBytesSent": 1073741824, "ponBytesReceived": 0})

        units = build_descriptors(device, readings)

        assert [unit.topic for unit in units] == [
            "homeassistant/sensor/router_hg6145f/ponbytessent/config",
            "homeassistant/sensor/router_hg6145f/ponbytessent/state",
            "homeassistant/sensor/router_hg6145f/ponbytesreceived/config",
            "homeassistant/sensor/router_hg6145f/ponbytesreceived/state",
        ]
        assert json.loads(units[1].payload) == {"ponBytesSent": "1.00"}
        assert json.loads(units[3].payload) == {"ponBytesReceived": "0.00"}

        config = json.loads(units[0].payload)
        assert config == {
            "name": "Router ponBytesSent",
            "state_topic": "homeassistant/sensor/router_hg6145f/ponbytessent/state",
            "unique_id": "router_hg6145f_ponbytessent",
            "device_class": "data_size",
            "state_class": "total",
            "unit_of_measurement": "GB",
            "icon": "mdi:server-network",
            "value_template": "{{ value_json.ponBytesSent }}",
            "device": {
                "identifiers": ["router_hg6145f"],
                "name": "Router Device",
                "model": "HG6145F",
                "manufacturer": "FiberHome",
            },
        }

    def test_state_payload_compact_json(self, device, converter):
        units = build_sensor_units(device, "ponBytesSent", converter.convert(1073741824))

        assert units[1].payload == '{"ponBytesSent":"1.00"}'

    def test_repeated_build_is_byte_identical(self, device, converter):
        """
        Invariante: mismo contador + mismo device → mismo par de topics y
        mismos bytes (el retained del broker converge).
        """
        readings = readings_for(converter, {"ponBytesSent": 123456789})

        first = build_descriptors(device, readings)
        second = build_descriptors(device, readings)

        assert first == second
        assert [u.payload.encode() for u in first] == [u.payload.encode() for u in second]

    def test_bytes_policy_unit(self, device):
        units = build_sensor_units(device, "ponBytesSent", UnitConverter("bytes").convert(42))

        assert json.loads(units[0].payload)["unit_of_measurement"] == "B"
        assert json.loads(units[1].payload) == {"ponBytesSent": "42"}

    def test_custom_device(self, converter):
        device = DeviceInfo(device_id="attic_router", discovery_prefix="ha")

        topics = sensor_topics(device, "ponBytesSent")

        assert topics.config_topic == "ha/sensor/attic_router/ponbytessent/config"
        assert topics.state_topic == "ha/sensor/attic_router/ponbytessent/state"


@pytest.mark.unit
class TestInvalidNames:
    """Tests de nombres no aptos para topic"""

    @pytest.mark.parametrize("name", ["", "a/b", "bytes+", "#all", "nul\x00"])
    def test_invalid_name_raises(self, device, converter, name):
        """
        Invariante: nombre vacío, con separador o wildcards → InvalidReadingError.
        """
        with pytest.raises(InvalidReadingError):
            build_sensor_units(device, name, converter.convert(1))

    def test_build_descriptors_fails_on_invalid_name(self, device, converter):
        readings = readings_for(converter, {"ok": 1, "bad/name": 2})

        with pytest.raises(InvalidReadingError) as exc_info:
            build_descriptors(device, readings)

        assert exc_info.value.name == "bad/name"
