"""
Fixtures compartidas
====================

FakeMqttClient reemplaza al cliente paho: registra los publish y deja que
cada test entregue CONNACK / PUBACK / desconexiones a mano (no requiere
broker real).
"""
import socket
from threading import Event

import paho.mqtt.client as mqtt
import pytest
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.reasoncodes import ReasonCode

from router2mqtt.broker import ConnectionManager, PublishBatchTracker
from router2mqtt.sensors import DeviceInfo, UnitConverter
from router2mqtt.sources.base import CounterSource


class FakeMessageInfo:
    """Imita MQTTMessageInfo (mid, rc, is_published)"""

    def __init__(self, mid, rc=mqtt.MQTT_ERR_SUCCESS):
        self.mid = mid
        self.rc = rc
        self.published = False

    def is_published(self):
        return self.published


class FakeMqttClient:
    """Cliente MQTT falso con la superficie que usa ConnectionManager"""

    def __init__(self, client_id="test-client"):
        self.client_id = client_id
        self.published = []
        self.credentials = None
        self.tls = None
        self.reconnect_delay = None
        self.connect_args = None
        self.loop_started = False
        self.loop_stopped = False
        self.disconnect_calls = 0

        # Simulación de fallos / acks automáticos
        self.publish_rc = mqtt.MQTT_ERR_SUCCESS
        self.auto_ack = False
        self.auto_connect = False
        # Orden real de paho: on_publish corre antes de marcar el info como publicado
        self.flag_after_callback = False

        self.on_connect = None
        self.on_disconnect = None
        self.on_publish = None
        self.on_pre_connect = None
        self.on_connect_fail = None

        self._next_mid = 0
        self._pending = {}
        self._unflagged = []

    # Configuración
    def username_pw_set(self, username, password=None):
        self.credentials = (username, password)

    def tls_set(self, ca_certs=None):
        self.tls = {"ca_certs": ca_certs}

    def reconnect_delay_set(self, min_delay=1, max_delay=120):
        self.reconnect_delay = (min_delay, max_delay)

    # Lifecycle
    def connect_async(self, host, port=1883, keepalive=60):
        self.connect_args = (host, port, keepalive)
        if self.on_pre_connect:
            self.on_pre_connect(self, None)

    def loop_start(self):
        self.loop_started = True
        if self.auto_connect:
            self.deliver_connack()

    def loop_stop(self):
        self.loop_stopped = True

    def disconnect(self):
        self.disconnect_calls += 1
        if self.on_disconnect:
            self.on_disconnect(self, None, None, ReasonCode(PacketTypes.DISCONNECT, identifier=0), None)

    # Publish
    def publish(self, topic, payload=None, qos=0, retain=False):
        self._next_mid += 1
        mid = self._next_mid
        self.published.append((topic, payload, qos, retain))
        info = FakeMessageInfo(mid, rc=self.publish_rc)
        if self.publish_rc != mqtt.MQTT_ERR_SUCCESS:
            return info
        if self.auto_ack and self.flag_after_callback:
            # PUBACK antes de que publish() retorne; published se marca después
            self.on_publish(self, None, mid, success_puback(), None)
            self._unflagged.append(info)
        elif self.auto_ack:
            info.published = True
            self.on_publish(self, None, mid, success_puback(), None)
        else:
            self._pending[mid] = info
        return info

    # Helpers de test (lado broker)
    @property
    def pending_mids(self):
        return sorted(self._pending)

    def deliver_connack(self, success=True):
        code = ReasonCode(PacketTypes.CONNACK, identifier=0 if success else 135)
        self.on_connect(self, None, None, code, None)

    def ack(self, mid, success=True):
        info = self._pending.pop(mid)
        info.published = True
        code = success_puback() if success else ReasonCode(PacketTypes.PUBACK, identifier=135)
        self.on_publish(self, None, mid, code, None)

    def ack_all(self):
        for mid in list(self._pending):
            self.ack(mid)

    def flag_published(self):
        for info in self._unflagged:
            info.published = True
        self._unflagged.clear()

    def drop_connection(self):
        code = ReasonCode(PacketTypes.DISCONNECT, identifier=141)
        self.on_disconnect(self, None, None, code, None)

    def fail_connect(self):
        self.on_connect_fail(self, None)


def success_puback():
    return ReasonCode(PacketTypes.PUBACK, identifier=0)


class StaticCounterSource(CounterSource):
    """Source que retorna siempre lo mismo (o lanza el error dado)"""

    def __init__(self, readings=None, error=None):
        self.readings = readings if readings is not None else {}
        self.error = error
        self.calls = 0
        self.closed = False

    def fetch_counters(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return dict(self.readings)

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def resolvable_hosts(monkeypatch):
    """Todo host resuelve salvo los terminados en .invalid"""

    def fake_getaddrinfo(host, port, *args, **kwargs):
        if str(host).endswith(".invalid"):
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("127.0.0.1", port))]

    monkeypatch.setattr(socket, "getaddrinfo", fake_getaddrinfo)


@pytest.fixture
def fake_client():
    return FakeMqttClient()


@pytest.fixture
def connection(fake_client):
    """ConnectionManager sin conectar sobre FakeMqttClient"""
    manager = ConnectionManager(
        "broker.local",
        reconnect_delay=1.0,
        client_factory=lambda client_id: fake_client,
    )
    yield manager
    manager.shutdown(graceful=False)


@pytest.fixture
def connected(connection, fake_client):
    """ConnectionManager en estado CONNECTED"""
    connection.connect()
    fake_client.deliver_connack()
    return connection


@pytest.fixture
def device():
    return DeviceInfo()


@pytest.fixture
def converter():
    return UnitConverter("gigabytes")


@pytest.fixture
def shutdown_event():
    return Event()


@pytest.fixture
def tracker_factory():
    def make(connection, **kwargs):
        params = {"ready_timeout": 0.2, "cycle_timeout": 1.0, "drain_timeout": 0.2}
        params.update(kwargs)
        return PublishBatchTracker(connection, **params)
    return make


@pytest.fixture
def make_source():
    return StaticCounterSource
