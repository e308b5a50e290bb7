"""
MQTT Connection Manager
=======================

Dueño de la única conexión con el broker (QoS 1, retained).

Responsabilidad: Infraestructura MQTT
- Conecta una vez al inicio y reusa la conexión en todos los ciclos
- Máquina de estados: DISCONNECTED → CONNECTING → CONNECTED ⇄ OFFLINE
- Reconexión automática de paho con backoff fijo
- Un Future por publish, resuelto con el PUBACK (thread de red de paho)
- Shutdown graceful (flush de acks) con escalado a cierre forzado

NO conoce estructura de mensajes (eso es de sensors.descriptors).
"""
import logging
import socket
from concurrent.futures import Future, InvalidStateError
from enum import Enum
from threading import Condition, Event
from typing import Any, Callable, Dict, Optional, Set, Tuple

import paho.mqtt.client as mqtt

from ..exceptions import (
    ConnectionSetupError,
    NotConnectedError,
    PublishDeliveryFailed,
    ShutdownTimeout,
)
from ..logging import log_error_with_context, log_mqtt_publish
from .timers import Deadline

logger = logging.getLogger(__name__)

_MISSING = object()


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    OFFLINE = "offline"


def create_paho_client(client_id: str) -> mqtt.Client:
    """Cliente paho con callback API v2 y MQTT v5."""
    return mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv5,
    )


class ConnectionManager:
    """
    Conexión compartida con el broker MQTT.

    Usage:
        connection = ConnectionManager("mqtt.local", username="ha", password="...")
        connection.connect()                 # ConnectionSetupError si el host no resuelve
        connection.await_ready(timeout=10)

        future = connection.publish(topic, payload, qos=1, retain=True)
        future.add_done_callback(on_done)    # corre en el thread de red

        connection.shutdown(graceful=True, timeout=5.0)
    """

    def __init__(
        self,
        broker_host: str,
        broker_port: int = 1883,
        client_id: str = "publish-fiber-home-router",
        username: Optional[str] = None,
        password: Optional[str] = None,
        keepalive: int = 60,
        reconnect_delay: float = 5.0,
        tls: bool = False,
        ca_certs: Optional[str] = None,
        client_factory: Optional[Callable[[str], Any]] = None,
    ):
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.client_id = client_id
        self.keepalive = keepalive
        self.reconnect_delay = reconnect_delay

        factory = client_factory or create_paho_client
        self.client = factory(client_id)
        if username:
            self.client.username_pw_set(username, password)
        if tls:
            self.client.tls_set(ca_certs=ca_certs)

        # Backoff fijo: min == max
        self.client.reconnect_delay_set(min_delay=reconnect_delay, max_delay=reconnect_delay)

        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_publish = self._on_publish
        self.client.on_pre_connect = self._on_pre_connect
        self.client.on_connect_fail = self._on_connect_fail

        self._state = ConnectionState.DISCONNECTED
        self._state_cond = Condition()
        self._closing = False
        self._closed = False
        self._graceful_result = False

        self._acks = Condition()
        self._in_flight: Dict[int, Tuple[str, Future, int]] = {}
        self._early_acks: Dict[int, Any] = {}
        self._settled_early: Set[int] = set()
        self._force_requested = False

        self._published = 0
        self._failed = 0

    # ------------------------------------------------------------------
    # Estado
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_ready(self) -> bool:
        """True solo en CONNECTED (y sin shutdown en curso)."""
        return self._state is ConnectionState.CONNECTED and not self._closing

    @property
    def in_flight(self) -> int:
        with self._acks:
            return len(self._in_flight)

    def _set_state(self, new_state: ConnectionState) -> None:
        with self._state_cond:
            if self._closed and new_state is not ConnectionState.DISCONNECTED:
                return
            if self._closing and new_state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
                return
            old_state = self._state
            self._state = new_state
            self._state_cond.notify_all()

        if old_state is not new_state:
            logger.debug(
                f"🔁 Estado de conexión: {old_state.value} → {new_state.value}",
                extra={
                    "component": "connection",
                    "event": "state_changed",
                    "from_state": old_state.value,
                    "to_state": new_state.value,
                }
            )

    def await_ready(self, timeout: float, cancel_event: Optional[Event] = None,
                    poll_interval: float = 0.1) -> bool:
        """
        Espera a que la conexión llegue a CONNECTED.

        Args:
            timeout: Límite de la espera
            cancel_event: Si se activa, la espera termina (chequeado cada poll_interval)

        Returns:
            False si el timeout vence (o hay shutdown / cancelación) sin llegar a CONNECTED
        """
        with Deadline(timeout) as deadline:
            with self._state_cond:
                while not self.is_ready():
                    if self._closing or self._closed:
                        return False
                    if cancel_event is not None and cancel_event.is_set():
                        return False
                    remaining = deadline.remaining()
                    if remaining <= 0:
                        return False
                    if cancel_event is not None:
                        remaining = min(remaining, poll_interval)
                    self._state_cond.wait(remaining)
                return True

    # ------------------------------------------------------------------
    # Callbacks de paho (thread de red)
    # ------------------------------------------------------------------

    def _on_pre_connect(self, client, userdata):
        self._set_state(ConnectionState.CONNECTING)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """Callback cuando el broker responde el CONNECT"""
        if reason_code.is_failure:
            log_error_with_context(
                logger,
                message=f"❌ Broker rechazó la conexión: {reason_code}",
                component="connection",
                event="connection_refused",
                broker_host=self.broker_host,
                broker_port=self.broker_port,
                reason_code=str(reason_code),
            )
            self._set_state(ConnectionState.OFFLINE)
            return

        logger.info(
            "✅ Conectado al broker MQTT",
            extra={
                "component": "connection",
                "event": "connected",
                "broker_host": self.broker_host,
                "broker_port": self.broker_port,
            }
        )
        self._set_state(ConnectionState.CONNECTED)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        """Callback cuando se pierde (o se cierra) la conexión"""
        if self._closing or self._closed:
            logger.info(
                "🔌 Desconectado del broker",
                extra={
                    "component": "connection",
                    "event": "disconnected",
                    "reason_code": str(reason_code),
                }
            )
            self._set_state(ConnectionState.DISCONNECTED)
            return

        logger.warning(
            f"⚠️ Conexión perdida, reintento en {self.reconnect_delay}s",
            extra={
                "component": "connection",
                "event": "connection_lost",
                "reason_code": str(reason_code),
                "reconnect_delay": self.reconnect_delay,
                "in_flight": self.in_flight,
            }
        )
        self._set_state(ConnectionState.OFFLINE)

    def _on_connect_fail(self, client, userdata):
        logger.warning(
            f"⚠️ Intento de conexión fallido, reintento en {self.reconnect_delay}s",
            extra={
                "component": "connection",
                "event": "connect_failed",
                "broker_host": self.broker_host,
                "broker_port": self.broker_port,
            }
        )
        self._set_state(ConnectionState.OFFLINE)

    def _on_publish(self, client, userdata, mid, reason_code=None, properties=None):
        """Callback cuando llega el PUBACK de un mensaje QoS 1"""
        with self._acks:
            entry = self._in_flight.pop(mid, None)
            if entry is None:
                # Ack anterior al registro del Future (ver publish())
                if mid in self._settled_early:
                    self._settled_early.discard(mid)
                else:
                    self._early_acks[mid] = reason_code
                return
            self._acks.notify_all()

        topic, future, size = entry
        self._settle(future, topic, size, mid, reason_code)

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(self, topic: str, payload: str, qos: int = 1, retain: bool = True) -> Future:
        """
        Envía un mensaje sin bloquear más allá del submit.

        Returns:
            Future que resuelve con el topic al recibir el ack, o falla con
            NotConnectedError / PublishDeliveryFailed
        """
        future: Future = Future()
        size = len(payload.encode('utf-8'))

        if not self.is_ready():
            logger.warning(
                "⚠️ Broker no conectado, mensaje descartado",
                extra={
                    "component": "connection",
                    "event": "publish_skipped",
                    "reason": "not_connected",
                    "mqtt_topic": topic,
                }
            )
            _resolve(future, exception=NotConnectedError(topic))
            return future

        try:
            info = self.client.publish(topic, payload, qos=qos, retain=retain)
        except (ValueError, TypeError, RuntimeError) as e:
            self._fail(future, topic, size, str(e))
            return future

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._fail(future, topic, size, mqtt.error_string(info.rc))
            return future

        with self._acks:
            # paho llama on_publish antes de marcar el info como publicado:
            # un ack guardado manda, sin importar is_published()
            reason_code = self._early_acks.pop(info.mid, _MISSING)
            if reason_code is _MISSING:
                if not info.is_published():
                    self._in_flight[info.mid] = (topic, future, size)
                    return future
                # Publicado pero on_publish todavía no corrió
                self._settled_early.add(info.mid)
                reason_code = None

        self._settle(future, topic, size, info.mid, reason_code)
        return future

    def _settle(self, future: Future, topic: str, size: int, mid: int, reason_code: Any) -> None:
        if reason_code is not None and getattr(reason_code, "is_failure", False):
            self._fail(future, topic, size, str(reason_code), mid=mid)
            return

        with self._acks:
            self._published += 1
        log_mqtt_publish(logger, topic=topic, qos=1, payload_size=size, mid=mid, retain=True)
        _resolve(future, result=topic)

    def _fail(self, future: Future, topic: str, size: int, cause: str, mid: Optional[int] = None) -> None:
        with self._acks:
            self._failed += 1
        log_mqtt_publish(
            logger,
            topic=topic,
            qos=1,
            payload_size=size,
            success=False,
            error=cause,
            mid=mid,
        )
        _resolve(future, exception=PublishDeliveryFailed(topic, cause))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """
        Inicia la conexión (una sola vez por proceso).

        Resuelve el host antes de arrancar el loop de paho: un host no
        resoluble es un error de configuración y nunca va a progresar.
        El resto de fallos (broker caído, refused) los reintenta paho.

        Raises:
            ConnectionSetupError: Host no resoluble, parámetros inválidos o
                manager ya cerrado
        """
        with self._state_cond:
            if self._closing or self._closed:
                raise ConnectionSetupError("Connection manager already shut down")
            if self._state is not ConnectionState.DISCONNECTED:
                return

        logger.info(
            "🔌 Conectando al broker MQTT",
            extra={
                "component": "connection",
                "event": "connecting",
                "broker_host": self.broker_host,
                "broker_port": self.broker_port,
                "client_id": self.client_id,
            }
        )

        try:
            socket.getaddrinfo(self.broker_host, self.broker_port, type=socket.SOCK_STREAM)
        except socket.gaierror as e:
            log_error_with_context(
                logger,
                message="❌ No se puede resolver el host del broker",
                exception=e,
                component="connection",
                event="resolve_failed",
                exc_info=False,
                broker_host=self.broker_host,
            )
            raise ConnectionSetupError(
                f"Cannot resolve broker host '{self.broker_host}': {e}"
            ) from e

        self._set_state(ConnectionState.CONNECTING)
        try:
            self.client.connect_async(self.broker_host, self.broker_port, keepalive=self.keepalive)
            self.client.loop_start()
        except (ValueError, OSError) as e:
            self._set_state(ConnectionState.DISCONNECTED)
            raise ConnectionSetupError(f"Cannot start MQTT client: {e}") from e

    def shutdown(self, graceful: bool = True, timeout: float = 5.0) -> bool:
        """
        Cierra la conexión (estado terminal DISCONNECTED).

        Args:
            graceful: Esperar los acks en vuelo antes de desconectar
            timeout: Límite de la espera graceful (ShutdownTimeout al vencer)

        Returns:
            True si el cierre graceful completó sin acks pendientes

        Note:
            Idempotente. Un shutdown(graceful=False) durante un cierre
            graceful en curso lo escala a forzado.
        """
        with self._state_cond:
            if self._closed:
                return self._graceful_result
            if self._closing:
                if not graceful:
                    with self._acks:
                        self._force_requested = True
                        self._acks.notify_all()
                return False
            self._closing = True
            self._state_cond.notify_all()

        logger.info(
            "🔌 Cerrando conexión con el broker",
            extra={
                "component": "connection",
                "event": "shutdown_started",
                "graceful": graceful,
                "timeout": timeout,
                "in_flight": self.in_flight,
            }
        )

        graceful_ok = False
        if graceful:
            with Deadline(timeout) as deadline:
                with self._acks:
                    while self._in_flight and not self._force_requested:
                        remaining = deadline.remaining()
                        if remaining <= 0:
                            break
                        self._acks.wait(remaining)
                    pending = len(self._in_flight)
                    forced = self._force_requested
            graceful_ok = pending == 0 and not forced
            if not graceful_ok:
                log_error_with_context(
                    logger,
                    message="❌ Shutdown graceful no completó, forzando cierre",
                    exception=ShutdownTimeout(timeout, pending),
                    component="connection",
                    event="shutdown_timeout",
                    exc_info=False,
                    pending=pending,
                )

        self._close_transport()

        with self._state_cond:
            self._graceful_result = graceful_ok
            self._closed = True
        self._set_state(ConnectionState.DISCONNECTED)

        logger.info(
            "✅ Conexión cerrada",
            extra={
                "component": "connection",
                "event": "shutdown_completed",
                "graceful": graceful_ok,
                **self.get_stats(),
            }
        )
        return graceful_ok

    def _close_transport(self) -> None:
        with self._acks:
            abandoned = list(self._in_flight.items())
            self._in_flight.clear()
            self._early_acks.clear()
            self._settled_early.clear()
            self._acks.notify_all()

        for mid, (topic, future, size) in abandoned:
            self._fail(future, topic, size, "connection closed", mid=mid)

        try:
            self.client.disconnect()
        except Exception as e:
            log_error_with_context(
                logger,
                message="❌ Error enviando DISCONNECT",
                exception=e,
                component="connection",
                event="disconnect_error",
            )
        try:
            self.client.loop_stop()
        except Exception as e:
            log_error_with_context(
                logger,
                message="❌ Error deteniendo el loop de red",
                exception=e,
                component="connection",
                event="loop_stop_error",
            )

    def get_stats(self) -> Dict[str, Any]:
        """Retorna estadísticas de la conexión"""
        with self._acks:
            return {
                "messages_published": self._published,
                "messages_failed": self._failed,
                "in_flight": len(self._in_flight),
                "state": self._state.value,
            }


def _resolve(future: Future, result: Any = None, exception: Optional[BaseException] = None) -> None:
    try:
        if exception is not None:
            future.set_exception(exception)
        else:
            future.set_result(result)
    except InvalidStateError:
        # Future cancelado por el consumidor
        pass


__all__ = ["ConnectionManager", "ConnectionState", "create_paho_client"]
