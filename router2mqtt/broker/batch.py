"""
Publish Batch Tracker
=====================

Coordina los publish de un ciclo y produce un único outcome.

Algoritmo:
1. Batch vacío → AllSucceeded(0) sin tocar la red
2. Conexión no lista → await_ready(ready_timeout); si vence → Skipped(not_connected)
   sin publicar nada (una lectura vieja es peor que una faltante)
3. Submit concurrente de todos los units (topics distintos, retained idempotente)
4. Cada ack (thread de red) incrementa completed/failed bajo lock
5. Resuelve cuando completed + failed == total o al vencer el deadline del ciclo;
   los units sin ack al deadline cuentan como fallidos

Nunca lanza excepciones: todo resultado es un valor de outcomes.
"""
import logging
from concurrent.futures import CancelledError, Future
from threading import Condition, Event
from typing import Optional, Sequence

from ..logging import log_error_with_context
from ..outcomes import NOT_CONNECTED, AllSucceeded, PartialFailure, PublishOutcome, Skipped
from ..sensors.descriptors import SensorPublishUnit
from .connection import ConnectionManager
from .timers import Deadline

logger = logging.getLogger(__name__)


class CycleBatch:
    """
    Acks pendientes de un ciclo: {total, completed, failed}.

    Se crea al inicio de la fase de publish y se cierra al resolver;
    acks tardíos (después de close()) se ignoran.
    """

    def __init__(self, total: int):
        self.total = total
        self.completed = 0
        self.failed = 0
        self._closed = False
        self._cond = Condition()

    @property
    def done(self) -> bool:
        return self.completed + self.failed >= self.total

    def record(self, future: Future) -> None:
        """Done-callback de cada Future de publish (puede correr en el thread de red)."""
        try:
            error = future.exception()
        except CancelledError as e:
            error = e

        with self._cond:
            if self._closed:
                return
            if error is None:
                self.completed += 1
            else:
                self.failed += 1
            self._cond.notify_all()

        if error is not None:
            logger.warning(
                f"⚠️ Publish fallido: {error}",
                extra={
                    "component": "batch_tracker",
                    "event": "unit_failed",
                    "error_type": type(error).__name__,
                    "mqtt_topic": getattr(error, "topic", None),
                }
            )

    def wait(self, deadline: Deadline, cancel_event: Optional[Event] = None,
             drain_timeout: float = 5.0, poll_interval: float = 0.1) -> bool:
        """
        Espera a que todos los units resuelvan.

        Si cancel_event se activa durante la espera, el deadline se acorta
        a drain_timeout.

        Returns:
            True si todos resolvieron antes del deadline
        """
        draining = False
        with self._cond:
            while not self.done:
                if cancel_event is not None and not draining and cancel_event.is_set():
                    draining = True
                    deadline.shorten(drain_timeout)
                    logger.info(
                        "⏳ Shutdown solicitado, drenando batch en vuelo",
                        extra={
                            "component": "batch_tracker",
                            "event": "draining",
                            "pending": self.total - self.completed - self.failed,
                            "drain_timeout": drain_timeout,
                        }
                    )
                remaining = deadline.remaining()
                if remaining <= 0:
                    return False
                if cancel_event is not None and not draining:
                    remaining = min(remaining, poll_interval)
                self._cond.wait(remaining)
            return True

    def close(self) -> int:
        """Cierra el batch; retorna cuántos units quedaron sin resolver."""
        with self._cond:
            self._closed = True
            return self.total - self.completed - self.failed

    def __repr__(self) -> str:
        return f"CycleBatch(total={self.total}, completed={self.completed}, failed={self.failed})"


class PublishBatchTracker:
    """
    Tracker de publish por ciclo sobre un ConnectionManager compartido.

    Usage:
        tracker = PublishBatchTracker(connection, ready_timeout=10, cycle_timeout=30)
        outcome = tracker.track(units)   # AllSucceeded / PartialFailure / Skipped
    """

    def __init__(
        self,
        connection: ConnectionManager,
        ready_timeout: float = 10.0,
        cycle_timeout: float = 30.0,
        drain_timeout: float = 5.0,
        cancel_event: Optional[Event] = None,
    ):
        self.connection = connection
        self.ready_timeout = ready_timeout
        self.cycle_timeout = cycle_timeout
        self.drain_timeout = drain_timeout
        self.cancel_event = cancel_event

    def track(self, units: Sequence[SensorPublishUnit]) -> PublishOutcome:
        total = len(units)
        if total == 0:
            return AllSucceeded(total=0)

        if not self.connection.is_ready():
            logger.info(
                f"⏳ Broker no listo, esperando hasta {self.ready_timeout}s",
                extra={
                    "component": "batch_tracker",
                    "event": "awaiting_connection",
                    "state": self.connection.state.value,
                    "timeout": self.ready_timeout,
                }
            )
            if not self.connection.await_ready(self.ready_timeout, cancel_event=self.cancel_event):
                logger.warning(
                    "⚠️ Broker no disponible, ciclo omitido",
                    extra={
                        "component": "batch_tracker",
                        "event": "cycle_skipped",
                        "reason": NOT_CONNECTED,
                        "units": total,
                    }
                )
                return Skipped(reason=NOT_CONNECTED)

        batch = CycleBatch(total)
        with Deadline(self.cycle_timeout) as deadline:
            for unit in units:
                try:
                    future = self.connection.publish(
                        unit.topic, unit.payload, qos=unit.qos, retain=unit.retain
                    )
                except Exception as e:
                    log_error_with_context(
                        logger,
                        message="❌ Error inesperado en publish",
                        exception=e,
                        component="batch_tracker",
                        event="publish_exception",
                        mqtt_topic=unit.topic,
                    )
                    future = Future()
                    future.set_exception(e)
                future.add_done_callback(batch.record)

            all_resolved = batch.wait(
                deadline,
                cancel_event=self.cancel_event,
                drain_timeout=self.drain_timeout,
            )

        outstanding = batch.close()
        failed = batch.failed + outstanding
        timed_out = not all_resolved

        if timed_out:
            logger.warning(
                f"⚠️ Deadline del ciclo vencido con {outstanding} acks pendientes",
                extra={
                    "component": "batch_tracker",
                    "event": "batch_timeout",
                    "outstanding": outstanding,
                    "total": total,
                }
            )

        if failed == 0:
            return AllSucceeded(total=total)
        return PartialFailure(failed_count=failed, total=total, timed_out=timed_out)


__all__ = ["CycleBatch", "PublishBatchTracker"]
