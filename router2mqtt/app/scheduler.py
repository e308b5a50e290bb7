"""
Cycle Scheduler
===============

Un ciclo por intervalo: fetch → convert → build → track.

- Intervalo medido de inicio a inicio de ciclo
- El sleep es interrumpible (shutdown_event.wait)
- Nunca hay dos ciclos en paralelo: el siguiente fetch empieza cuando el
  batch anterior ya resolvió (éxito, fallo parcial o skip)
"""
import logging
import time
from threading import Event
from typing import Callable, Dict, List, Optional

from ..broker.batch import PublishBatchTracker
from ..exceptions import InvalidReadingError
from ..logging import (
    generate_trace_id,
    log_cycle_outcome,
    log_error_with_context,
    trace_context,
)
from ..outcomes import CycleOutcome, FetchFailed
from ..sensors import (
    DeviceInfo,
    SensorPublishUnit,
    UnitConverter,
    build_sensor_units,
    is_valid_byte_count,
)
from ..sources.base import CounterSource, Number

logger = logging.getLogger(__name__)


class CycleScheduler:
    """
    Loop principal del bridge.

    Usage:
        scheduler = CycleScheduler(source, converter, device, tracker,
                                   interval=30.0, shutdown_event=event)
        scheduler.run()          # bloquea hasta que event se setee
    """

    def __init__(
        self,
        source: CounterSource,
        converter: UnitConverter,
        device: DeviceInfo,
        tracker: PublishBatchTracker,
        interval: float = 30.0,
        shutdown_event: Optional[Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self.source = source
        self.converter = converter
        self.device = device
        self.tracker = tracker
        self.interval = interval
        self.shutdown_event = shutdown_event or Event()
        self._clock = clock

        self.cycles_run = 0
        self.last_outcome: Optional[CycleOutcome] = None

    def run_cycle(self) -> CycleOutcome:
        """Ejecuta un ciclo completo. Nunca lanza: todo resultado es un outcome."""
        try:
            readings = self.source.fetch_counters()
        except Exception as e:
            log_error_with_context(
                logger,
                message="❌ Fallo obteniendo contadores del router",
                exception=e,
                component="scheduler",
                event="fetch_failed",
                exc_info=False,
            )
            return FetchFailed(cause=e)

        units = self.build_units(readings)
        return self.tracker.track(units)

    def build_units(self, readings: Dict[str, Number]) -> List[SensorPublishUnit]:
        """
        Convierte y arma los units de un ciclo.

        Lecturas inválidas (valor no numérico/negativo, nombre no apto para
        topic) se descartan individualmente; el resto se publica igual.
        """
        units: List[SensorPublishUnit] = []
        for name, raw in readings.items():
            if not is_valid_byte_count(raw):
                logger.warning(
                    f"⚠️ Lectura descartada: {name}={raw!r}",
                    extra={
                        "component": "scheduler",
                        "event": "reading_dropped",
                        "counter": name,
                        "reason": "invalid_value",
                    }
                )
                continue

            try:
                units.extend(
                    build_sensor_units(self.device, name, self.converter.convert(raw))
                )
            except InvalidReadingError as e:
                logger.warning(
                    f"⚠️ Lectura descartada: {e}",
                    extra={
                        "component": "scheduler",
                        "event": "reading_dropped",
                        "counter": name,
                        "reason": "invalid_name",
                    }
                )
        return units

    def run(self, max_cycles: Optional[int] = None) -> None:
        """
        Corre ciclos hasta que shutdown_event se setee.

        Args:
            max_cycles: Límite de ciclos (None = infinito)
        """
        logger.info(
            f"🔁 Scheduler iniciado (intervalo {self.interval}s)",
            extra={
                "component": "scheduler",
                "event": "scheduler_started",
                "interval": self.interval,
                "device_id": self.device.device_id,
            }
        )

        while not self.shutdown_event.is_set():
            started = self._clock()
            self.cycles_run += 1

            with trace_context(generate_trace_id("cycle")):
                outcome = self.run_cycle()
                self.last_outcome = outcome
                log_cycle_outcome(
                    logger,
                    outcome,
                    duration_s=self._clock() - started,
                    cycle=self.cycles_run,
                )

            if max_cycles is not None and self.cycles_run >= max_cycles:
                break

            remaining = self.interval - (self._clock() - started)
            if remaining > 0:
                self.shutdown_event.wait(remaining)

        logger.info(
            "⏹️ Scheduler detenido",
            extra={
                "component": "scheduler",
                "event": "scheduler_stopped",
                "cycles_run": self.cycles_run,
            }
        )


__all__ = ["CycleScheduler"]
