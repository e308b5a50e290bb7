"""
Deadline
========

Timer cancelable único para todas las esperas acotadas del bridge:
- espera de conexión (await_ready)
- deadline del batch de un ciclo
- espera de flush en shutdown
- watchdog de salida forzada del proceso

Un Deadline sin on_expire es solo un reloj (no crea threads).
Con on_expire arma un threading.Timer daemon que se cancela al salir
del bloque `with` o al llamar cancel().

Usage:
    with Deadline(10.0) as deadline:
        while not ready():
            if deadline.expired:
                return False
            condition.wait(deadline.remaining())

    with Deadline(6.0, on_expire=force_exit):
        connection.shutdown(graceful=True)
"""
import logging
import time
from threading import RLock, Timer
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class Deadline:
    """Instante límite monotónico, opcionalmente con callback al expirar."""

    def __init__(
        self,
        seconds: float,
        on_expire: Optional[Callable[[], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if seconds < 0:
            raise ValueError(f"seconds must be >= 0, got {seconds}")
        self._clock = clock
        self._expires_at = clock() + seconds
        self._on_expire = on_expire
        self._timer: Optional[Timer] = None
        self._cancelled = False
        self._fired = False
        # RLock: shorten()/cancel() pueden llamarse desde un signal handler
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Reloj
    # ------------------------------------------------------------------

    def remaining(self) -> float:
        """Segundos restantes (nunca negativo)."""
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    @property
    def fired(self) -> bool:
        """True si on_expire llegó a ejecutarse."""
        return self._fired

    def shorten(self, seconds: float) -> None:
        """Adelanta el límite a now + seconds (nunca lo extiende)."""
        with self._lock:
            candidate = self._clock() + max(0.0, seconds)
            if candidate >= self._expires_at:
                return
            self._expires_at = candidate
            if self._timer is not None:
                self._arm()

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def start(self) -> 'Deadline':
        """Arma el timer si hay on_expire. Idempotente."""
        with self._lock:
            if self._on_expire is not None and self._timer is None and not self._cancelled:
                self._arm()
        return self

    def cancel(self) -> None:
        """Cancela el timer pendiente. Idempotente."""
        with self._lock:
            self._cancelled = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = Timer(self.remaining(), self._fire)
        self._timer.daemon = True
        self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            if self._cancelled or self._fired:
                return
            if not self.expired:
                self._arm()
                return
            self._fired = True
            self._timer = None
            callback = self._on_expire
        logger.debug(
            "⏰ Deadline expirado",
            extra={"component": "deadline", "event": "expired"}
        )
        callback()

    def __enter__(self) -> 'Deadline':
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining():.3f}s, cancelled={self._cancelled})"


__all__ = ["Deadline"]
