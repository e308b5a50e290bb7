"""
Bridge Controller
=================

Orquestación y lifecycle del bridge router → MQTT:
- Setup de componentes (delega construcción a BridgeBuilder)
- Signal handling (SIGINT / SIGTERM)
- Shutdown acotado: drain del batch en curso, close graceful, salida
"""
import logging
import os
import signal
import sys
from pathlib import Path
from threading import Event, RLock
from typing import Callable, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from ..broker import ConnectionManager, Deadline
from ..config import DEFAULT_CONFIG_PATH, BridgeConfig
from ..exceptions import ConnectionSetupError
from ..logging import log_error_with_context, setup_logging
from ..sources import CounterSource
from .builder import BridgeBuilder
from .scheduler import CycleScheduler

logger = logging.getLogger(__name__)

# Margen del watchdog sobre shutdown_timeout antes de forzar la salida
WATCHDOG_GRACE_SECONDS = 1.0
EXIT_FORCED = 1


class BridgeController:
    """
    Controlador del bridge.

    Responsabilidad: Orquestación y lifecycle management
    - Controller orquesta, no construye (delega a Builder)
    - El shutdown tiene cota dura: un watchdog fuerza os._exit si el
      broker no responde

    Usage:
        controller = BridgeController(config)
        controller.run()
    """

    def __init__(
        self,
        config: BridgeConfig,
        builder: Optional[BridgeBuilder] = None,
        exit_func: Callable[[int], None] = os._exit,
    ):
        self.config = config
        self.builder = builder or BridgeBuilder(config)

        # Componentes (serán creados por builder en setup)
        self.connection: Optional[ConnectionManager] = None
        self.source: Optional[CounterSource] = None
        self.scheduler: Optional[CycleScheduler] = None

        # Lifecycle
        self.shutdown_event = Event()
        self._shutdown_lock = RLock()
        self._shutdown_budget: Optional[Deadline] = None
        self._watchdog: Optional[Deadline] = None
        self._exit_func = exit_func

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_budget is not None

    def setup(self) -> None:
        """
        Construye componentes y conecta al broker.

        Raises:
            ConnectionSetupError: Host del broker no resoluble (fatal)
        """
        logger.info(
            "🚀 Inicializando router2mqtt...",
            extra={"component": "controller", "event": "setup_started"}
        )

        self.connection = self.builder.build_connection()
        self.connection.connect()

        ready_timeout = self.config.schedule.ready_timeout
        if self.connection.await_ready(ready_timeout, cancel_event=self.shutdown_event):
            logger.info(
                "✅ Broker conectado",
                extra={"component": "controller", "event": "broker_ready"}
            )
        elif self.shutdown_event.is_set():
            logger.info(
                "⏹️ Shutdown durante la espera del broker",
                extra={"component": "controller", "event": "broker_wait_cancelled"}
            )
        else:
            logger.warning(
                f"⚠️ Broker no disponible tras {ready_timeout}s, se reintenta en background",
                extra={
                    "component": "controller",
                    "event": "broker_not_ready",
                    "state": self.connection.state.value,
                }
            )

        self.source = self.builder.build_source()
        self.scheduler = self.builder.build_scheduler(
            self.connection, self.source, self.shutdown_event
        )

        logger.info(
            "✅ Setup completado",
            extra={"component": "controller", "event": "setup_completed"}
        )

    def run(self, max_cycles: Optional[int] = None) -> None:
        """Setup + loop de ciclos hasta shutdown. Siempre limpia recursos."""
        # Signal handlers antes del setup: la espera del broker es interrumpible
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        try:
            self.setup()

            logger.info("=" * 70)
            logger.info("🎬 router2mqtt activo")
            logger.info(f"📡 Broker: {self.config.broker.host}:{self.config.broker.port}")
            logger.info(f"🏷️  Device: {self.config.device.id}")
            logger.info(f"⏱️  Intervalo: {self.config.schedule.interval_seconds}s")
            logger.info("⌨️  Presiona Ctrl+C para salir")
            logger.info("=" * 70)

            try:
                self.scheduler.run(max_cycles=max_cycles)
            except KeyboardInterrupt:
                logger.info("⚠️ Interrupción forzada...")
                self.request_shutdown(reason="keyboard_interrupt")
        finally:
            self.cleanup()

    def _signal_handler(self, signum, frame):
        """Handler para señales (Ctrl+C, SIGTERM)"""
        logger.info(
            "⚠️ Señal de terminación recibida...",
            extra={"component": "controller", "event": "signal_received", "signal": signum}
        )
        self.request_shutdown(reason=f"signal_{signum}")

    def request_shutdown(self, reason: str = "requested") -> None:
        """
        Pide el shutdown (idempotente).

        Detiene nuevos ciclos, acota el tiempo restante del proceso con
        shutdown_timeout y arma el watchdog de salida forzada.
        """
        with self._shutdown_lock:
            if self._shutdown_budget is not None:
                return
            timeout = self.config.schedule.shutdown_timeout
            self._shutdown_budget = Deadline(timeout)
            self._watchdog = Deadline(
                timeout + WATCHDOG_GRACE_SECONDS,
                on_expire=self._force_exit,
            ).start()

        logger.info(
            f"🛑 Shutdown solicitado ({reason})",
            extra={
                "component": "controller",
                "event": "shutdown_requested",
                "reason": reason,
                "timeout": self.config.schedule.shutdown_timeout,
            }
        )
        self.shutdown_event.set()

    def _force_exit(self) -> None:
        logger.critical(
            "💀 Shutdown excedió el límite, forzando salida",
            extra={
                "component": "controller",
                "event": "forced_exit",
                "timeout": self.config.schedule.shutdown_timeout + WATCHDOG_GRACE_SECONDS,
            }
        )
        for handler in logging.getLogger().handlers:
            handler.flush()
        self._exit_func(EXIT_FORCED)

    def cleanup(self) -> bool:
        """
        Libera recursos dentro del presupuesto de shutdown.

        Returns:
            True si la conexión cerró de forma graceful (sin acks pendientes)
        """
        self.request_shutdown(reason="cleanup")
        logger.info("🧹 Limpiando recursos...")

        graceful = False
        if self.connection is not None:
            try:
                graceful = self.connection.shutdown(
                    graceful=True,
                    timeout=self._shutdown_budget.remaining(),
                )
                logger.info(
                    f"📊 Connection stats: {self.connection.get_stats()}",
                    extra={
                        "component": "controller",
                        "event": "connection_stats",
                        **self.connection.get_stats(),
                    }
                )
            except Exception as e:
                log_error_with_context(
                    logger,
                    message="❌ Error cerrando la conexión MQTT",
                    exception=e,
                    component="controller",
                    event="cleanup_error",
                )

        if self.source is not None:
            try:
                self.source.close()
            except Exception as e:
                log_error_with_context(
                    logger,
                    message="❌ Error cerrando el counter source",
                    exception=e,
                    component="controller",
                    event="cleanup_error",
                )

        if self._watchdog is not None:
            self._watchdog.cancel()

        logger.info("👋 Hasta luego!")
        return graceful


# ============================================================================
# MAIN
# ============================================================================
def load_config(config_path: str) -> BridgeConfig:
    """Carga la configuración o termina el proceso con exit 1"""
    try:
        config = BridgeConfig.load(config_path)
        if Path(config_path).exists():
            print(f"✅ Config loaded and validated from {config_path}", file=sys.stderr)
        else:
            print(f"⚠️  Config file not found ({config_path}), using defaults + environment", file=sys.stderr)
        return config

    except ValidationError as e:
        # Fail fast con mensaje claro
        print("❌ Invalid configuration:", file=sys.stderr)
        for error in e.errors():
            field = " -> ".join(str(loc) for loc in error['loc'])
            print(f"   • {field}: {error['msg']}", file=sys.stderr)
        print(f"\nPlease fix {config_path} (or the environment) and try again.", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"❌ Error loading config: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    """Punto de entrada principal"""
    load_dotenv()
    config_path = os.environ.get("ROUTER2MQTT_CONFIG", DEFAULT_CONFIG_PATH)
    config = load_config(config_path)

    setup_logging(
        level=config.logging.level,
        indent=config.logging.json_indent,
        add_fields={"device_id": config.device.id},
        log_file=config.logging.file,
        max_bytes=config.logging.max_bytes,
        backup_count=config.logging.backup_count,
    )

    logger.info("🔧 router2mqtt starting...")

    # Reducir verbosidad de paho-mqtt
    logging.getLogger('paho').setLevel(getattr(logging, config.logging.paho_level))

    controller = BridgeController(config)

    try:
        controller.run()
    except ConnectionSetupError as e:
        log_error_with_context(
            logger,
            message="❌ Configuración del broker inválida, abortando",
            exception=e,
            component="controller",
            event="fatal_setup_error",
            exc_info=False,
        )
        sys.exit(1)
    except Exception as e:
        logger.error(f"❌ Error fatal: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
