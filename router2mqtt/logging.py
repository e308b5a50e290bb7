"""
Structured Logging
==================

Logs JSON (una línea por evento) para filtrar por component/event en producción.

- Un único handler: stdout, o archivo con rotación si se configura log_file
- trace_id por ciclo vía contextvars, agregado automáticamente a cada registro
- Helpers para los eventos frecuentes (publish MQTT, outcome de ciclo, errores)

Usage:
    from router2mqtt.logging import setup_logging, trace_context, generate_trace_id

    setup_logging(level="INFO", add_fields={"device_id": "router_hg6145f"})
    setup_logging(level="DEBUG", log_file="logs/router2mqtt.log")

    with trace_context(generate_trace_id("cycle")):
        scheduler.run_cycle()   # todos los logs llevan el mismo trace_id
"""
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

LOG_FORMAT = '%(timestamp)s %(level)s %(logger)s %(message)s'

# ============================================================================
# Trace Context
# ============================================================================

_current_trace: ContextVar[Optional[str]] = ContextVar('router2mqtt_trace_id', default=None)


def get_trace_id() -> Optional[str]:
    """trace_id activo, o None fuera de un trace_context."""
    return _current_trace.get()


def generate_trace_id(prefix: str = "trace") -> str:
    """Ej: generate_trace_id("cycle") → "cycle-1a2b3c4d"."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


@contextmanager
def trace_context(trace_id: Optional[str] = None):
    """
    Activa un trace_id para todo lo que se loguee dentro del bloque.

    Note:
        Los callbacks de paho corren en el thread de red y NO heredan
        el contexto; los logs de acks llevan el topic para correlacionar.
    """
    token = _current_trace.set(trace_id or generate_trace_id())
    try:
        yield _current_trace.get()
    finally:
        _current_trace.reset(token)


# ============================================================================
# Formatter / Setup
# ============================================================================

class BridgeJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter con nombres de campo cortos (level, logger) y el trace_id
    del contexto. Los campos globales van por static_fields.
    """

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['level'] = record.levelname
        log_record['logger'] = record.name

        trace_id = get_trace_id()
        if trace_id:
            log_record.setdefault('trace_id', trace_id)


def _build_handler(log_file: Optional[str], max_bytes: int, backup_count: int) -> logging.Handler:
    if not log_file:
        return logging.StreamHandler(sys.stdout)

    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    print(
        f"📄 Logging to file: {path} (rotación cada {max_bytes // (1024 * 1024)}MB, {backup_count} backups)",
        file=sys.stderr,
    )
    return RotatingFileHandler(
        filename=str(path),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8',
    )


def setup_logging(
    level: str = "INFO",
    indent: Optional[int] = None,
    add_fields: Optional[Dict[str, Any]] = None,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Reemplaza los handlers del root logger por uno JSON.

    Args:
        level: Nivel mínimo (DEBUG ... CRITICAL)
        indent: Indentación del JSON (None = una línea por registro)
        add_fields: Campos fijos en cada registro (ej: {"device_id": ...})
        log_file: Archivo con rotación; None = stdout
        max_bytes: Tamaño que dispara la rotación
        backup_count: Archivos rotados a conservar
    """
    handler = _build_handler(log_file, max_bytes, backup_count)
    handler.setFormatter(
        BridgeJsonFormatter(LOG_FORMAT, timestamp=True, json_indent=indent, static_fields=add_fields or {})
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())


# ============================================================================
# Event Helpers
# ============================================================================

def log_mqtt_publish(
    logger: logging.Logger,
    topic: str,
    qos: int,
    payload_size: int,
    success: bool = True,
    error: Optional[str] = None,
    mid: Optional[int] = None,
    retain: Optional[bool] = None,
    component: str = "connection",
) -> None:
    """
    Resultado de un publish: DEBUG si el broker confirmó, WARNING si falló.

    mid / retain / error se agregan solo cuando vienen informados.
    """
    extra: Dict[str, Any] = {
        "component": component,
        "event": "publish_acked" if success else "publish_failed",
        "mqtt_topic": topic,
        "qos": qos,
        "payload_size_bytes": payload_size,
        "success": success,
    }
    optional = {"mid": mid, "retain": retain, "mqtt_error": error}
    extra.update({key: value for key, value in optional.items() if value is not None})

    if success:
        logger.debug(f"📤 Ack recibido para {topic}", extra=extra)
    else:
        logger.warning(f"⚠️ Publish a {topic} falló: {error}", extra=extra)


def log_cycle_outcome(
    logger: logging.Logger,
    outcome: Any,
    duration_s: float,
    cycle: Optional[int] = None,
    component: str = "scheduler",
) -> None:
    """
    Cierre de un ciclo fetch→publish.

    AllSucceeded se loguea en INFO; PartialFailure, Skipped y FetchFailed
    en WARNING, con los campos de outcome.as_dict().
    """
    kind = type(outcome).__name__
    extra: Dict[str, Any] = {
        "component": component,
        "event": "cycle_completed",
        "outcome": kind,
        "duration_s": round(duration_s, 3),
    }
    if cycle is not None:
        extra["cycle"] = cycle
    if hasattr(outcome, "as_dict"):
        extra.update(outcome.as_dict())

    if kind == "AllSucceeded":
        logger.info(f"✅ Ciclo completado: {kind}", extra=extra)
    else:
        logger.warning(f"⚠️ Ciclo completado: {kind}", extra=extra)


def log_error_with_context(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    component: str = "unknown",
    event: Optional[str] = None,
    trace_id: Optional[str] = None,
    exc_info: bool = True,
    **context: Any
) -> None:
    """
    Log de ERROR con component/event, tipo y mensaje de la excepción.

    Args:
        message: Texto base; si hay excepción se le agrega ": <exception>"
        exception: Excepción capturada (opcional)
        trace_id: Pisa el trace_id del contexto
        exc_info: Adjuntar traceback (False para errores esperados)
        **context: Campos extra (broker_host, mqtt_topic, ...)
    """
    extra: Dict[str, Any] = {"component": component}
    if event:
        extra["event"] = event
    if trace_id:
        extra["trace_id"] = trace_id
    if exception is not None:
        extra["error_type"] = type(exception).__name__
        extra["error_message"] = str(exception)
        message = f"{message}: {exception}"
    extra.update(context)

    logger.error(message, extra=extra, exc_info=exc_info if exception is not None else False)


__all__ = [
    "setup_logging",
    "BridgeJsonFormatter",
    "trace_context",
    "get_trace_id",
    "generate_trace_id",
    "log_mqtt_publish",
    "log_cycle_outcome",
    "log_error_with_context",
]
