"""
Bridge Builder
==============

Builder pattern para construir el bridge con todas sus dependencias.

Responsabilidad:
- Construir la conexión MQTT compartida
- Construir el counter source del router
- Construir conversor, device info y tracker
- Ensamblar el CycleScheduler

El controller solo usa el Builder (no conoce detalles de construcción).
"""
import logging
from threading import Event
from typing import Optional

from ..broker import ConnectionManager, PublishBatchTracker
from ..config import BridgeConfig
from ..sensors import DeviceInfo, UnitConverter
from ..sources import CounterSource, FiberHomeCounterSource
from .scheduler import CycleScheduler

logger = logging.getLogger(__name__)


class BridgeBuilder:
    """
    Builder para el bridge router → MQTT.

    Usage:
        builder = BridgeBuilder(config)

        connection = builder.build_connection()
        source = builder.build_source()
        scheduler = builder.build_scheduler(connection, source, shutdown_event)
    """

    def __init__(self, config: BridgeConfig):
        """
        Args:
            config: BridgeConfig validada
        """
        self.config = config

    def build_connection(self) -> ConnectionManager:
        broker = self.config.broker
        logger.info(
            "Building MQTT connection",
            extra={
                "component": "builder",
                "event": "connection_build_start",
                "broker_host": broker.host,
                "broker_port": broker.port,
                "tls": broker.tls,
            }
        )
        return ConnectionManager(
            broker_host=broker.host,
            broker_port=broker.port,
            client_id=broker.client_id,
            username=broker.username,
            password=broker.password,
            keepalive=broker.keepalive,
            reconnect_delay=broker.reconnect_delay,
            tls=broker.tls,
            ca_certs=broker.ca_certs,
        )

    def build_source(self) -> CounterSource:
        router = self.config.router
        logger.info(
            "Building counter source",
            extra={
                "component": "builder",
                "event": "source_build_start",
                "router_host": router.host,
                "counters": list(self.config.sensors.counters),
            }
        )
        return FiberHomeCounterSource(
            host=router.host,
            username=router.username,
            password=router.password or "",
            counters=self.config.sensors.counters,
            timeout_seconds=router.timeout_seconds,
            executable_path=router.executable_path,
            headless=router.headless,
        )

    def build_device(self) -> DeviceInfo:
        device = self.config.device
        return DeviceInfo(
            device_id=device.id,
            name=device.name,
            model=device.model,
            manufacturer=device.manufacturer,
            discovery_prefix=device.discovery_prefix,
            icon=self.config.sensors.icon,
        )

    def build_converter(self) -> UnitConverter:
        return UnitConverter(self.config.sensors.unit_policy)

    def build_tracker(
        self,
        connection: ConnectionManager,
        shutdown_event: Optional[Event] = None,
    ) -> PublishBatchTracker:
        schedule = self.config.schedule
        return PublishBatchTracker(
            connection,
            ready_timeout=schedule.ready_timeout,
            cycle_timeout=schedule.cycle_timeout,
            drain_timeout=schedule.shutdown_timeout,
            cancel_event=shutdown_event,
        )

    def build_scheduler(
        self,
        connection: ConnectionManager,
        source: CounterSource,
        shutdown_event: Event,
    ) -> CycleScheduler:
        """
        Ensambla el scheduler.

        Args:
            connection: Conexión compartida (ya creada, no necesariamente conectada)
            source: Counter source
            shutdown_event: Evento de shutdown (también cancela el drain del tracker)
        """
        logger.info(
            "Building cycle scheduler",
            extra={
                "component": "builder",
                "event": "scheduler_build_start",
                "interval": self.config.schedule.interval_seconds,
                "unit_policy": self.config.sensors.unit_policy,
            }
        )
        return CycleScheduler(
            source=source,
            converter=self.build_converter(),
            device=self.build_device(),
            tracker=self.build_tracker(connection, shutdown_event),
            interval=self.config.schedule.interval_seconds,
            shutdown_event=shutdown_event,
        )


__all__ = ["BridgeBuilder"]
