"""
Configuration Module
====================

Provides configuration loading with Pydantic validation.

Usage:
    from router2mqtt.config import BridgeConfig
    config = BridgeConfig.load("config/router2mqtt/config.yaml")
"""
from .schemas import (
    DEFAULT_CONFIG_PATH,
    BridgeConfig,
    BrokerSettings,
    DeviceSettings,
    EnvironmentOverrides,
    LoggingSettings,
    RouterSettings,
    ScheduleSettings,
    SensorsSettings,
)

__all__ = [
    'DEFAULT_CONFIG_PATH',
    'BridgeConfig',
    'BrokerSettings',
    'DeviceSettings',
    'SensorsSettings',
    'ScheduleSettings',
    'RouterSettings',
    'LoggingSettings',
    'EnvironmentOverrides',
]
