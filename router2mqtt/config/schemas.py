"""
Pydantic Configuration Schemas
================================

Type-safe configuration validation usando Pydantic v2.

- Validación en load time (no en runtime)
- Config inmutable una vez cargada (modelos frozen)
- Variables de entorno (las del script original) pisan el YAML

Usage:
    config = BridgeConfig.load("config/router2mqtt/config.yaml")
    config.schedule.interval_seconds  # Type-safe access
"""
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple
from pathlib import Path
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = "config/router2mqtt/config.yaml"

_TOPIC_FORBIDDEN = ('/', '+', '#', '\x00')


def _validate_topic_segment(value: str, field_name: str) -> str:
    if not value:
        raise ValueError(f"{field_name} must not be empty")
    for char in _TOPIC_FORBIDDEN:
        if char in value:
            raise ValueError(f"{field_name} must not contain {char!r}, got {value!r}")
    return value


# ============================================================================
# MQTT Broker Configuration
# ============================================================================

class BrokerSettings(BaseModel):
    """MQTT broker connection settings"""
    model_config = ConfigDict(frozen=True)

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname (mqtt:// and mqtts:// prefixes accepted)"
    )
    port: int = Field(
        default=1883,
        ge=1,
        le=65535,
        description="MQTT broker port"
    )
    username: Optional[str] = Field(
        default=None,
        description="MQTT username (optional, from env)"
    )
    password: Optional[str] = Field(
        default=None,
        description="MQTT password (optional, from env)"
    )
    client_id: str = Field(
        default="publish-fiber-home-router",
        min_length=1,
        description="MQTT client id"
    )
    keepalive: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="Keepalive in seconds"
    )
    tls: bool = Field(
        default=False,
        description="Enable TLS"
    )
    ca_certs: Optional[str] = Field(
        default=None,
        description="CA bundle path for TLS (None = system defaults)"
    )
    reconnect_delay: float = Field(
        default=5.0,
        gt=0.0,
        le=300.0,
        description="Fixed delay between reconnect attempts (seconds)"
    )

    @model_validator(mode='before')
    @classmethod
    def parse_url_host(cls, data: Any) -> Any:
        """Acepta host estilo URL (mqtt://host:port) como en el .env original"""
        if not isinstance(data, dict) or not isinstance(data.get('host'), str):
            return data

        host = data['host'].strip()
        scheme = None
        for prefix in ("mqtts://", "mqtt://", "tcp://", "ssl://"):
            if host.startswith(prefix):
                scheme = prefix[:-3]
                host = host[len(prefix):]
                break
        if scheme is None:
            return data

        data = dict(data)
        host = host.rstrip('/')
        if ':' in host and 'port' not in data:
            host, port = host.rsplit(':', 1)
            data['port'] = port
        data['host'] = host
        if scheme in ("mqtts", "ssl"):
            data.setdefault('tls', True)
        return data

    @field_validator('host')
    @classmethod
    def validate_host(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("host must not be empty")
        return v.strip()


# ============================================================================
# Device / Sensors Configuration
# ============================================================================

class DeviceSettings(BaseModel):
    """Home Assistant device metadata"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default="router_hg6145f",
        description="Device identifier (topic segment + unique_id prefix)"
    )
    name: str = Field(default="Router Device", description="Device name in HA")
    model: str = Field(default="HG6145F", description="Device model")
    manufacturer: str = Field(default="FiberHome", description="Device manufacturer")
    discovery_prefix: str = Field(
        default="homeassistant",
        description="Home Assistant discovery prefix"
    )

    @field_validator('id')
    @classmethod
    def validate_id(cls, v: str) -> str:
        return _validate_topic_segment(v, "device.id")

    @field_validator('discovery_prefix')
    @classmethod
    def validate_discovery_prefix(cls, v: str) -> str:
        """Puede tener niveles (a/b) pero no wildcards ni '/' en los extremos"""
        if not v or v.startswith('/') or v.endswith('/'):
            raise ValueError(f"discovery_prefix must not be empty or start/end with '/', got {v!r}")
        for char in ('+', '#', '\x00'):
            if char in v:
                raise ValueError(f"discovery_prefix must not contain {char!r}")
        return v


class SensorsSettings(BaseModel):
    """Counters to publish and display policy"""
    model_config = ConfigDict(frozen=True)

    unit_policy: Literal['gigabytes', 'bytes'] = Field(
        default='gigabytes',
        description="Display unit policy"
    )
    counters: List[str] = Field(
        default_factory=lambda: ["ponBytesSent", "ponBytesReceived"],
        min_length=1,
        description="Counters extracted from get_base_info"
    )
    icon: str = Field(
        default="mdi:server-network",
        description="MDI icon for every sensor"
    )

    @field_validator('counters')
    @classmethod
    def validate_counters(cls, v: List[str]) -> List[str]:
        for name in v:
            _validate_topic_segment(name, "counter name")
        if len(set(name.lower() for name in v)) != len(v):
            raise ValueError("counter names must be unique (case-insensitive)")
        return v


# ============================================================================
# Schedule Configuration
# ============================================================================

class ScheduleSettings(BaseModel):
    """Cycle interval and timeouts (seconds)"""
    model_config = ConfigDict(frozen=True)

    interval_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Start-to-start cycle interval"
    )
    ready_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Max wait for broker connection before skipping a cycle"
    )
    cycle_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Deadline for all publish acks of one cycle"
    )
    shutdown_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Upper bound for draining + graceful close on shutdown"
    )


# ============================================================================
# Router Configuration
# ============================================================================

class RouterSettings(BaseModel):
    """Router web UI access (Playwright scraper)"""
    model_config = ConfigDict(frozen=True)

    host: str = Field(default="192.168.1.1", description="Router IP or hostname")
    username: str = Field(default="", description="Router UI username")
    password: Optional[str] = Field(default=None, description="Router UI password (from env)")
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="Playwright default timeout per step"
    )
    executable_path: Optional[str] = Field(
        default=None,
        description="Chromium binary (None = Playwright bundled browser)"
    )
    headless: bool = Field(default=True, description="Run browser headless")


# ============================================================================
# Logging Configuration
# ============================================================================

class LoggingSettings(BaseModel):
    """Logging configuration (JSON structured logging)"""
    model_config = ConfigDict(frozen=True)

    level: Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'] = Field(
        default='INFO',
        description="Log level"
    )
    json_indent: Optional[int] = Field(
        default=None,
        ge=0,
        le=4,
        description="JSON indent for pretty-print (None=compact, 2=readable)"
    )
    paho_level: Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'] = Field(
        default='WARNING',
        description="Paho MQTT library log level"
    )
    file: Optional[str] = Field(
        default=None,
        description="Path to log file (None=stdout). If specified, enables file rotation."
    )
    max_bytes: int = Field(
        default=10485760,  # 10 MB
        ge=1024,
        description="Maximum bytes per log file before rotation (default 10 MB)"
    )
    backup_count: int = Field(
        default=5,
        ge=0,
        description="Number of backup log files to keep"
    )

    @field_validator('level', 'paho_level', mode='before')
    @classmethod
    def uppercase_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


# ============================================================================
# Environment Overrides
# ============================================================================

class EnvironmentOverrides(BaseSettings):
    """
    Variables de entorno del despliegue original (.env).

    Solo las definidas (y no vacías) pisan el YAML.
    """
    model_config = SettingsConfigDict(extra='ignore', env_ignore_empty=True)

    mqtt_host: Optional[str] = None
    mqtt_port: Optional[int] = None
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_client_id: Optional[str] = None
    router_ip: Optional[str] = None
    router_username: Optional[str] = None
    router_password: Optional[str] = None
    execution_interval: Optional[float] = None
    device_id: Optional[str] = None
    unit_policy: Optional[str] = None
    log_level: Optional[str] = None

    ENV_MAPPING: ClassVar[Dict[str, Tuple[str, str]]] = {
        'mqtt_host': ('broker', 'host'),
        'mqtt_port': ('broker', 'port'),
        'mqtt_username': ('broker', 'username'),
        'mqtt_password': ('broker', 'password'),
        'mqtt_client_id': ('broker', 'client_id'),
        'router_ip': ('router', 'host'),
        'router_username': ('router', 'username'),
        'router_password': ('router', 'password'),
        'execution_interval': ('schedule', 'interval_seconds'),
        'device_id': ('device', 'id'),
        'unit_policy': ('sensors', 'unit_policy'),
        'log_level': ('logging', 'level'),
    }

    def apply_to(self, config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Retorna una copia de config_dict con los overrides aplicados"""
        merged = {
            key: dict(value) if isinstance(value, dict) else value
            for key, value in config_dict.items()
        }
        for field_name, (section, key) in self.ENV_MAPPING.items():
            value = getattr(self, field_name)
            if value is None:
                continue
            section_dict = merged.get(section)
            if not isinstance(section_dict, dict):
                section_dict = {}
                merged[section] = section_dict
            section_dict[key] = value
        return merged


# ============================================================================
# Root Configuration
# ============================================================================

class BridgeConfig(BaseModel):
    """
    Root router2mqtt configuration with full validation.

    Loads from YAML and validates all settings.
    Environment variables override YAML for sensitive data.
    """
    model_config = ConfigDict(frozen=True)

    broker: BrokerSettings = Field(default_factory=BrokerSettings)
    device: DeviceSettings = Field(default_factory=DeviceSettings)
    sensors: SensorsSettings = Field(default_factory=SensorsSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    router: RouterSettings = Field(default_factory=RouterSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_yaml(cls, config_path: str, apply_env: bool = True) -> 'BridgeConfig':
        """
        Load and validate configuration from YAML file.

        Args:
            config_path: Path to config.yaml
            apply_env: Overlay environment variables (MQTT_HOST, ROUTER_IP, ...)

        Returns:
            Validated BridgeConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValidationError: If config is invalid
        """
        import yaml

        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create it from config/router2mqtt/config.yaml.example"
            )

        with open(config_file, 'r', encoding='utf-8') as f:
            config_dict = yaml.safe_load(f) or {}

        if not isinstance(config_dict, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping at top level")

        return cls.from_dict(config_dict, apply_env=apply_env)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any], apply_env: bool = True) -> 'BridgeConfig':
        if apply_env:
            config_dict = EnvironmentOverrides().apply_to(config_dict)
        return cls(**config_dict)

    @classmethod
    def load(cls, config_path: Optional[str] = DEFAULT_CONFIG_PATH) -> 'BridgeConfig':
        """YAML si existe, si no defaults; en ambos casos con overrides de entorno"""
        if config_path and Path(config_path).exists():
            return cls.from_yaml(config_path)
        return cls.from_dict({})
