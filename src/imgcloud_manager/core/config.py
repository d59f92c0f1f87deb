"""Configuration management for the resource manager."""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional, Union, List
from dataclasses import dataclass, field, asdict

import yaml

from .exceptions import ConfigurationError


logger = logging.getLogger(__name__)


@dataclass
class ProviderConfig:
    """IaaS provider configuration."""
    type: str = "local"  # local, digitalocean

    # DigitalOcean settings
    api_token: str = ""
    region: str = "nyc3"
    size: str = "s-1vcpu-1gb"
    image: str = ""
    ssh_keys: List[str] = field(default_factory=list)
    app_port: int = 80
    activation_timeout_seconds: float = 300.0
    activation_poll_interval_seconds: float = 5.0
    request_timeout_seconds: float = 30.0

    # Local process settings
    command: List[str] = field(default_factory=list)
    working_directory: str = ""
    shutdown_timeout_seconds: float = 10.0


@dataclass
class StatsConfig:
    """Request statistics sink configuration."""
    enabled: bool = True
    type: str = "memory"  # memory, redis
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "imgcloud"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: str = ""
    structured: bool = False


@dataclass
class ManagerConfig:
    """Resource manager configuration."""

    # Timers
    poll_frequency_ms: int = 5000
    provision_frequency_ms: int = 30000
    polling_enabled: bool = True

    # Pool bounds
    min_instances: int = 2
    max_instances: int = 10

    # Load thresholds (exclusive)
    allocation_threshold: float = 0.80
    deallocation_threshold: float = 0.50

    # Health probe
    probe_timeout_ms: int = 2000
    probe_path: str = "/ping"
    load_header: str = "X-Imgcloud-Load"

    # Request accounting
    upload_path: str = "/images/upload"

    # First port handed out to new instances
    initial_port: int = 8001

    provider: ProviderConfig = field(default_factory=ProviderConfig)
    stats: StatsConfig = field(default_factory=StatsConfig)
    log: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def history_window(self) -> int:
        """Number of load samples kept per instance."""
        return int(self.provision_frequency_ms // self.poll_frequency_ms)

    @property
    def poll_interval(self) -> float:
        return self.poll_frequency_ms / 1000.0

    @property
    def provision_interval(self) -> float:
        return self.provision_frequency_ms / 1000.0

    @property
    def probe_timeout(self) -> float:
        return self.probe_timeout_ms / 1000.0

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ConfigurationError: If any value is out of range
        """
        errors = []

        if self.poll_frequency_ms <= 0:
            errors.append("poll_frequency_ms must be positive")
        if self.provision_frequency_ms <= 0:
            errors.append("provision_frequency_ms must be positive")
        elif self.poll_frequency_ms > 0 and self.history_window < 1:
            errors.append("provision_frequency_ms must be at least poll_frequency_ms")

        if self.probe_timeout_ms <= 0:
            errors.append("probe_timeout_ms must be positive")
        elif self.probe_timeout_ms >= self.poll_frequency_ms:
            errors.append(
                f"probe_timeout_ms ({self.probe_timeout_ms}) must be shorter than "
                f"poll_frequency_ms ({self.poll_frequency_ms})"
            )

        if self.min_instances < 0:
            errors.append("min_instances cannot be negative")
        if self.max_instances < self.min_instances:
            errors.append("max_instances must be >= min_instances")

        if self.deallocation_threshold > self.allocation_threshold:
            errors.append("deallocation_threshold must not exceed allocation_threshold")

        if self.initial_port <= 0 or self.initial_port > 65535:
            errors.append(f"initial_port out of range: {self.initial_port}")

        if self.provider.type not in ("local", "digitalocean"):
            errors.append(f"Unknown provider type: {self.provider.type}")
        if self.stats.type not in ("memory", "redis"):
            errors.append(f"Unknown stats sink type: {self.stats.type}")

        if errors:
            raise ConfigurationError("; ".join(errors), error_code="INVALID_CONFIG")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ManagerConfig':
        """Create configuration from dictionary."""
        data = dict(data)

        try:
            # Handle nested configurations
            if 'provider' in data and isinstance(data['provider'], dict):
                data['provider'] = ProviderConfig(**data['provider'])

            if 'stats' in data and isinstance(data['stats'], dict):
                data['stats'] = StatsConfig(**data['stats'])

            if 'log' in data and isinstance(data['log'], dict):
                data['log'] = LoggingConfig(**data['log'])

            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    @classmethod
    def from_env(cls, base: Optional['ManagerConfig'] = None) -> 'ManagerConfig':
        """Apply environment variable overrides on top of ``base``."""
        config = base or cls()

        env_mappings = {
            'IMGCLOUD_POLL_FREQUENCY_MS': ('poll_frequency_ms', int),
            'IMGCLOUD_PROVISION_FREQUENCY_MS': ('provision_frequency_ms', int),
            'IMGCLOUD_PROBE_TIMEOUT_MS': ('probe_timeout_ms', int),
            'IMGCLOUD_MIN_INSTANCES': ('min_instances', int),
            'IMGCLOUD_MAX_INSTANCES': ('max_instances', int),
            'IMGCLOUD_ALLOCATION_THRESHOLD': ('allocation_threshold', float),
            'IMGCLOUD_DEALLOCATION_THRESHOLD': ('deallocation_threshold', float),
        }

        for env_var, (attr, converter) in env_mappings.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            try:
                setattr(config, attr, converter(value))
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value!r}") from e

        # POLL=0 switches the timers off
        if os.getenv('POLL') is not None:
            config.polling_enabled = os.getenv('POLL') != '0'

        redis_url = os.getenv('IMGCLOUD_REDIS_URL')
        if redis_url:
            config.stats.type = "redis"
            config.stats.redis_url = redis_url

        token = os.getenv('DIGITALOCEAN_API_TOKEN')
        if token:
            config.provider.api_token = token

        return config


def load_config(config_path: Optional[Union[str, Path]] = None) -> ManagerConfig:
    """Load configuration from a JSON or YAML file, then apply env overrides.

    Args:
        config_path: Path to configuration file (defaults only when omitted)

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If the file cannot be read or is invalid
    """
    if config_path is None:
        config = ManagerConfig()
    else:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        suffix = path.suffix.lower()
        try:
            with open(path, 'r') as f:
                if suffix == '.json':
                    data = json.load(f)
                elif suffix in ('.yaml', '.yml'):
                    data = yaml.safe_load(f) or {}
                else:
                    raise ConfigurationError(f"Unsupported configuration format: {suffix}")
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read configuration {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {path}")

        config = ManagerConfig.from_dict(data)
        logger.info(f"Loaded configuration from {path}")

    config = ManagerConfig.from_env(config)
    config.validate()
    return config
