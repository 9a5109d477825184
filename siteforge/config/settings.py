"""Centralized configuration for the lifecycle orchestrator.

Configuration is loaded from YAML files and validated at startup. Every
value has a documented default so the orchestrator also runs without a
config directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from siteforge.utils.result import ConfigError, Err, Ok, Result

DATA_DIR_ENV = "SITEFORGE_DATA_DIR"


@dataclass
class PathsConfig:
    """Filesystem locations."""

    data_dir: Path = Path("./data")
    templates_dir: Optional[Path] = None


@dataclass
class PortConfig:
    """Host port range handed out to deployments."""

    host: str = "127.0.0.1"
    range_start: int = 3001
    range_end: int = 3999


@dataclass
class RuntimeConfig:
    """Container runtime settings."""

    name_prefix: str = "siteforge"
    image: str = "node:20-alpine"
    container_port: int = 3000
    memory_limit: str = "512m"
    content_mount: str = "/app/content"
    health_path: str = "/"
    targets: list[str] = field(default_factory=lambda: ["app-visitor"])


@dataclass
class TimeoutConfig:
    """Timeout settings, in seconds."""

    stage: float = 120.0
    health_check: float = 60.0
    health_interval: float = 2.0
    container_stop: int = 10
    notification: float = 5.0


@dataclass
class RetryConfig:
    """Retry and backoff settings for transient runtime and allocation errors."""

    max_attempts: int = 3
    base_delay: float = 0.5
    backoff_factor: float = 2.0
    max_backoff: float = 10.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        delay = self.base_delay * (self.backoff_factor ** max(attempt - 1, 0))
        return min(delay, self.max_backoff)


@dataclass
class ValidationConfig:
    """Schema validation options."""

    max_depth: int = 10
    strict: bool = False


@dataclass
class LoggingConfig:
    """Logging settings."""

    level: str = "info"
    format: str = "json"


@dataclass
class NotificationConfig:
    """Lifecycle event delivery."""

    webhook_url: Optional[str] = None
    log_events: bool = True


@dataclass
class OrchestratorSettings:
    """
    Complete orchestrator configuration.

    This is the single source of truth for all tunable values.
    """

    paths: PathsConfig = field(default_factory=PathsConfig)
    ports: PortConfig = field(default_factory=PortConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    history_size: int = 100

    @classmethod
    def from_yaml(cls, path: Path) -> Result["OrchestratorSettings", ConfigError]:
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Result with loaded config or error
        """
        path = Path(path)

        if not path.exists():
            return Err(ConfigError(
                field="path",
                message=f"Configuration file not found: {path}",
            ))

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            return Err(ConfigError(
                field="yaml",
                message=f"Failed to parse YAML: {e}",
            ))
        except OSError as e:
            return Err(ConfigError(
                field="file",
                message=f"Failed to read config file: {e}",
            ))

        if not isinstance(data, dict):
            return Err(ConfigError(
                field="yaml",
                message="Top-level YAML value must be a mapping",
            ))

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Result["OrchestratorSettings", ConfigError]:
        """
        Create configuration from a dictionary.

        Args:
            data: Configuration dictionary

        Returns:
            Result with loaded config or error
        """
        try:
            paths_data = data.get("paths", {})
            templates_dir = paths_data.get("templates_dir")
            paths = PathsConfig(
                data_dir=Path(paths_data.get("data_dir", "./data")),
                templates_dir=Path(templates_dir) if templates_dir else None,
            )

            ports_data = data.get("ports", {})
            ports = PortConfig(
                host=ports_data.get("host", "127.0.0.1"),
                range_start=int(ports_data.get("range_start", 3001)),
                range_end=int(ports_data.get("range_end", 3999)),
            )

            runtime_data = data.get("runtime", {})
            runtime = RuntimeConfig(
                name_prefix=runtime_data.get("name_prefix", "siteforge"),
                image=runtime_data.get("image", "node:20-alpine"),
                container_port=int(runtime_data.get("container_port", 3000)),
                memory_limit=str(runtime_data.get("memory_limit", "512m")),
                content_mount=runtime_data.get("content_mount", "/app/content"),
                health_path=runtime_data.get("health_path", "/"),
                targets=list(runtime_data.get("targets", ["app-visitor"])),
            )

            timeouts_data = data.get("timeouts", {})
            timeouts = TimeoutConfig(
                stage=float(timeouts_data.get("stage", 120.0)),
                health_check=float(timeouts_data.get("health_check", 60.0)),
                health_interval=float(timeouts_data.get("health_interval", 2.0)),
                container_stop=int(timeouts_data.get("container_stop", 10)),
                notification=float(timeouts_data.get("notification", 5.0)),
            )

            retry_data = data.get("retries", data.get("retry", {}))
            retry = RetryConfig(
                max_attempts=int(retry_data.get("max_attempts", 3)),
                base_delay=float(retry_data.get("base_delay", 0.5)),
                backoff_factor=float(retry_data.get("backoff_factor", 2.0)),
                max_backoff=float(retry_data.get("max_backoff", 10.0)),
            )

            validation_data = data.get("validation", {})
            validation = ValidationConfig(
                max_depth=int(validation_data.get("max_depth", 10)),
                strict=bool(validation_data.get("strict", False)),
            )

            logging_data = data.get("logging", {})
            logging_config = LoggingConfig(
                level=logging_data.get("level", "info"),
                format=logging_data.get("format", "json"),
            )

            notifications_data = data.get("notifications", {})
            notifications = NotificationConfig(
                webhook_url=notifications_data.get("webhook_url"),
                log_events=bool(notifications_data.get("log_events", True)),
            )

            config = cls(
                paths=paths,
                ports=ports,
                runtime=runtime,
                timeouts=timeouts,
                retry=retry,
                validation=validation,
                logging=logging_config,
                notifications=notifications,
                history_size=int(data.get("history_size", 100)),
            )

            return Ok(config)

        except (TypeError, ValueError, AttributeError) as e:
            return Err(ConfigError(
                field="unknown",
                message=f"Failed to parse configuration: {e}",
            ))

    def validate(self) -> Result[None, ConfigError]:
        """
        Validate configuration values.

        Returns:
            Result indicating success or validation error
        """
        if not 1 <= self.ports.range_start <= 65535:
            return Err(ConfigError(
                field="ports.range_start",
                message=f"Must be a valid port, got {self.ports.range_start}",
            ))
        if not self.ports.range_start <= self.ports.range_end <= 65535:
            return Err(ConfigError(
                field="ports.range_end",
                message=(
                    f"Must be between range_start and 65535, got {self.ports.range_end}"
                ),
            ))

        if not 1 <= self.runtime.container_port <= 65535:
            return Err(ConfigError(
                field="runtime.container_port",
                message=f"Must be a valid port, got {self.runtime.container_port}",
            ))
        if not self.runtime.targets:
            return Err(ConfigError(
                field="runtime.targets",
                message="At least one build target is required",
            ))

        for name, value in [
            ("stage", self.timeouts.stage),
            ("health_check", self.timeouts.health_check),
            ("health_interval", self.timeouts.health_interval),
            ("notification", self.timeouts.notification),
        ]:
            if value <= 0:
                return Err(ConfigError(
                    field=f"timeouts.{name}",
                    message=f"Must be positive, got {value}",
                ))

        if self.retry.max_attempts < 1:
            return Err(ConfigError(
                field="retry.max_attempts",
                message=f"Must be at least 1, got {self.retry.max_attempts}",
            ))
        if self.retry.backoff_factor < 1.0:
            return Err(ConfigError(
                field="retry.backoff_factor",
                message=f"Must be at least 1.0, got {self.retry.backoff_factor}",
            ))
        if self.retry.base_delay < 0:
            return Err(ConfigError(
                field="retry.base_delay",
                message=f"Must not be negative, got {self.retry.base_delay}",
            ))

        if self.validation.max_depth < 1:
            return Err(ConfigError(
                field="validation.max_depth",
                message=f"Must be at least 1, got {self.validation.max_depth}",
            ))

        if self.history_size < 1:
            return Err(ConfigError(
                field="history_size",
                message=f"Must be at least 1, got {self.history_size}",
            ))

        return Ok(None)

    def with_data_dir(self, data_dir: Path) -> "OrchestratorSettings":
        """Return a copy pointing at another data directory."""
        return replace(self, paths=replace(self.paths, data_dir=Path(data_dir)))


def load_settings(config_dir: Optional[Path] = None) -> Result[OrchestratorSettings, ConfigError]:
    """
    Load configuration from the standard location.

    Loads config/defaults.yaml, then overlays config/local.yaml if present,
    then applies the SITEFORGE_DATA_DIR environment override.

    Args:
        config_dir: Configuration directory (defaults to ./config)

    Returns:
        Result with loaded config or error
    """
    config_dir = Path(config_dir) if config_dir is not None else Path("./config")

    data: dict[str, Any] = {}
    for filename in ("defaults.yaml", "local.yaml"):
        path = config_dir / filename
        if not path.exists():
            continue
        try:
            with open(path) as f:
                layer = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            return Err(ConfigError(
                field=filename,
                message=f"Failed to load {path}: {e}",
            ))
        if not isinstance(layer, dict):
            return Err(ConfigError(
                field=filename,
                message="Top-level YAML value must be a mapping",
            ))
        data = _merge(data, layer)

    result = OrchestratorSettings.from_dict(data)
    if result.is_err():
        return result
    config = result.unwrap()

    env_data_dir = os.environ.get(DATA_DIR_ENV)
    if env_data_dir:
        config = config.with_data_dir(Path(env_data_dir))

    validation_result = config.validate()
    if validation_result.is_err():
        return Err(validation_result.unwrap_err())

    return Ok(config)


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged
