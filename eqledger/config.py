"""
EQLEDGER Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (EQLEDGER_*)
    2. Runtime overrides
    3. Config files (./eqledger.yaml, ./config/eqledger.yaml,
       ~/.eqledger/config.yaml)
    4. Default values
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

T = TypeVar("T")

logger = logging.getLogger(__name__)

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """
        Get the current value.

        An environment override that fails coercion or validation is
        ignored with a warning; ``env_error`` reports it.
        """
        if self.env_var and self.env_var in os.environ:
            if self.env_error() is None:
                return self.coerce(os.environ[self.env_var])
            logger.warning(
                "Ignoring invalid %s=%r", self.env_var, os.environ[self.env_var]
            )

        return self._value if self._value is not None else self.default

    def env_error(self) -> Optional[str]:
        """Why the environment override is unusable, or None."""
        if not self.env_var or self.env_var not in os.environ:
            return None
        raw = os.environ[self.env_var]
        try:
            value = self.coerce(raw)
        except ConfigValidationError as e:
            return f"{self.env_var}: {e}"
        if self.validator and not self.validator(value):
            return f"{self.env_var}: invalid value {raw!r}"
        return None

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value!r}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        """Drop any runtime or file override."""
        self._value = None

    def coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            try:
                return int(value)  # type: ignore
            except ValueError:
                raise ConfigValidationError(f"Expected integer, got {value!r}")
        return value  # type: ignore

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class LedgerSection:
    """Configuration for the balance ledger."""
    max_batch_size: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=256,
        env_var="EQLEDGER_MAX_BATCH_SIZE",
        description="Maximum number of ids in one batch mint, burn or transfer",
        validator=lambda x: isinstance(x, int) and x > 0,
    ))
    default_uri: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="https://api.example.com/metadata/{id}.json",
        env_var="EQLEDGER_DEFAULT_URI",
        description="Metadata URI template used by the simulate command",
        validator=lambda x: isinstance(x, str),
    ))


@dataclass
class HostSection:
    """Configuration for the in-process host."""
    enforce_layout_checks: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=True,
        env_var="EQLEDGER_ENFORCE_LAYOUT_CHECKS",
        description="Reject upgrades whose storage layouts are not append-only",
        validator=lambda x: isinstance(x, bool),
    ))


@dataclass
class ObservabilitySection:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="EQLEDGER_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in LOG_LEVELS,
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="EQLEDGER_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class LedgerConfig:
    """
    Root configuration for EQLEDGER.

    Aggregates all section configurations and provides
    loading/saving functionality.
    """
    ledger: LedgerSection = field(default_factory=LedgerSection)
    host: HostSection = field(default_factory=HostSection)
    observability: ObservabilitySection = field(default_factory=ObservabilitySection)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = LedgerConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @property
    def config(self) -> LedgerConfig:
        """Get the current configuration."""
        return self._config

    @property
    def loaded_paths(self) -> List[Path]:
        return list(self._config_paths)

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Malformed configuration file {path}: {e}")

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration file {path} must contain a mapping")
            self._apply_dict(data)
            self._config_paths.append(path)

    def load_defaults(self) -> None:
        """Load default configuration files if they exist."""
        default_paths = [
            Path.home() / ".eqledger" / "config.yaml",
            Path("config/eqledger.yaml"),
            Path("eqledger.yaml"),
        ]

        # Later files win, so the project file overrides the user file.
        for path in default_paths:
            if path.exists():
                try:
                    self.load_from_file(path)
                except ConfigError as e:
                    logger.warning("Skipping configuration file %s: %s", path, e)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                path = f"{prefix}{key}"
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {path}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{path}.")
                else:
                    raise ConfigError(f"Invalid config value for section: {path}")

        apply_to_config(self._config, data, "")

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if part.startswith("_") or not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        String values are coerced to the type of the key's default.

        Example: config.set("ledger.max_batch_size", 64)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        if isinstance(value, str):
            value = attr.coerce(value)
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("host.enforce_layout_checks")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def reset(self) -> None:
        """Forget every override and loaded file."""
        def reset_config(obj: Any) -> None:
            if isinstance(obj, ConfigValue):
                obj.reset()
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    reset_config(getattr(obj, field_name))

        reset_config(self._config)
        self._config_paths.clear()

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                env_error = obj.env_error()
                if env_error is not None:
                    errors.append(f"{path}: {env_error}")
                    return
                value = obj.get()
                if obj.validator and not obj.validator(value):
                    errors.append(f"{path}: validation failed for value {value}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema

    def to_yaml(self) -> str:
        return self._config.to_yaml()


def get_config() -> LedgerConfig:
    """Get the current EQLEDGER configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
