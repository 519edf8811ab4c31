"""
Registry Configuration System

Configuration management with YAML files, environment variables,
validation, and runtime overrides.

Configuration Sources (in order of precedence):
    1. Environment variables (TRUSTREG_*)
    2. Runtime overrides
    3. Config file passed explicitly (--config)
    4. Default config files (./trustreg.yaml, ./config/trustreg.yaml,
       ~/.trustreg/config.yaml)
    5. Default values
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from trustreg.observability import LogLevel, get_logger

T = TypeVar("T")

log = get_logger("config")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ValidationError(ConfigError):
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
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        # Check environment variable first
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])

        # Return set value or default
        return self._value if self._value is not None else self.default

    def set(self, value: Any) -> None:
        """Set the value with coercion and validation."""
        if isinstance(value, str) and not isinstance(self.default, str):
            value = self._coerce(value)
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        """Drop any override and fall back to the default."""
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        try:
            if target_type == bool:
                return value.strip().lower() in ("true", "1", "yes", "on")  # type: ignore
            elif target_type == int:
                return int(value)  # type: ignore
            elif target_type == list:
                return [v.strip() for v in value.split(",") if v.strip()]  # type: ignore
            return value  # type: ignore
        except ValueError as e:
            raise ValidationError(f"Cannot coerce {value!r} to {target_type.__name__}: {e}") from e

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class RegistryLimitsConfig:
    """Capacity limits enforced by the issuer registry."""
    max_trusted_issuers: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=50,
        env_var="TRUSTREG_MAX_TRUSTED_ISSUERS",
        description="Maximum number of trusted issuers",
        validator=lambda x: isinstance(x, int) and x > 0,
    ))
    max_claim_topics_per_issuer: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=15,
        env_var="TRUSTREG_MAX_CLAIM_TOPICS",
        description="Maximum distinct claim topics per issuer",
        validator=lambda x: isinstance(x, int) and x > 0,
    ))


@dataclass
class StorageConfig:
    """Snapshot persistence settings."""
    snapshot_path: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="trusted-issuers.json",
        env_var="TRUSTREG_SNAPSHOT_PATH",
        description="Registry snapshot file (.json, .yaml or .yml)",
        validator=lambda x: isinstance(x, str) and bool(x.strip()),
    ))
    keep_backup: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=True,
        env_var="TRUSTREG_KEEP_BACKUP",
        description="Copy the previous snapshot to <path>.backup before overwriting",
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for logging and audit."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="TRUSTREG_LOG_LEVEL",
        description="Log level (debug, info, warning, error, critical)",
        validator=lambda x: x in {level.value for level in LogLevel},
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="TRUSTREG_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))
    audit_enabled: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=True,
        env_var="TRUSTREG_AUDIT_ENABLED",
        description="Record every mutation attempt in the audit trail",
    ))


@dataclass
class TrustRegConfig:
    """
    Root configuration.

    Aggregates all section configurations and provides serialization.
    """
    registry: RegistryLimitsConfig = field(default_factory=RegistryLimitsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

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
        return yaml.safe_dump(self.to_dict(), default_flow_style=False)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    DEFAULT_PATHS = (
        Path("trustreg.yaml"),
        Path("config/trustreg.yaml"),
        Path.home() / ".trustreg" / "config.yaml",
    )

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = TrustRegConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @classmethod
    def reset_instance(cls) -> None:
        """Discard the singleton (tests and CLI re-entry)."""
        with cls._lock:
            cls._instance = None

    @property
    def config(self) -> TrustRegConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {path}")

        self._apply_dict(data)
        self._config_paths.append(path)
        log.debug("Loaded configuration", path=str(path))

    def load_defaults(self) -> None:
        """Load default configuration files if they exist."""
        for path in self.DEFAULT_PATHS:
            if path.exists():
                try:
                    self.load_from_file(path)
                except ConfigError as e:
                    log.warning("Ignoring unreadable default config", path=str(path), reason=str(e))

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
                    raise ConfigError(f"Invalid config section: {path}")

        apply_to_config(self._config, data, "")

    def _resolve(self, path: str) -> ConfigValue:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        if not isinstance(obj, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        return obj

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("registry.max_trusted_issuers", 100)
        """
        self._resolve(path).set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("registry.max_trusted_issuers")
        """
        return self._resolve(path).get()

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
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


def get_config() -> TrustRegConfig:
    """Get the current configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
