"""
Bridge Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (CCBRIDGE_*)
    2. Runtime overrides
    3. User config file (~/.ccbridge/config.yaml)
    4. Project config file (./ccbridge.yaml)
    5. Default values

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

T = TypeVar("T")


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
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])

        return self._value if self._value is not None else self.default

    def set(self, value: Any) -> None:
        """Set the value with validation."""
        if isinstance(value, str) and not isinstance(self.default, str):
            value = self._coerce(value)
        elif isinstance(self.default, Decimal) and not isinstance(value, Decimal):
            value = Decimal(str(value))

        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def reset(self) -> None:
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        elif target_type == float:
            return float(value)  # type: ignore
        elif target_type == Decimal:
            return Decimal(value)  # type: ignore
        return value  # type: ignore

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


# =============================================================================
# LEDGER PROFILES
# =============================================================================

@dataclass(frozen=True)
class LedgerProfile:
    """Static description of a ledger environment reachable by the transport."""
    name: str
    display_name: str
    chain_id: int
    selector: int
    fee_multiplier: Decimal = Decimal("1")


KNOWN_LEDGERS: Dict[str, LedgerProfile] = {
    "avalanche-fuji": LedgerProfile(
        name="avalanche-fuji",
        display_name="Avalanche Fuji",
        chain_id=43113,
        selector=14767482510784806043,
        fee_multiplier=Decimal("1.0"),
    ),
    "arbitrum-sepolia": LedgerProfile(
        name="arbitrum-sepolia",
        display_name="Arbitrum Sepolia",
        chain_id=421614,
        selector=3478487238524512106,
        fee_multiplier=Decimal("0.6"),
    ),
}


def get_ledger_profile(name: str) -> LedgerProfile:
    """Look up a known ledger profile by name."""
    try:
        return KNOWN_LEDGERS[name]
    except KeyError:
        supported = ", ".join(sorted(KNOWN_LEDGERS))
        raise ConfigError(f"Unknown ledger '{name}'. Supported: {supported}") from None


# =============================================================================
# COMPONENT SECTIONS
# =============================================================================

@dataclass
class TransportConfig:
    """Configuration for the simulated message transport and its cost oracle."""
    base_fee: ConfigValue[Decimal] = field(default_factory=lambda: ConfigValue(
        default=Decimal("0.05"),
        env_var="CCBRIDGE_TRANSPORT_BASE_FEE",
        description="Flat fee per message, in fee-token units",
        validator=lambda x: x >= 0,
    ))
    per_byte_fee: ConfigValue[Decimal] = field(default_factory=lambda: ConfigValue(
        default=Decimal("0.0001"),
        env_var="CCBRIDGE_TRANSPORT_PER_BYTE_FEE",
        description="Fee per payload byte, in fee-token units",
        validator=lambda x: x >= 0,
    ))
    max_payload_bytes: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=30000,
        env_var="CCBRIDGE_TRANSPORT_MAX_PAYLOAD",
        description="Largest payload the transport accepts",
        validator=lambda x: x > 0,
    ))


@dataclass
class BridgeConfig:
    """Configuration for bridge endpoints."""
    estimate_placeholder_uri: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="ipfs://placeholder-metadata-uri-for-fee-estimation",
        env_var="CCBRIDGE_ESTIMATE_PLACEHOLDER_URI",
        description="Metadata URI used to size messages when the asset is unknown",
    ))
    fee_token_symbol: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="LINK",
        env_var="CCBRIDGE_FEE_TOKEN_SYMBOL",
        description="Symbol of the token used to prepay transport fees",
        validator=lambda x: 0 < len(x) <= 11,
    ))


@dataclass
class LifecycleConfig:
    """Configuration for transfer lifecycle tracking."""
    stuck_after_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=3600,
        env_var="CCBRIDGE_STUCK_AFTER_SECONDS",
        description="Seconds without delivery before a transfer is reported stuck",
        validator=lambda x: x > 0,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="CCBRIDGE_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="CCBRIDGE_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class BridgeSettings:
    """
    Root configuration for the bridge.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    transport: TransportConfig = field(default_factory=TransportConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                value = obj.get()
                return str(value) if isinstance(value, Decimal) else value
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

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = BridgeSettings()
        self._config_paths: List[Path] = []
        self._watchers: List[Callable[[BridgeSettings], None]] = []
        self._initialized = True

    @property
    def config(self) -> BridgeSettings:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data:
            if not isinstance(data, dict):
                raise ConfigError(f"Configuration root must be a mapping: {path}")
            self._apply_dict(data)
            if path not in self._config_paths:
                self._config_paths.append(path)

    def load_defaults(self) -> List[Path]:
        """Load default configuration files if they exist. Returns the paths loaded."""
        default_paths = [
            Path("ccbridge.yaml"),
            Path("config/ccbridge.yaml"),
            Path.home() / ".ccbridge" / "config.yaml",
        ]

        loaded = []
        for path in default_paths:
            if path.exists():
                self.load_from_file(path)
                loaded.append(path)
        return loaded

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
                    raise ConfigError(f"Invalid value for config section: {path}")

        apply_to_config(self._config, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("transport.base_fee", "0.1")
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("lifecycle.stuck_after_seconds")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def watch(self, callback: Callable[[BridgeSettings], None]) -> None:
        """Register a callback for configuration changes."""
        self._watchers.append(callback)

    def reload(self) -> None:
        """Reload configuration from all loaded files."""
        for path in self._config_paths:
            if path.exists():
                self.load_from_file(path)

        for watcher in self._watchers:
            watcher(self._config)

    def reset(self) -> None:
        """Discard loaded files and overrides, returning to defaults."""
        self._config = BridgeSettings()
        self._config_paths = []
        self._watchers = []

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
                except Exception as e:
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


def get_config() -> BridgeSettings:
    """Get the current bridge configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
