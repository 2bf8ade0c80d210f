"""Configuration loading, validation and environment overrides."""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

import yaml

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "STABLEVIEW_CONFIG"


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    path: str
    message: str


class ConfigValidationException(Exception):
    """Raised when config validation fails."""

    def __init__(self, errors: List[ConfigValidationError]):
        self.errors = errors
        messages = [f"{e.path}: {e.message}" for e in errors]
        super().__init__("Configuration validation failed:\n" + "\n".join(messages))


def _provider(**extra) -> Dict[str, Any]:
    properties = {
        "base_url": {"type": "str"},
        "timeout_seconds": {"type": "float", "min": 0.1, "max": 300},
    }
    properties.update(extra)
    return {"type": "dict", "properties": properties}


CONFIG_SCHEMA = {
    "server": {
        "type": "dict",
        "properties": {
            "host": {"type": "str"},
            "port": {"type": "int", "min": 1, "max": 65535},
        }
    },
    "database": {
        "type": "dict",
        "properties": {
            "url": {"type": "str"},
        }
    },
    "logging": {
        "type": "dict",
        "properties": {
            "level": {"type": "str", "options": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
            "format": {"type": "str"},
        }
    },
    "providers": {
        "type": "dict",
        "properties": {
            "topledger": _provider(
                supply_api_key={"type": "str"},
                volume_api_key={"type": "str"},
                dataset_ttl_seconds={"type": "float", "min": 0},
            ),
            "birdeye": _provider(
                api_key={"type": "str"},
                chain={"type": "str"},
                min_request_interval_ms={"type": "int", "min": 0, "max": 60000},
                batch_delay_ms={"type": "int", "min": 0, "max": 60000},
                cache_ttl_seconds={"type": "int", "min": 0},
            ),
            "exchange_rate": _provider(
                api_key={"type": "str"},
                cache_ttl_seconds={"type": "int", "min": 0},
            ),
        }
    },
    "refresh": {
        "type": "dict",
        "properties": {
            "price_stale_after_seconds": {"type": "int", "min": 1},
            "peg_price_stale_after_seconds": {"type": "int", "min": 1},
            "metrics_delay_seconds": {"type": "float", "min": 0},
            "peg_price_delay_seconds": {"type": "float", "min": 0},
            "sync_before_metrics": {"type": "bool"},
            "discovery_denylist": {"type": "list", "items": "str"},
        }
    },
    "cron": {
        "type": "dict",
        "properties": {
            "secret": {"type": "str"},
        }
    },
}

# Environment variable -> dotted config key
ENV_OVERRIDES = {
    "DATABASE_URL": "database.url",
    "LOG_LEVEL": "logging.level",
    "CRON_SECRET": "cron.secret",
    "BIRDEYE_API_KEY": "providers.birdeye.api_key",
    "EXCHANGE_RATE_API_KEY": "providers.exchange_rate.api_key",
    "TOPLEDGER_API_KEY_14115": "providers.topledger.supply_api_key",
    "TOPLEDGER_API_KEY_14117": "providers.topledger.volume_api_key",
}

_TYPE_MAP = {
    "str": str,
    "int": int,
    "float": (int, float),
    "bool": bool,
    "list": list,
    "dict": dict,
}


class ConfigService:
    """Loads ``config.yaml``, validates it and applies environment overrides."""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """Initialize config service.

        Args:
            config_path: Path to config file. Defaults to ``$STABLEVIEW_CONFIG``
                or ``backend/config.yaml``.
            environ: Environment mapping used for overrides (defaults to ``os.environ``).
        """
        self.environ = os.environ if environ is None else environ
        if config_path is None:
            backend_dir = Path(__file__).parent.parent.parent
            config_path = self.environ.get(CONFIG_PATH_ENV) or str(backend_dir / "config.yaml")

        self.config_path = config_path
        self._config: Dict[str, Any] = {}

    def load_and_validate(self) -> Dict[str, Any]:
        """Load and validate the configuration file, then apply env overrides.

        A missing file is not an error; every value falls back to its default.

        Raises:
            ConfigValidationException: If the file is not valid YAML or does not
                match the schema.
        """
        config: Any = {}
        if not os.path.exists(self.config_path):
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
        else:
            try:
                with open(self.config_path, 'r') as f:
                    config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigValidationException([
                    ConfigValidationError(path="", message=f"Invalid YAML syntax: {e}")
                ])

            if config is None:
                config = {}
            if not isinstance(config, dict):
                raise ConfigValidationException([
                    ConfigValidationError(
                        path="", message=f"Config must be a dictionary, got {type(config).__name__}"
                    )
                ])

            errors = self._validate_dict(config, CONFIG_SCHEMA, "")
            if errors:
                raise ConfigValidationException(errors)
            logger.info(f"Configuration loaded and validated from {self.config_path}")

        self._config = config
        self._apply_env_overrides()
        return self._config

    def _apply_env_overrides(self) -> None:
        for env_name, key in ENV_OVERRIDES.items():
            value = self.environ.get(env_name)
            if value:
                self.set(key, value)
                logger.debug(f"Config {key} overridden from ${env_name}")

    def _validate_dict(
        self,
        data: Dict[str, Any],
        schema: Dict[str, Any],
        path: str
    ) -> List[ConfigValidationError]:
        errors = []

        for key in data:
            if key not in schema:
                errors.append(ConfigValidationError(
                    path=f"{path}.{key}" if path else key,
                    message=f"Unknown configuration key '{key}'"
                ))

        for key, prop_schema in schema.items():
            current_path = f"{path}.{key}" if path else key
            if key not in data:
                if prop_schema.get("required", False):
                    errors.append(ConfigValidationError(path=current_path, message="Required field missing"))
                continue
            errors.extend(self._validate_value(data[key], prop_schema, current_path))

        return errors

    def _validate_value(
        self,
        value: Any,
        schema: Dict[str, Any],
        path: str
    ) -> List[ConfigValidationError]:
        expected_type = schema.get("type")
        expected = _TYPE_MAP.get(expected_type)
        if expected is None:
            return []

        # bool is an int subclass; don't accept it for numeric fields
        if not isinstance(value, expected) or (expected_type in ("int", "float") and isinstance(value, bool)):
            return [ConfigValidationError(
                path=path,
                message=f"Expected {expected_type}, got {type(value).__name__}"
            )]

        errors = []
        if expected_type == "dict" and "properties" in schema:
            errors.extend(self._validate_dict(value, schema["properties"], path))

        elif expected_type == "list" and "items" in schema:
            item_type = _TYPE_MAP[schema["items"]]
            for index, item in enumerate(value):
                if not isinstance(item, item_type):
                    errors.append(ConfigValidationError(
                        path=f"{path}[{index}]",
                        message=f"Expected {schema['items']}, got {type(item).__name__}"
                    ))

        elif expected_type in ("int", "float"):
            if "min" in schema and value < schema["min"]:
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Value {value} is below minimum {schema['min']}"
                ))
            if "max" in schema and value > schema["max"]:
                errors.append(ConfigValidationError(
                    path=path,
                    message=f"Value {value} is above maximum {schema['max']}"
                ))

        if "options" in schema and value not in schema["options"]:
            errors.append(ConfigValidationError(
                path=path,
                message=f"Value '{value}' not in allowed options: {schema['options']}"
            ))

        return errors

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by dot-notation key (e.g. ``"cron.secret"``)."""
        value = self._config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value by dot-notation key."""
        keys = key.split(".")
        target = self._config
        for k in keys[:-1]:
            target = target.setdefault(k, {})
        target[keys[-1]] = value


# Global config service instance
config_service = ConfigService()
