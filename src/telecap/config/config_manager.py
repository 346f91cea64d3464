"""
Configuration Manager
=====================

Loads the TeleCap YAML configuration, merges it over the defaults,
substitutes environment variables and validates the result.
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from telecap.config.defaults import (
    LOG_POLICY,
    VIDEO_POLICY,
    RotationPolicy,
    create_default_config_file,
    get_default_config,
)
from telecap.config.validator import ConfigValidator
from telecap.utils.exceptions import ConfigFileError, ConfigValidationError
from telecap.utils.helpers import get_nested_value, merge_configs
from telecap.utils.logger import get_logger

CONFIG_PATH_ENV = "TELECAP_CONFIG"
DEFAULT_CONFIG_PATH = "config/telecap.yaml"


class ConfigManager:
    """
    Configuration manager for TeleCap.

    Sources, lowest priority first:
    - built-in defaults
    - the YAML (or JSON) file at ``config_path``, if it exists
    - ``${VAR:default}`` environment substitution on string values
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None, create_if_missing: bool = False):
        self.config_path = Path(config_path) if config_path else None
        self.create_if_missing = create_if_missing
        self.logger = get_logger("config_manager")
        self.validator = ConfigValidator()
        self.config: Dict[str, Any] = {}

    def load_config(self) -> Dict[str, Any]:
        """Load configuration from defaults and the config file."""
        merged_config = get_default_config()

        if self.config_path is not None:
            if not self.config_path.exists() and self.create_if_missing:
                create_default_config_file(self.config_path)
                self.logger.info(f"Created default configuration file: {self.config_path}")

            if self.config_path.exists():
                merged_config = merge_configs(merged_config, load_config_file(self.config_path))
                self.logger.debug(f"Merged configuration from {self.config_path}")
            else:
                self.logger.info(f"No configuration file at {self.config_path}, using defaults")

        merged_config = self._substitute_environment_variables(merged_config)

        errors = [e for e in self.validator.validate(merged_config) if e.severity == "error"]
        if errors:
            first = errors[0]
            raise ConfigValidationError(
                field=first.field,
                value=first.value,
                expected=first.message,
                technical_details={"errors": [f"{e.field}: {e.message}" for e in errors]}
            )

        for warning in self.validator.warnings:
            self.logger.warning(f"{warning.field}: {warning.message}")

        self.config = merged_config
        self.logger.info("Configuration loaded successfully")
        return self.get_config()

    def _substitute_environment_variables(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Substitute ``${VAR}`` and ``${VAR:default}`` string values."""
        def substitute_value(value):
            if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
                env_var = value[2:-1]
                default_value = None

                if ":" in env_var:
                    env_var, default_value = env_var.split(":", 1)

                return os.getenv(env_var, default_value)
            elif isinstance(value, dict):
                return {k: substitute_value(v) for k, v in value.items()}
            elif isinstance(value, list):
                return [substitute_value(item) for item in value]
            return value

        return substitute_value(config)

    def _ensure_loaded(self):
        if not self.config:
            self.load_config()

    def get_config(self) -> Dict[str, Any]:
        """Get a copy of the current configuration."""
        self._ensure_loaded()
        return copy.deepcopy(self.config)

    def get_value(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        self._ensure_loaded()
        return get_nested_value(self.config, key, default)

    def storage_dir(self) -> Path:
        return Path(self.get_value("storage.directory")).expanduser()

    def log_policy(self) -> RotationPolicy:
        section = self.get_value("telemetry_log", {})
        return LOG_POLICY.with_overrides(
            file_name_prefix=section["file_name"],
            file_name_extension=section["file_extension"],
            rotate_size_bytes=int(section["rotate_size_bytes"]),
            keep_files=int(section["keep_files"]),
            minimum_free_space_bytes=int(section["minimum_free_space_bytes"]),
        )

    def video_policy(self) -> RotationPolicy:
        section = self.get_value("video", {})
        return VIDEO_POLICY.with_overrides(
            file_name_prefix=section["file_name"],
            file_name_extension=section["file_extension"],
            keep_files=int(section["keep_files"]),
            minimum_free_space_bytes=int(section["minimum_free_space_bytes"]),
        )


def load_config_file(file_path: Union[str, Path]) -> Dict[str, Any]:
    """Load configuration from a single YAML or JSON file."""
    file_path = Path(file_path)

    if not file_path.exists():
        raise ConfigFileError(str(file_path), "File not found")

    suffix = file_path.suffix.lower()
    if suffix not in ('.yaml', '.yml', '.json'):
        raise ConfigFileError(str(file_path), "Unsupported file format")

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f) if suffix == '.json' else yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigFileError(str(file_path), f"YAML parsing error: {e}", original_exception=e)
    except json.JSONDecodeError as e:
        raise ConfigFileError(str(file_path), f"JSON parsing error: {e}", original_exception=e)
    except OSError as e:
        raise ConfigFileError(str(file_path), f"File reading error: {e}", original_exception=e)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigFileError(str(file_path), "Top level must be a mapping")
    return data


def save_config_file(file_path: Union[str, Path], config: Dict[str, Any]):
    """Save configuration to a YAML or JSON file."""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(file_path, 'w', encoding='utf-8') as f:
            if file_path.suffix.lower() == '.json':
                json.dump(config, f, indent=2)
            else:
                yaml.dump(config, f, default_flow_style=False, indent=2, sort_keys=False)
    except OSError as e:
        raise ConfigFileError(str(file_path), f"Failed to save file: {e}", original_exception=e)


def capture_config_path() -> Path:
    """Config file used when capture runs inside a host program: $TELECAP_CONFIG or config/telecap.yaml."""
    return Path(os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)


def load_capture_config(config_path: Optional[Union[str, Path]] = None) -> ConfigManager:
    """Load the configuration the capture sessions take their defaults from.

    Raises:
        ConfigurationError: if the file cannot be read or does not validate
    """
    manager = ConfigManager(config_path or capture_config_path())
    manager.load_config()
    return manager
