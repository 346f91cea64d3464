"""
Configuration Validator
=======================

Validates TeleCap configuration against per-field rules with
detailed error reporting.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional


@dataclass
class ValidationError:
    """Configuration validation error."""

    field: str
    message: str
    value: Any
    suggestion: Optional[str] = None
    severity: str = "error"  # error, warning


class ConfigValidator:
    """
    Configuration validator.

    Features:
    - Dotted-path field rules
    - Type and range checks
    - Cross-field checks between log and video storage settings
    """

    def __init__(self):
        self.errors: List[ValidationError] = []
        self.warnings: List[ValidationError] = []

        self.rules: Dict[str, Callable[[Any], Optional[str]]] = {
            "storage.directory": self._validate_directory_path,
            # Telemetry log
            "telemetry_log.to_log": self._validate_boolean,
            "telemetry_log.to_file": self._validate_boolean,
            "telemetry_log.max_recent_entries": lambda v: self._validate_range(v, 1, 10000, int),
            "telemetry_log.file_name": self._validate_file_name,
            "telemetry_log.file_extension": self._validate_extension,
            "telemetry_log.rotate_size_bytes": lambda v: self._validate_range(v, 1024, 2 ** 40, int),
            "telemetry_log.keep_files": lambda v: self._validate_range(v, 1, 1000, int),
            "telemetry_log.minimum_free_space_bytes": lambda v: self._validate_range(v, 0, 2 ** 50, int),
            # Video
            "video.frame_rate": lambda v: self._validate_range(v, 0.1, 240.0, float),
            "video.file_name": self._validate_file_name,
            "video.file_extension": self._validate_extension,
            "video.keep_files": lambda v: self._validate_range(v, 1, 1000, int),
            "video.minimum_free_space_bytes": lambda v: self._validate_range(v, 0, 2 ** 50, int),
            # Logging
            "logging.level": lambda v: self._validate_choice(
                str(v).upper(), ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            ),
            "logging.json_format": self._validate_boolean,
            "logging.async_logging": self._validate_boolean,
        }

    def validate(self, config: Dict[str, Any]) -> List[ValidationError]:
        """Validate entire configuration."""
        self.errors = []
        self.warnings = []

        self._validate_structure(config)
        self._validate_fields(config)
        self._validate_cross_fields(config)

        return self.errors + self.warnings

    def _validate_structure(self, config: Dict[str, Any]):
        for section in ("storage", "telemetry_log", "video"):
            if not isinstance(config.get(section), dict):
                self.errors.append(
                    ValidationError(
                        field=section,
                        message=f"Required section '{section}' is missing",
                        value=config.get(section),
                        suggestion=f"Add '{section}:' section to configuration",
                    )
                )

    def _validate_fields(self, config: Dict[str, Any], prefix: str = ""):
        for key, value in config.items():
            current_path = f"{prefix}.{key}" if prefix else key

            if isinstance(value, dict):
                self._validate_fields(value, current_path)
                continue

            rule = self.rules.get(current_path)
            if rule is None:
                continue

            error = rule(value)
            if error:
                self.errors.append(ValidationError(field=current_path, message=error, value=value))

    def _validate_cross_fields(self, config: Dict[str, Any]):
        log_config = config.get("telemetry_log") or {}
        video_config = config.get("video") or {}

        if (log_config.get("file_name") == video_config.get("file_name")
                and log_config.get("file_extension") == video_config.get("file_extension")):
            self.errors.append(
                ValidationError(
                    field="video.file_name",
                    message="Log and video files share a name pattern; retention would delete each other's files",
                    value=video_config.get("file_name"),
                    suggestion="Use a different file_name or file_extension for video",
                )
            )

        if log_config.get("to_file") is False and log_config.get("to_log") is False:
            self.warnings.append(
                ValidationError(
                    field="telemetry_log",
                    message="Both to_log and to_file are disabled; telemetry will only be deduplicated",
                    value=None,
                    severity="warning",
                )
            )

    def _validate_range(
        self, value: Any, min_val: float, max_val: float, value_type: type
    ) -> Optional[str]:
        """Validate that a value is within the specified range."""
        if isinstance(value, bool):
            return f"Value must be a {value_type.__name__} between {min_val} and {max_val}"
        try:
            typed_value = value_type(value)
            if not (min_val <= typed_value <= max_val):
                return f"Value must be between {min_val} and {max_val}"
            return None
        except (ValueError, TypeError):
            return f"Value must be a {value_type.__name__} between {min_val} and {max_val}"

    def _validate_boolean(self, value: Any) -> Optional[str]:
        if not isinstance(value, bool):
            return "Value must be a boolean (true/false)"
        return None

    def _validate_choice(self, value: Any, choices: list) -> Optional[str]:
        if value not in choices:
            return f"Value must be one of: {', '.join(map(str, choices))}"
        return None

    def _validate_file_name(self, value: Any) -> Optional[str]:
        if not isinstance(value, str) or not value:
            return "File name must be a non-empty string"
        if not re.match(r"^[A-Za-z0-9_\-]+$", value):
            return "File name may only contain letters, digits, '_' and '-'"
        return None

    def _validate_extension(self, value: Any) -> Optional[str]:
        if not isinstance(value, str) or not re.match(r"^\.[A-Za-z0-9]+$", value):
            return "Extension must look like '.txt'"
        return None

    def _validate_directory_path(self, value: Any) -> Optional[str]:
        if not isinstance(value, str):
            return "Path must be a string"
        if not value.strip():
            return "Path cannot be empty"
        if any(c in value for c in '<>"|?*'):
            return "Path contains invalid characters"
        return None
