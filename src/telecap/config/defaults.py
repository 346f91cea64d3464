"""
Default Configuration
=====================

Rotation policies and the default configuration file for TeleCap.
"""

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

MIB = 1024 * 1024

MAX_RECENT_ENTRIES = 50
DEFAULT_FRAME_RATE = 12.0
VIDEO_FOURCC = "MJPG"
NO_MEDIA_MARKER = ".nomedia"
CLOSE_COMMAND = "TelemetryLog:close"


@dataclass(frozen=True)
class RotationPolicy:
    """File naming, rotation and retention rules for one kind of capture file."""
    file_name_prefix: str
    file_name_extension: str
    rotate_size_bytes: Optional[int]
    keep_files: int
    minimum_free_space_bytes: int

    def file_name(self, suffix: str = "") -> str:
        return f"{self.file_name_prefix}{suffix}{self.file_name_extension}"

    def with_overrides(self, **changes) -> 'RotationPolicy':
        return replace(self, **changes)


LOG_POLICY = RotationPolicy(
    file_name_prefix="telemetry_log",
    file_name_extension=".txt",
    rotate_size_bytes=2 * MIB,
    keep_files=4,
    minimum_free_space_bytes=128 * MIB,
)

VIDEO_POLICY = RotationPolicy(
    file_name_prefix="video",
    file_name_extension=".avi",
    rotate_size_bytes=None,  # videos rotate by count only
    keep_files=12,
    minimum_free_space_bytes=128 * MIB,
)


def get_default_config() -> Dict[str, Any]:
    """Get default configuration."""
    return {
        "storage": {
            "directory": "${TELECAP_STORAGE_DIR:FIRST}",
        },

        "telemetry_log": {
            "to_log": True,
            "to_file": True,
            "max_recent_entries": MAX_RECENT_ENTRIES,
            "file_name": LOG_POLICY.file_name_prefix,
            "file_extension": LOG_POLICY.file_name_extension,
            "rotate_size_bytes": LOG_POLICY.rotate_size_bytes,
            "keep_files": LOG_POLICY.keep_files,
            "minimum_free_space_bytes": LOG_POLICY.minimum_free_space_bytes,
        },

        "video": {
            "frame_rate": DEFAULT_FRAME_RATE,
            "file_name": VIDEO_POLICY.file_name_prefix,
            "file_extension": VIDEO_POLICY.file_name_extension,
            "keep_files": VIDEO_POLICY.keep_files,
            "minimum_free_space_bytes": VIDEO_POLICY.minimum_free_space_bytes,
        },

        "logging": {
            "level": "INFO",
            "file": None,
            "directory": "logs",
            "json_format": False,
            "async_logging": False,
        },
    }


def create_default_config_file(config_path: Union[str, Path]) -> Path:
    """Write the default configuration as YAML."""
    config_path = Path(config_path)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump(get_default_config(), f, default_flow_style=False, indent=2, sort_keys=False)

    return config_path
