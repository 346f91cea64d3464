"""
TeleCap Helper Functions
========================

Small file, naming and configuration utilities shared by the capture
writers, the configuration layer and the CLI.
"""

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


# ============ FILE AND PATH UTILITIES ============

def ensure_directory(path: Union[str, Path]) -> Path:
    """Ensure directory exists, create if not."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_filename(filename: str) -> str:
    """Replace characters that are not allowed in file names."""
    invalid_chars = '<>:"/\\|?* '
    for char in invalid_chars:
        filename = filename.replace(char, '_')

    filename = filename.strip('. ')

    if len(filename) > 64:
        filename = filename[:64]

    return filename


def timestamp_suffix(moment: Optional[datetime] = None) -> str:
    """Suffix used for rotated and newly created capture files (_YYYYMMDD_HHMMSS)."""
    return (moment or datetime.now()).strftime("_%Y%m%d_%H%M%S")


def list_matching_files(directory: Union[str, Path], prefix: str, suffix: str) -> List[Path]:
    """Regular files in ``directory`` whose names start with prefix and end with suffix."""
    directory = Path(directory)
    if not directory.is_dir():
        return []

    return [
        entry for entry in directory.iterdir()
        if entry.name.startswith(prefix) and entry.name.endswith(suffix) and entry.is_file()
    ]


def get_file_size(file_path: Union[str, Path]) -> int:
    """Size in bytes, 0 when the file is missing."""
    try:
        return Path(file_path).stat().st_size
    except OSError:
        return 0


# ============ FORMATTING ============

def format_bytes(bytes_value: float) -> str:
    """Format bytes as human readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_value < 1024.0:
            return f"{bytes_value:.1f} {unit}"
        bytes_value /= 1024.0
    return f"{bytes_value:.1f} PB"


# ============ CONFIGURATION UTILITIES ============

def merge_configs(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge configuration dictionaries."""
    result = base_config.copy()

    for key, value in override_config.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def get_nested_value(data: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """Get nested value using dot notation (e.g., 'video.frame_rate')."""
    current = data

    try:
        for key in key_path.split('.'):
            current = current[key]
        return current
    except (KeyError, TypeError):
        return default
