"""
Rotating Log Writer
===================

Append-only telemetry log file with size-triggered rotation and
count-based retention. Every line is flushed as soon as it is written
so the log survives an abrupt end of the host process.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO, Union

from telecap.config.defaults import LOG_POLICY, RotationPolicy
from telecap.core import retention
from telecap.core.storage_guard import StorageGuard
from telecap.utils.exceptions import CaptureError, WriterResult, handle_exception, log_error
from telecap.utils.helpers import get_file_size, timestamp_suffix
from telecap.utils.logger import get_logger

logger = get_logger("log_writer")


def rotate_log_file(directory: Path, log_path: Path, policy: RotationPolicy,
                    now: Optional[datetime] = None) -> Optional[Path]:
    """Move an oversized active log out of the way and apply retention.

    Returns the rotated path, or None when nothing was rotated.
    """
    if policy.rotate_size_bytes is None or not log_path.exists():
        return None
    if get_file_size(log_path) < policy.rotate_size_bytes:
        return None

    rotated_path = directory / policy.file_name(timestamp_suffix(now))
    try:
        log_path.rename(rotated_path)
        logger.info(f"Rotated {log_path.name} to {rotated_path.name}")
    except OSError as e:
        log_error(handle_exception("rotate", e, "log_writer", path=str(log_path)), logger)
        rotated_path = None

    retention.sweep(directory, policy.file_name_prefix, policy.file_name_extension, policy.keep_files)
    return rotated_path


class RotatingLogWriter:
    """Owns the open handle of the active telemetry log file."""

    def __init__(self, path: Path, handle: TextIO):
        self.path = path
        self._handle: Optional[TextIO] = handle

    @classmethod
    def start(
        cls,
        directory: Union[str, Path],
        policy: RotationPolicy = LOG_POLICY,
        guard: Optional[StorageGuard] = None,
        now: Optional[datetime] = None
    ) -> WriterResult['RotatingLogWriter']:
        """Open the active log file, rotating it first if it is too large.

        Never raises: low storage or an unopenable file yields a failed
        result and file logging is simply skipped for the session.
        """
        directory = Path(directory)
        guard = guard or StorageGuard()

        space_error = guard.check(directory, policy.minimum_free_space_bytes)
        if space_error is not None:
            return WriterResult.failure(space_error)

        log_path = directory / policy.file_name()
        rotate_log_file(directory, log_path, policy, now)

        try:
            handle = open(log_path, 'a', encoding='utf-8', errors='backslashreplace')
        except OSError as e:
            error = handle_exception("open", e, "log_writer", path=str(log_path))
            log_error(error, logger)
            return WriterResult.failure(error)

        logger.debug(f"Telemetry log opened: {log_path}")
        return WriterResult.success(cls(log_path, handle))

    @property
    def closed(self) -> bool:
        return self._handle is None

    def append(self, elapsed_seconds: float, text: str) -> Optional[CaptureError]:
        """Write ``<elapsed>s <text>`` and flush."""
        return self.write_marker(f"{elapsed_seconds:5.3f}s {text}")

    def write_marker(self, line: str) -> Optional[CaptureError]:
        """Write one raw line and flush. After a failure the writer is closed."""
        if self._handle is None:
            return None

        try:
            self._handle.write(line)
            self._handle.write("\n")
            self._handle.flush()
        except (OSError, ValueError) as e:
            error = handle_exception("write", e, "log_writer", path=str(self.path))
            log_error(error, logger)
            self.close()
            return error

        return None

    def close(self):
        """Close the file. Safe to call repeatedly."""
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except OSError as e:
            logger.debug(f"Ignoring error closing {self.path}: {e}")
