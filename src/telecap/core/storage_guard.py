"""
Storage Guard
=============

Free-space gate consulted before any capture file is opened.
"""

from pathlib import Path
from typing import Callable, Optional, Union

import psutil

from telecap.utils.exceptions import StorageUnavailableError
from telecap.utils.helpers import format_bytes
from telecap.utils.logger import get_logger


class StorageGuard:
    """
    Checks free space on the volume holding a capture directory.

    A directory passes only when strictly more than the minimum is free.
    A volume whose usage cannot be read does not pass.
    """

    def __init__(self, disk_usage: Callable = psutil.disk_usage):
        self._disk_usage = disk_usage
        self.logger = get_logger("storage_guard")

    def free_space(self, path: Union[str, Path]) -> int:
        """Free bytes on the volume holding ``path`` (or its nearest existing parent).

        Raises:
            OSError: if usage cannot be read
        """
        existing = Path(path).absolute()
        while not existing.exists() and existing != existing.parent:
            existing = existing.parent
        return self._disk_usage(str(existing)).free

    def check(self, path: Union[str, Path], minimum_free_bytes: int) -> Optional[StorageUnavailableError]:
        """Return None when capture may proceed, otherwise the reason it may not."""
        try:
            free = self.free_space(path)
        except OSError as e:
            self.logger.warning(f"Cannot read free space for {path}: {e}")
            return StorageUnavailableError(str(path), None, minimum_free_bytes,
                                           component="storage_guard", original_exception=e)

        if free <= minimum_free_bytes:
            self.logger.warning(
                f"Capture disabled: {format_bytes(free)} free at {path}, "
                f"need more than {format_bytes(minimum_free_bytes)}"
            )
            return StorageUnavailableError(str(path), free, minimum_free_bytes, component="storage_guard")

        return None

    def has_space(self, path: Union[str, Path], minimum_free_bytes: int) -> bool:
        return self.check(path, minimum_free_bytes) is None
