"""
Retention Sweeper
=================

Deletes the oldest capture files so that a new one can be created
without exceeding the configured retention count.
"""

from pathlib import Path
from typing import List, Union

from telecap.utils.exceptions import handle_exception, log_error
from telecap.utils.helpers import list_matching_files
from telecap.utils.logger import get_logger

logger = get_logger("retention")


def _modified_time(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except OSError:
        return 0.0


def sweep(directory: Union[str, Path], prefix: str, suffix: str, keep: int) -> List[Path]:
    """Delete the oldest files matching ``prefix*suffix`` in ``directory``.

    When ``keep`` or more files match, the ``count - keep + 1`` least recently
    modified are removed, leaving room for the file about to be created.
    Best-effort: failures are logged and never raised.

    Returns:
        The files that were deleted.
    """
    keep = max(keep, 1)
    deleted: List[Path] = []

    try:
        files = list_matching_files(directory, prefix, suffix)
    except OSError as e:
        log_error(handle_exception("sweep", e, "retention", path=str(directory)), logger)
        return deleted

    if len(files) < keep:
        return deleted

    files.sort(key=_modified_time)
    for old_file in files[:len(files) - keep + 1]:
        try:
            old_file.unlink()
            deleted.append(old_file)
        except OSError as e:
            log_error(handle_exception("sweep", e, "retention", path=str(old_file)), logger)

    if deleted:
        logger.info(f"Retention removed {len(deleted)} file(s) matching {prefix}*{suffix} in {directory}")
    return deleted
