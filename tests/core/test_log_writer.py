"""
Rotating Log Writer Tests

Covers opening, size-triggered rotation, retention of rotated logs and
the silent degrade paths.

To run these tests:
    pytest tests/core/test_log_writer.py -v
"""

from datetime import datetime

import pytest

from telecap.config.defaults import LOG_POLICY
from telecap.core.log_writer import RotatingLogWriter, rotate_log_file
from telecap.utils.exceptions import OpenFailureError, StorageUnavailableError, WriteFailureError

SMALL_POLICY = LOG_POLICY.with_overrides(rotate_size_bytes=100, keep_files=4)
NOW = datetime(2024, 3, 1, 12, 30, 45)


# =============================================================================
# OPEN
# =============================================================================

@pytest.mark.unit
def test_start_opens_active_log(temp_storage_dir, plenty_of_space):
    result = RotatingLogWriter.start(temp_storage_dir, guard=plenty_of_space)

    assert result.ok
    assert result.error is None
    assert result.writer.path == temp_storage_dir / "telemetry_log.txt"
    result.writer.close()


@pytest.mark.unit
def test_low_storage_yields_no_writer(temp_storage_dir, no_space):
    result = RotatingLogWriter.start(temp_storage_dir, guard=no_space)

    assert not result.ok
    assert result.writer is None
    assert isinstance(result.error, StorageUnavailableError)
    assert not (temp_storage_dir / "telemetry_log.txt").exists()


@pytest.mark.unit
def test_unopenable_directory_yields_open_failure(temp_storage_dir, plenty_of_space):
    result = RotatingLogWriter.start(temp_storage_dir / "missing", guard=plenty_of_space)

    assert not result.ok
    assert isinstance(result.error, OpenFailureError)


# =============================================================================
# WRITING
# =============================================================================

@pytest.mark.unit
def test_append_formats_elapsed_seconds(temp_storage_dir, plenty_of_space):
    writer = RotatingLogWriter.start(temp_storage_dir, guard=plenty_of_space).writer

    assert writer.append(1.23456, "Heading: 90") is None
    assert writer.append(0, "x") is None
    writer.close()

    assert writer.path.read_text() == "1.235s Heading: 90\n0.000s x\n"


@pytest.mark.unit
def test_every_line_is_flushed(temp_storage_dir, plenty_of_space):
    """Content is on disk before close, so an abrupt exit loses nothing."""
    writer = RotatingLogWriter.start(temp_storage_dir, guard=plenty_of_space).writer

    writer.write_marker("marker")

    assert writer.path.read_text() == "marker\n"
    writer.close()


@pytest.mark.unit
def test_existing_small_log_is_appended(temp_storage_dir, plenty_of_space):
    (temp_storage_dir / "telemetry_log.txt").write_text("old\n")

    writer = RotatingLogWriter.start(temp_storage_dir, guard=plenty_of_space).writer
    writer.write_marker("new")
    writer.close()

    assert (temp_storage_dir / "telemetry_log.txt").read_text() == "old\nnew\n"


@pytest.mark.unit
def test_write_after_close_is_ignored(temp_storage_dir, plenty_of_space):
    writer = RotatingLogWriter.start(temp_storage_dir, guard=plenty_of_space).writer
    writer.close()
    writer.close()

    assert writer.closed
    assert writer.write_marker("late") is None


@pytest.mark.unit
def test_write_failure_closes_writer(temp_storage_dir, plenty_of_space):
    writer = RotatingLogWriter.start(temp_storage_dir, guard=plenty_of_space).writer

    class BrokenHandle:
        def write(self, text):
            raise OSError(28, "No space left on device")

        def close(self):
            pass

    writer._handle.close()
    writer._handle = BrokenHandle()

    error = writer.append(1.0, "A: 1")

    assert isinstance(error, WriteFailureError)
    assert writer.closed


# =============================================================================
# ROTATION
# =============================================================================

@pytest.mark.unit
def test_oversized_log_is_rotated_on_start(temp_storage_dir, plenty_of_space):
    active = temp_storage_dir / "telemetry_log.txt"
    active.write_text("x" * 150)

    writer = RotatingLogWriter.start(temp_storage_dir, SMALL_POLICY, plenty_of_space, now=NOW).writer
    writer.close()

    rotated = temp_storage_dir / "telemetry_log_20240301_123045.txt"
    assert rotated.read_text() == "x" * 150
    assert active.read_text() == ""


@pytest.mark.unit
def test_log_under_threshold_is_not_rotated(temp_storage_dir):
    active = temp_storage_dir / "telemetry_log.txt"
    active.write_text("x" * 99)

    assert rotate_log_file(temp_storage_dir, active, SMALL_POLICY, NOW) is None
    assert active.exists()


@pytest.mark.unit
def test_rotation_applies_retention(temp_storage_dir, make_files, plenty_of_space):
    """After rotating with 6 old logs and keep=4, exactly 4 logs exist once the new one opens."""
    make_files("telemetry_log_2023010{}_000000.txt", 6)
    (temp_storage_dir / "telemetry_log.txt").write_text("x" * 150)

    writer = RotatingLogWriter.start(temp_storage_dir, SMALL_POLICY, plenty_of_space, now=NOW).writer
    writer.close()

    logs = sorted(p.name for p in temp_storage_dir.glob("telemetry_log*.txt"))
    assert len(logs) == 4
    assert "telemetry_log.txt" in logs
    assert "telemetry_log_20240301_123045.txt" in logs
