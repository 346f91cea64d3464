"""
Shared Test Configuration and Fixtures

Fakes for the pieces of the capture engine that touch the outside world:
the clock, the disk-usage query, the video encoder and the telemetry
display.

To use pytest:
    pip install -e .[test]
    pytest tests/
"""

import os
import tempfile
from collections import namedtuple
from pathlib import Path

import numpy as np
import pytest
import yaml

from telecap.core.storage_guard import StorageGuard

DiskUsage = namedtuple("DiskUsage", ["total", "used", "free", "percent"])

GIB = 1024 ** 3


# =============================================================================
# FAKES
# =============================================================================

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    def advance_ms(self, milliseconds: float):
        self.now += milliseconds / 1000


class FakeEncoder:
    """Stands in for cv2.VideoWriter."""

    def __init__(self, path, fourcc, fps, frame_size, is_color, opened=True, fail_on_write=None):
        self.path = path
        self.fourcc = fourcc
        self.fps = fps
        self.frame_size = frame_size
        self.is_color = is_color
        self.opened = opened
        self.fail_on_write = fail_on_write
        self.frames = []
        self.released = False
        Path(path).touch()

    def isOpened(self):
        return self.opened

    def write(self, frame):
        if self.fail_on_write is not None and len(self.frames) >= self.fail_on_write:
            raise OSError(5, "Input/output error")
        self.frames.append(frame)

    def release(self):
        self.released = True


class FakeEncoderFactory:
    """Callable with the cv2.VideoWriter signature that remembers what it built."""

    def __init__(self, opened=True, fail_on_write=None):
        self.opened = opened
        self.fail_on_write = fail_on_write
        self.encoders = []

    def __call__(self, path, fourcc, fps, frame_size, is_color):
        encoder = FakeEncoder(path, fourcc, fps, frame_size, is_color,
                              opened=self.opened, fail_on_write=self.fail_on_write)
        self.encoders.append(encoder)
        return encoder

    @property
    def last(self) -> FakeEncoder:
        return self.encoders[-1]


class FakeDisplay:
    """Telemetry display that records what it is sent."""

    def __init__(self):
        self.data = []
        self.lines = []
        self.updates = 0

    def add_data(self, caption, value, *args):
        self.data.append((caption, value) + args)
        return f"item:{caption}"

    def add_line(self, line_caption=None):
        self.lines.append(line_caption)
        return f"line:{line_caption}"

    def update(self):
        self.updates += 1
        return True


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """
    Capture sessions see built-in defaults only.

    Tests that need a configuration file point TELECAP_CONFIG at their own.
    """
    monkeypatch.setenv("TELECAP_CONFIG", str(tmp_path / "missing-telecap.yaml"))
    monkeypatch.delenv("TELECAP_STORAGE_DIR", raising=False)


@pytest.fixture
def config_file(temp_storage_dir):
    """
    Write a YAML configuration file.

    Usage:
        def test_something(config_file):
            path = config_file({"video": {"keep_files": 3}})
    """

    def _write(config: dict):
        path = temp_storage_dir / "telecap.yaml"
        path.write_text(yaml.safe_dump(config))
        return path

    return _write


@pytest.fixture
def temp_storage_dir():
    """
    Provide a temporary storage directory.

    Automatically cleaned up after test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def plenty_of_space():
    """StorageGuard that always reports 10 GiB free."""
    return StorageGuard(disk_usage=lambda path: DiskUsage(20 * GIB, 10 * GIB, 10 * GIB, 50.0))


@pytest.fixture
def no_space():
    """StorageGuard that reports 1 MiB free."""
    return StorageGuard(disk_usage=lambda path: DiskUsage(20 * GIB, 20 * GIB - 1024 * 1024, 1024 * 1024, 99.9))


@pytest.fixture
def encoder_factory():
    return FakeEncoderFactory()


@pytest.fixture
def fake_display():
    return FakeDisplay()


@pytest.fixture
def color_frame():
    """A 240x320 BGR frame."""
    return np.zeros((240, 320, 3), dtype=np.uint8)


@pytest.fixture
def make_files(temp_storage_dir):
    """
    Create files with increasing modification times.

    Usage:
        def test_sweep(make_files):
            paths = make_files("video_{}.avi", 6)   # oldest first
    """

    def _make(pattern: str, count: int, base_mtime: float = 1_600_000_000.0):
        paths = []
        for index in range(count):
            path = temp_storage_dir / pattern.format(index)
            path.write_text("x")
            os.utime(path, (base_mtime + index * 10, base_mtime + index * 10))
            paths.append(path)
        return paths

    return _make


@pytest.fixture
def unopenable_encoder_factory():
    """Encoder factory whose encoders report isOpened() == False."""
    return FakeEncoderFactory(opened=False)


@pytest.fixture
def failing_encoder_factory():
    """Encoder factory whose encoders fail on the second write."""
    return FakeEncoderFactory(fail_on_write=1)
