"""
Video Writer Tests

RotatingVideoWriter and VideoSession against a fake encoder, plus one
integration test against the real OpenCV MJPEG writer.

To run these tests:
    pytest tests/core/test_video_writer.py -v
"""

from datetime import datetime

import cv2
import numpy as np
import pytest

from telecap.config.defaults import DEFAULT_FRAME_RATE, VIDEO_POLICY
from telecap.core.video_writer import (
    RotatingVideoWriter,
    VideoSession,
    VideoState,
    realized_frame_rate,
    video_file_name,
)
from telecap.utils.exceptions import OpenFailureError, StorageUnavailableError, WriteFailureError

NOW = datetime(2024, 3, 1, 12, 30, 45)


@pytest.fixture
def make_session(temp_storage_dir, plenty_of_space, encoder_factory, fake_clock):
    def _make(**overrides):
        options = dict(
            tag="raw",
            frame_rate=10.0,
            directory=temp_storage_dir,
            policy=VIDEO_POLICY,
            guard=plenty_of_space,
            writer_factory=encoder_factory,
            clock=fake_clock,
        )
        options.update(overrides)
        return VideoSession(**options)

    return _make


# =============================================================================
# NAMING AND FRAME RATE
# =============================================================================

@pytest.mark.unit
def test_video_file_name_with_and_without_tag():
    assert video_file_name(VIDEO_POLICY, "", NOW) == "video_20240301_123045.avi"
    assert video_file_name(VIDEO_POLICY, "raw", NOW) == "video_raw_20240301_123045.avi"
    assert video_file_name(VIDEO_POLICY, "front cam", NOW) == "video_front_cam_20240301_123045.avi"


@pytest.mark.unit
def test_realized_frame_rate():
    assert realized_frame_rate(13, 1000) == pytest.approx(12.0)
    assert realized_frame_rate(1, 0) == 0.0
    assert realized_frame_rate(5, 0) == 0.0
    assert realized_frame_rate(1, 500) == 0.0


# =============================================================================
# RotatingVideoWriter
# =============================================================================

@pytest.mark.unit
def test_start_opens_mjpeg_file(temp_storage_dir, plenty_of_space, encoder_factory):
    result = RotatingVideoWriter.start(
        temp_storage_dir, (320, 240), tag="raw", fps=12.0,
        guard=plenty_of_space, writer_factory=encoder_factory, now=NOW
    )

    assert result.ok
    assert result.writer.path == temp_storage_dir / "video_raw_20240301_123045.avi"
    encoder = encoder_factory.last
    assert encoder.fourcc == cv2.VideoWriter_fourcc(*"MJPG")
    assert encoder.fps == 12.0
    assert encoder.frame_size == (320, 240)
    assert encoder.is_color is True


@pytest.mark.unit
def test_start_creates_nomedia_marker(temp_storage_dir, plenty_of_space, encoder_factory):
    RotatingVideoWriter.start(temp_storage_dir, (320, 240), guard=plenty_of_space, writer_factory=encoder_factory)

    assert (temp_storage_dir / ".nomedia").exists()


@pytest.mark.unit
def test_low_storage_opens_nothing(temp_storage_dir, no_space, encoder_factory):
    result = RotatingVideoWriter.start(temp_storage_dir, (320, 240), guard=no_space, writer_factory=encoder_factory)

    assert isinstance(result.error, StorageUnavailableError)
    assert encoder_factory.encoders == []


@pytest.mark.unit
def test_encoder_that_did_not_open_is_open_failure(temp_storage_dir, plenty_of_space, unopenable_encoder_factory):
    result = RotatingVideoWriter.start(
        temp_storage_dir, (320, 240), guard=plenty_of_space, writer_factory=unopenable_encoder_factory
    )

    assert not result.ok
    assert isinstance(result.error, OpenFailureError)


@pytest.mark.unit
def test_start_applies_retention(temp_storage_dir, make_files, plenty_of_space, encoder_factory):
    """With 12 old videos and keep=12, the new file brings the count back to 12."""
    old = make_files("video_raw_2023010{}_000000.avi", 12)

    RotatingVideoWriter.start(
        temp_storage_dir, (320, 240), tag="raw", guard=plenty_of_space, writer_factory=encoder_factory, now=NOW
    )

    videos = list(temp_storage_dir.glob("video*.avi"))
    assert len(videos) == 12
    assert not old[0].exists()


@pytest.mark.unit
def test_write_failure_abandons_writer(temp_storage_dir, plenty_of_space, failing_encoder_factory, color_frame):
    writer = RotatingVideoWriter.start(
        temp_storage_dir, (320, 240), guard=plenty_of_space, writer_factory=failing_encoder_factory
    ).writer

    assert writer.write(color_frame) is None
    error = writer.write(color_frame)

    assert isinstance(error, WriteFailureError)
    assert writer.closed


@pytest.mark.unit
def test_encoder_error_on_write_is_write_failure(temp_storage_dir, plenty_of_space, encoder_factory,
                                                 color_frame, monkeypatch):
    writer = RotatingVideoWriter.start(
        temp_storage_dir, (320, 240), guard=plenty_of_space, writer_factory=encoder_factory
    ).writer

    def reject(frame):
        raise cv2.error("frame size does not match the stream")

    monkeypatch.setattr(encoder_factory.last, "write", reject)
    error = writer.write(color_frame)

    assert isinstance(error, WriteFailureError)
    assert error.context.operation == "write"
    assert writer.closed


@pytest.mark.unit
def test_abandon_does_not_release(temp_storage_dir, plenty_of_space, encoder_factory):
    writer = RotatingVideoWriter.start(
        temp_storage_dir, (320, 240), guard=plenty_of_space, writer_factory=encoder_factory
    ).writer

    writer.abandon()

    assert writer.closed
    assert encoder_factory.last.released is False


# =============================================================================
# VideoSession
# =============================================================================

@pytest.mark.unit
def test_first_frame_starts_recording(make_session, encoder_factory, color_frame):
    session = make_session()

    assert session.state is VideoState.UNINITIALIZED
    session.process(color_frame)

    assert session.state is VideoState.RECORDING
    assert session.frames_written == 1
    assert encoder_factory.last.frame_size == (320, 240)


@pytest.mark.unit
def test_process_returns_same_frame(make_session, color_frame):
    session = make_session()

    assert session.process(color_frame) is color_frame
    assert session.process(color_frame) is color_frame


@pytest.mark.unit
def test_grayscale_frame_opens_mono_stream(make_session, encoder_factory):
    session = make_session()

    session.process(np.zeros((120, 160), dtype=np.uint8))

    assert encoder_factory.last.is_color is False
    assert encoder_factory.last.frame_size == (160, 120)


@pytest.mark.unit
def test_frames_are_thinned_to_target_rate(make_session, encoder_factory, fake_clock, color_frame):
    """30 FPS input for one second at a 10 FPS target writes about 10 frames."""
    session = make_session(frame_rate=10.0)

    for _ in range(30):
        session.process(color_frame)
        fake_clock.advance(1 / 30)

    assert 10 <= len(encoder_factory.last.frames) <= 11
    assert session.frames_written == len(encoder_factory.last.frames)


@pytest.mark.unit
def test_low_storage_disables_session(make_session, no_space, encoder_factory, color_frame):
    session = make_session(guard=no_space)

    frame = session.process(color_frame)

    assert frame is color_frame
    assert session.state is VideoState.DISABLED
    assert isinstance(session.last_error, StorageUnavailableError)
    assert encoder_factory.encoders == []


@pytest.mark.unit
def test_disabled_session_does_not_retry(make_session, no_space, color_frame):
    session = make_session(guard=no_space)
    session.process(color_frame)

    session.guard = None
    session.process(color_frame)

    assert session.state is VideoState.DISABLED


@pytest.mark.unit
def test_write_failure_disables_session(make_session, failing_encoder_factory, fake_clock, color_frame):
    session = make_session(writer_factory=failing_encoder_factory)

    session.process(color_frame)
    fake_clock.advance(1)
    session.process(color_frame)

    assert session.state is VideoState.DISABLED
    assert isinstance(session.last_error, WriteFailureError)


@pytest.mark.unit
def test_close_right_after_first_frame_reports_zero_fps(make_session, color_frame):
    session = make_session()
    session.process(color_frame)

    summary = session.close()

    assert summary.frames_written == 1
    assert summary.realized_fps == 0.0
    assert summary.tag == "raw"


@pytest.mark.unit
def test_close_reports_realized_rate(make_session, fake_clock, color_frame):
    """A 5 FPS source under a 10 FPS target keeps every frame and reports 5 FPS."""
    session = make_session(frame_rate=10.0)
    for _ in range(6):
        session.process(color_frame)
        fake_clock.advance(0.2)
    fake_clock.now -= 0.2

    summary = session.close()

    assert summary.frames_written == 6
    assert summary.duration_ms == pytest.approx(1000)
    assert summary.realized_fps == pytest.approx(5.0)


@pytest.mark.unit
def test_close_abandons_without_release(make_session, encoder_factory, color_frame):
    session = make_session()
    session.process(color_frame)

    session.close()

    assert encoder_factory.last.released is False
    assert session.writer is None


@pytest.mark.unit
def test_close_without_recording_returns_none(make_session):
    assert make_session().close() is None


@pytest.mark.unit
def test_next_frame_after_close_starts_new_file(make_session, encoder_factory, fake_clock, color_frame):
    session = make_session()
    session.process(color_frame)
    session.close()
    fake_clock.advance(1)

    session.process(color_frame)

    assert session.state is VideoState.RECORDING
    assert len(encoder_factory.encoders) == 2
    assert session.frames_written == 1


@pytest.mark.unit
def test_close_reenables_disabled_session(make_session, no_space, plenty_of_space, color_frame):
    session = make_session(guard=no_space)
    session.process(color_frame)
    session.close()

    session.guard = plenty_of_space
    session.process(color_frame)

    assert session.state is VideoState.RECORDING


# =============================================================================
# CONFIGURATION
# =============================================================================

@pytest.mark.unit
def test_unset_settings_come_from_config(config_file, temp_storage_dir, plenty_of_space, encoder_factory,
                                         fake_clock, color_frame, monkeypatch):
    path = config_file({
        "storage": {"directory": str(temp_storage_dir)},
        "video": {"frame_rate": 5, "keep_files": 3, "file_name": "clip"},
    })
    monkeypatch.setenv("TELECAP_CONFIG", str(path))
    session = VideoSession(tag="raw", guard=plenty_of_space, writer_factory=encoder_factory, clock=fake_clock)

    session.process(color_frame)

    assert session.state is VideoState.RECORDING
    assert encoder_factory.last.fps == 5.0
    assert session.policy.keep_files == 3
    assert session.writer.path.parent == temp_storage_dir
    assert session.writer.path.name.startswith("clip_raw_")


@pytest.mark.unit
def test_invalid_storage_setting_disables_session(plenty_of_space, encoder_factory, color_frame, monkeypatch):
    monkeypatch.setenv("TELECAP_STORAGE_DIR", "/tmp/cap?1")
    session = VideoSession(tag="raw", frame_rate=10.0, guard=plenty_of_space, writer_factory=encoder_factory)

    frame = session.process(color_frame)

    assert frame is color_frame
    assert session.state is VideoState.DISABLED
    assert isinstance(session.last_error, OpenFailureError)
    assert encoder_factory.encoders == []
    assert session.close() is None


@pytest.mark.unit
def test_invalid_config_with_explicit_directory_uses_built_in_settings(make_session, encoder_factory,
                                                                      color_frame, monkeypatch):
    monkeypatch.setenv("TELECAP_STORAGE_DIR", "/tmp/cap?1")
    session = make_session(frame_rate=None, policy=None)

    session.process(color_frame)

    assert session.state is VideoState.RECORDING
    assert encoder_factory.last.fps == DEFAULT_FRAME_RATE
    assert session.policy == VIDEO_POLICY


# =============================================================================
# INTEGRATION
# =============================================================================

@pytest.mark.integration
def test_real_mjpeg_recording(temp_storage_dir, plenty_of_space, fake_clock):
    """Frames written through OpenCV produce a readable MJPEG .avi."""
    session = VideoSession(tag="it", frame_rate=10.0, directory=temp_storage_dir,
                           guard=plenty_of_space, clock=fake_clock)
    frame = np.full((120, 160, 3), 128, dtype=np.uint8)

    for _ in range(20):
        session.process(frame)
        fake_clock.advance(0.2)

    path = session.writer.path
    # Release explicitly so the container is complete before reading it back
    session.writer._encoder.release()
    session.close()

    capture = cv2.VideoCapture(str(path))
    try:
        assert capture.isOpened()
        assert int(capture.get(cv2.CAP_PROP_FRAME_COUNT)) == 20
    finally:
        capture.release()
