"""
Rotating Video Writer
=====================

Records a frame stream to MJPEG ``.avi`` files in the storage directory,
keeping only the most recent files and never blocking the caller on
stream finalization.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Tuple, Union

import cv2
import numpy as np

from telecap.config.config_manager import load_capture_config
from telecap.config.defaults import (
    DEFAULT_FRAME_RATE,
    NO_MEDIA_MARKER,
    VIDEO_FOURCC,
    VIDEO_POLICY,
    RotationPolicy,
)
from telecap.core import retention
from telecap.core.frame_admission import FrameAdmission
from telecap.core.storage_guard import StorageGuard
from telecap.utils.exceptions import (
    CaptureError,
    ConfigurationError,
    OpenFailureError,
    WriterResult,
    handle_exception,
    log_error,
)
from telecap.utils.helpers import safe_filename, timestamp_suffix
from telecap.utils.logger import get_logger, get_stream_logger

logger = get_logger("video_writer")


def video_file_name(policy: RotationPolicy, tag: str = "", now: Optional[datetime] = None) -> str:
    """``<prefix>[_<tag>]_<YYYYMMDD_HHMMSS><ext>``"""
    tag = safe_filename(tag) if tag else ""
    return policy.file_name(f"_{tag}{timestamp_suffix(now)}" if tag else timestamp_suffix(now))


def ensure_media_marker(directory: Path) -> None:
    """Create the marker that keeps media indexers out of the capture directory."""
    marker = directory / NO_MEDIA_MARKER
    try:
        marker.touch(exist_ok=True)
    except OSError as e:
        logger.debug(f"Could not create {marker}: {e}")


def realized_frame_rate(frames_written: int, elapsed_ms: float) -> float:
    """Average written frame rate; 0.0 when it is undefined."""
    if elapsed_ms <= 0 or frames_written <= 1:
        return 0.0
    return (frames_written - 1) * 1000 / elapsed_ms


class RotatingVideoWriter:
    """Owns one open encoder stream."""

    def __init__(self, path: Path, encoder: Any):
        self.path = path
        self._encoder = encoder

    @classmethod
    def start(
        cls,
        directory: Union[str, Path],
        frame_size: Tuple[int, int],
        policy: RotationPolicy = VIDEO_POLICY,
        tag: str = "",
        fps: float = DEFAULT_FRAME_RATE,
        is_color: bool = True,
        guard: Optional[StorageGuard] = None,
        writer_factory: Optional[Callable[..., Any]] = None,
        now: Optional[datetime] = None
    ) -> WriterResult['RotatingVideoWriter']:
        """Apply retention and open a new timestamped video file.

        ``frame_size`` is (width, height). Never raises.
        """
        directory = Path(directory)
        guard = guard or StorageGuard()

        space_error = guard.check(directory, policy.minimum_free_space_bytes)
        if space_error is not None:
            return WriterResult.failure(space_error)

        ensure_media_marker(directory)
        retention.sweep(directory, policy.file_name_prefix, policy.file_name_extension, policy.keep_files)

        path = directory / video_file_name(policy, tag, now)
        factory = writer_factory or cv2.VideoWriter
        try:
            encoder = factory(str(path), cv2.VideoWriter_fourcc(*VIDEO_FOURCC), fps, frame_size, is_color)
        except (cv2.error, OSError) as e:
            error = handle_exception("open", e, "video_writer", path=str(path), stream=tag)
            log_error(error, logger)
            return WriterResult.failure(error)

        if not encoder.isOpened():
            error = OpenFailureError(str(path), "encoder did not open", component="video_writer", stream=tag)
            log_error(error, logger)
            return WriterResult.failure(error)

        return WriterResult.success(cls(path, encoder))

    @property
    def closed(self) -> bool:
        return self._encoder is None

    def write(self, frame: np.ndarray) -> Optional[CaptureError]:
        if self._encoder is None:
            return None
        try:
            self._encoder.write(frame)
        except (cv2.error, OSError) as e:
            error = handle_exception("write", e, "video_writer", path=str(self.path))
            log_error(error, logger)
            self.abandon()
            return error
        return None

    def abandon(self):
        """Drop the encoder without release().

        Finalizing the container can take long enough for the host to be
        killed first; the stream is finalized when the encoder is garbage
        collected instead.
        """
        self._encoder = None


class VideoState(Enum):
    """Video session states."""
    UNINITIALIZED = "uninitialized"
    RECORDING = "recording"
    DISABLED = "disabled"


@dataclass
class VideoSummary:
    """What a closed recording produced."""
    tag: str
    frames_written: int
    duration_ms: float
    realized_fps: float
    path: Optional[Path]


class VideoSession:
    """
    One video capture stream.

    The first frame after construction (or after close) opens a new file
    sized to that frame. Later frames are written when FrameAdmission says
    the recording is behind its target rate. Any failure disables the
    stream until close; frames keep passing through untouched.

    Directory, frame rate and policy left as None are read from the
    ``storage`` and ``video`` configuration sections when the first frame
    arrives.
    """

    def __init__(
        self,
        tag: str = "",
        frame_rate: Optional[float] = None,
        directory: Optional[Union[str, Path]] = None,
        policy: Optional[RotationPolicy] = None,
        guard: Optional[StorageGuard] = None,
        writer_factory: Optional[Callable[..., Any]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.tag = tag
        self.frame_rate = frame_rate
        self.directory = Path(directory) if directory is not None else None
        self.policy = policy
        self.guard = guard or StorageGuard()
        self.writer_factory = writer_factory
        self._clock = clock
        self.admission = FrameAdmission(frame_rate, clock) if frame_rate is not None else None
        self.logger = get_stream_logger(tag, "camera_stream")

        self.state = VideoState.UNINITIALIZED
        self.writer: Optional[RotatingVideoWriter] = None
        self.frames_written = 0
        self.last_error: Optional[CaptureError] = None

    def process(self, frame: np.ndarray) -> np.ndarray:
        """Record ``frame`` if due and return it unchanged."""
        if self.state is VideoState.UNINITIALIZED:
            self._initialize(frame)
        if self.state is VideoState.RECORDING:
            self._record(frame)
        return frame

    def _resolve_settings(self) -> Optional[CaptureError]:
        if self.directory is not None and self.frame_rate is not None and self.policy is not None:
            return None

        try:
            manager = load_capture_config()
            directory = manager.storage_dir()
            frame_rate = float(manager.get_value("video.frame_rate"))
            policy = manager.video_policy()
        except ConfigurationError as e:
            if self.directory is None:
                return OpenFailureError("storage directory", e.message, component="video_writer",
                                        stream=self.tag or None, original_exception=e)
            self.logger.warning(f"Using built-in video settings: {e.message}")
            directory, frame_rate, policy = self.directory, DEFAULT_FRAME_RATE, VIDEO_POLICY

        if self.directory is None:
            self.directory = directory
        if self.frame_rate is None:
            self.frame_rate = frame_rate
            self.admission = FrameAdmission(frame_rate, self._clock)
        if self.policy is None:
            self.policy = policy
        return None

    def _initialize(self, frame: np.ndarray):
        error = self._resolve_settings()
        if error is not None:
            self.last_error = error
            self.state = VideoState.DISABLED
            self.logger.info(f"Video capture disabled: {error.message}")
            return

        height, width = frame.shape[:2]
        result = RotatingVideoWriter.start(
            self.directory,
            (width, height),
            policy=self.policy,
            tag=self.tag,
            fps=self.frame_rate,
            is_color=frame.ndim == 3,
            guard=self.guard,
            writer_factory=self.writer_factory
        )

        self.admission.start()
        self.frames_written = 0
        self.writer = result.writer
        self.last_error = result.error

        if result.ok:
            self.state = VideoState.RECORDING
            self.logger.info(f"Started {self.writer.path} {self.frame_rate:3.1f} FPS")
        else:
            self.state = VideoState.DISABLED
            self.logger.info(f"Video capture disabled: {result.error.message}")

    def _record(self, frame: np.ndarray):
        elapsed_ms = self.admission.elapsed_ms()
        self.logger.debug(f"Frames: {self.frames_written} Duration: {elapsed_ms:.0f}ms")

        if self.admission.admit(self.frames_written):
            error = self.writer.write(frame)
            if error is not None:
                self.writer = None
                self.last_error = error
                self.state = VideoState.DISABLED
                return
            self.frames_written += 1

        if self.admission.behind(self.frames_written):
            self.logger.info("Frame rate higher than write speed")

    def close(self) -> Optional[VideoSummary]:
        """Stop recording without finalizing the stream and log a summary.

        The next processed frame starts a new file.
        """
        summary = None
        if self.writer is not None or self.frames_written > 0:
            elapsed_ms = self.admission.elapsed_ms()
            path = self.writer.path if self.writer is not None else None
            if self.writer is not None:
                self.writer.abandon()
            summary = VideoSummary(
                tag=self.tag,
                frames_written=self.frames_written,
                duration_ms=elapsed_ms,
                realized_fps=realized_frame_rate(self.frames_written, elapsed_ms),
                path=path
            )
            self.logger.info(
                f"Ended Frames: {summary.frames_written} Duration: {summary.duration_ms:.0f}ms "
                f"({summary.realized_fps:5.3f} FPS)"
            )

        self.writer = None
        self.frames_written = 0
        self.state = VideoState.UNINITIALIZED
        return summary
