"""
Camera stream adapters that tap a frame pipeline into a VideoSession.
"""

from pathlib import Path
from typing import Any, Callable, Optional, Union

import numpy as np

from telecap.config.defaults import RotationPolicy
from telecap.core.storage_guard import StorageGuard
from telecap.core.video_writer import VideoSession, VideoSummary


class CameraStreamLogger:
    """Pipeline step that records the frames flowing through it.

    Settings left as None come from configuration (see VideoSession).
    """

    def __init__(
        self,
        tag: str = "",
        frame_rate: Optional[float] = None,
        directory: Optional[Union[str, Path]] = None,
        policy: Optional[RotationPolicy] = None,
        guard: Optional[StorageGuard] = None,
        writer_factory: Optional[Callable[..., Any]] = None,
        **session_kwargs
    ):
        self.session = VideoSession(
            tag=tag,
            frame_rate=frame_rate,
            directory=directory,
            policy=policy,
            guard=guard,
            writer_factory=writer_factory,
            **session_kwargs
        )

    @property
    def tag(self) -> str:
        return self.session.tag

    def process_frame(self, frame: np.ndarray) -> np.ndarray:
        return self.session.process(frame)

    def close(self) -> Optional[VideoSummary]:
        return self.session.close()


class CameraStreamProcessor(CameraStreamLogger):
    """
    Vision-processor flavour of CameraStreamLogger.

    Hosts that drive processors through init/process/draw callbacks can
    register this next to their real processors; only ``process_frame``
    does anything.
    """

    def init(self, width: int, height: int, calibration: Any = None):
        pass

    def process_frame(self, frame: np.ndarray, capture_time_nanos: Optional[int] = None) -> np.ndarray:
        return self.session.process(frame)

    def on_draw_frame(self, *args, **kwargs):
        pass
