"""
Frame Admission
===============

Decides which incoming frames are written so a recording approximates a
fixed frame rate. Frames arriving faster than the target are dropped;
frames arriving slower are not duplicated, so such a recording plays back
faster than real time.
"""

import time
from typing import Callable, Optional

BEHIND_SCHEDULE_FRAMES = 2


def scheduled_frames(elapsed_ms: float, target_fps: float) -> float:
    """Frames a constant-rate writer would have written after ``elapsed_ms``."""
    return elapsed_ms * target_fps / 1000


def should_write_frame(elapsed_ms: float, frames_written: int, target_fps: float) -> bool:
    """Admit the first frame, then any frame while the writer is behind schedule."""
    if frames_written == 0:
        return True
    return frames_written < scheduled_frames(elapsed_ms, target_fps)


def is_behind_schedule(elapsed_ms: float, frames_written: int, target_fps: float) -> bool:
    """True once the writer trails the schedule by more than two frames."""
    return frames_written + BEHIND_SCHEDULE_FRAMES < scheduled_frames(elapsed_ms, target_fps)


class FrameAdmission:
    """Clock-bound wrapper around should_write_frame for one recording."""

    def __init__(self, target_fps: float, clock: Callable[[], float] = time.monotonic):
        if target_fps <= 0:
            raise ValueError("target_fps must be positive")
        self.target_fps = target_fps
        self._clock = clock
        self.session_start: Optional[float] = None

    def start(self):
        self.session_start = self._clock()

    def elapsed_ms(self) -> float:
        if self.session_start is None:
            return 0.0
        return (self._clock() - self.session_start) * 1000

    def admit(self, frames_written: int) -> bool:
        return should_write_frame(self.elapsed_ms(), frames_written, self.target_fps)

    def behind(self, frames_written: int) -> bool:
        return is_behind_schedule(self.elapsed_ms(), frames_written, self.target_fps)
