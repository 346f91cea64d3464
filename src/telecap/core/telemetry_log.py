"""
Telemetry Log
=============

Wraps the telemetry display of a robot program so that every caption/value
pair or line it is sent is also recorded to the robot log and/or to a
rotating telemetry log file.

Typical use in a control program::

    telemetry = log_telemetry(telemetry, to_log=True, to_file=True)
    ...
    telemetry.add_data("Heading", "%.2f", heading)
    ...
    telemetry.add_line("TelemetryLog:close")   # when the program stops

Repeated values are only recorded once (see RecentEntryBuffer). The log
file is flushed after every line; sending ``TelemetryLog:close`` closes it.

The process-wide session takes its storage directory, rotation policy,
buffer size and default sinks from the configuration file named by
$TELECAP_CONFIG (default ``config/telecap.yaml``). When the host program
has not configured logging, robot log lines go to stdout.
"""

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union

from telecap.config.config_manager import load_capture_config
from telecap.config.defaults import CLOSE_COMMAND, LOG_POLICY, MAX_RECENT_ENTRIES, RotationPolicy
from telecap.core.log_writer import RotatingLogWriter
from telecap.core.recent_entries import RecentEntryBuffer
from telecap.core.storage_guard import StorageGuard
from telecap.utils.exceptions import CaptureError, ConfigurationError, OpenFailureError, WriterResult
from telecap.utils.logger import ensure_logging, get_logger

STARTING_MARKER = "Starting TelemetryLog"
CONTINUING_MARKER = "Continuing TelemetryLog"


def format_value(value: Any, args: tuple) -> str:
    """Render the value part of ``add_data`` the way the display would."""
    if args:
        if len(args) == 1 and callable(args[0]):
            return value % str(args[0]())
        return value % args
    if callable(value):
        return str(value())
    return str(value)


class LogSession:
    """
    State of one telemetry capture: sink flag, start time, recent-entry
    buffer and the open log file (if any).

    Not thread-safe; one control loop should own a session.
    """

    def __init__(
        self,
        directory: Optional[Union[str, Path]] = None,
        policy: RotationPolicy = LOG_POLICY,
        capacity: int = MAX_RECENT_ENTRIES,
        sink: Optional[Callable[[str], None]] = None,
        guard: Optional[StorageGuard] = None,
        clock: Callable[[], float] = time.monotonic,
        default_to_log: bool = True,
        default_to_file: bool = True
    ):
        self.directory = Path(directory) if directory is not None else None
        self.policy = policy
        self.buffer = RecentEntryBuffer(capacity)
        if sink is None:
            ensure_logging()
            sink = get_logger("robot_log").info
        self.sink = sink
        self.guard = guard or StorageGuard()
        self._clock = clock
        self.default_to_log = default_to_log
        self.default_to_file = default_to_file

        self.to_log = default_to_log
        self.start_time = clock()
        self.writer: Optional[RotatingLogWriter] = None
        self.last_error: Optional[CaptureError] = None
        self.logger = get_logger("telemetry_log")

    @classmethod
    def from_config(cls, config_path: Optional[Union[str, Path]] = None, **kwargs) -> 'LogSession':
        """Session configured from the ``storage`` and ``telemetry_log`` sections.

        Keyword arguments override configured values. A missing or invalid
        configuration file leaves the built-in defaults in place.
        """
        try:
            manager = load_capture_config(config_path)
        except ConfigurationError as e:
            get_logger("telemetry_log").warning(f"Using built-in telemetry log settings: {e.message}")
            return cls(**kwargs)

        section = manager.get_value("telemetry_log", {})
        settings = {
            'directory': manager.storage_dir(),
            'policy': manager.log_policy(),
            'capacity': int(section["max_recent_entries"]),
            'default_to_log': bool(section["to_log"]),
            'default_to_file': bool(section["to_file"]),
        }
        settings.update(kwargs)
        return cls(**settings)

    def start(
        self,
        telemetry: Any = None,
        to_log: Optional[bool] = None,
        to_file: Optional[bool] = None,
        directory: Optional[Union[str, Path]] = None
    ) -> 'TelemetryLog':
        """(Re)start capture and return the wrapped telemetry.

        ``to_log`` / ``to_file`` left as None use the session defaults.
        Passing a telemetry object that is already a TelemetryLog continues
        it instead of wrapping it twice.
        """
        if to_log is None:
            to_log = self.default_to_log
        if to_file is None:
            to_file = self.default_to_file

        self.to_log = to_log
        self.start_time = self._clock()
        self.close()
        self.buffer.clear()
        self.last_error = None

        if directory is not None:
            self.directory = Path(directory)

        if to_file:
            self._open_writer()

        if isinstance(telemetry, TelemetryLog):
            telemetry.session = self
            self._emit_marker(CONTINUING_MARKER, f"{self.elapsed():5.3f}s {CONTINUING_MARKER}")
            return telemetry

        self._emit_marker(STARTING_MARKER, f"{self._utc_timestamp()} {STARTING_MARKER}")
        return TelemetryLog(telemetry, self)

    def _open_writer(self):
        result = self._start_writer()
        self.writer = result.writer
        self.last_error = result.error
        if not result.ok:
            self.logger.info(f"Telemetry file logging disabled: {result.error.message}")

    def _start_writer(self) -> WriterResult[RotatingLogWriter]:
        if self.directory is None:
            try:
                self.directory = load_capture_config().storage_dir()
            except ConfigurationError as e:
                return WriterResult.failure(OpenFailureError(
                    "storage directory", e.message, component="telemetry_log", original_exception=e
                ))

        return RotatingLogWriter.start(self.directory, self.policy, self.guard)

    def _emit_marker(self, sink_text: str, file_line: str):
        if self.to_log:
            self.sink(sink_text)
        if self.writer is not None:
            self._handle_write_error(self.writer.write_marker(file_line))

    def _handle_write_error(self, error: Optional[CaptureError]):
        if error is not None:
            self.writer = None
            self.last_error = error

    @staticmethod
    def _utc_timestamp() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

    def elapsed(self) -> float:
        """Seconds since the session (re)started."""
        return self._clock() - self.start_time

    def log_string(self, text: str):
        """Record one line unless it repeats a recently logged one."""
        if not self.buffer.record(text):
            return

        if self.to_log:
            self.sink(text)
        if self.writer is not None:
            self._handle_write_error(self.writer.append(self.elapsed(), text))

    @property
    def file_logging(self) -> bool:
        return self.writer is not None

    def close(self):
        """Close the log file. Logging to the sink continues."""
        if self.writer is not None:
            self.writer.close()
            self.writer = None


class TelemetryLog:
    """
    Telemetry display wrapper that records everything it is sent.

    Calls it does not handle itself are forwarded to the wrapped display;
    without a display they return None.
    """

    def __init__(self, telemetry: Any, session: LogSession):
        self.telemetry = telemetry
        self.session = session

    def add_data(self, caption: str, value: Any, *args):
        """Record ``"<caption>: <value>"`` and forward to the display.

        ``value`` may be a plain value, a callable producing the value, or a
        %-format string followed by its arguments (or by a single callable
        producing the argument).
        """
        self.session.log_string(f"{caption}: {format_value(value, args)}")
        if self.telemetry is None:
            return None
        return self.telemetry.add_data(caption, value, *args)

    def add_line(self, line_caption: Optional[str] = None):
        """Record a line and forward it.

        The exact line ``TelemetryLog:close`` closes the log file instead
        and is neither recorded nor forwarded.
        """
        if line_caption is None:
            return self.telemetry.add_line() if self.telemetry is not None else None

        if line_caption == CLOSE_COMMAND:
            self.session.close()
            return None

        self.session.log_string(line_caption)
        if self.telemetry is None:
            return None
        return self.telemetry.add_line(line_caption)

    def __getattr__(self, name: str):
        telemetry = self.__dict__.get('telemetry')
        if telemetry is None:
            if name.startswith('__'):
                raise AttributeError(name)
            return lambda *args, **kwargs: None
        return getattr(telemetry, name)


_default_session: Optional[LogSession] = None


def default_session() -> LogSession:
    """The process-wide session used by log_telemetry."""
    global _default_session
    if _default_session is None:
        _default_session = LogSession.from_config()
    return _default_session


def log_telemetry(
    telemetry: Any = None,
    to_log: Optional[bool] = None,
    to_file: Optional[bool] = None,
    directory: Optional[Union[str, Path]] = None,
    session: Optional[LogSession] = None
) -> TelemetryLog:
    """Wrap ``telemetry`` to log to the robot log and/or a rotating file.

    Args:
        telemetry: display to wrap; an existing TelemetryLog is continued
        to_log: send new lines to the robot log sink (default:
            ``telemetry_log.to_log`` from configuration)
        to_file: write new lines to the telemetry log file, provided the
            storage directory has enough free space and can be written
            (default: ``telemetry_log.to_file``)
        directory: storage directory (default: ``storage.directory`` from
            configuration)
        session: session to use instead of the process-wide one
    """
    return (session or default_session()).start(telemetry, to_log=to_log, to_file=to_file, directory=directory)
