"""
TeleCap Logging System
======================

Logging configuration for the capture engine: context-aware loggers,
text or JSON formatting, console and rotating file output.
"""

import json
import logging
import logging.handlers
import queue
import sys
import threading
import traceback
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

LOGGER_NAMESPACE = "telecap"

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'exc_info', 'exc_text', 'stack_info', 'taskName',
    'component', 'stream', 'operation', 'message', 'asctime'
}


@dataclass
class LogContext:
    """Logging context for structured logging."""
    component: str
    stream: Optional[str] = None
    operation: Optional[str] = None


class TeleCapFormatter(logging.Formatter):
    """Formatter adding capture context to every record."""

    def __init__(self, json_format: bool = False):
        self.json_format = json_format

        if json_format:
            super().__init__()
        else:
            format_str = (
                '%(asctime)s | %(levelname)-8s | %(name)-24s | '
                '%(stream)s | %(component)s | %(message)s'
            )
            super().__init__(format_str, datefmt='%Y-%m-%d %H:%M:%S')

    def format(self, record: logging.LogRecord) -> str:
        if getattr(record, 'stream', None) is None:
            record.stream = '-'
        if not hasattr(record, 'component'):
            record.component = record.name
        if not hasattr(record, 'operation'):
            record.operation = None

        if self.json_format:
            return self._format_json(record)
        return super().format(record)

    def _format_json(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'component': record.component,
            'stream': record.stream,
            'operation': record.operation,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        extra_attrs = {
            key: value for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extra_attrs:
            log_data['extra'] = extra_attrs

        return json.dumps(log_data, default=str)


class AsyncLogHandler(logging.Handler):
    """Hands records to a worker thread so slow handlers never stall the caller."""

    def __init__(self, target_handler: logging.Handler, queue_size: int = 1000):
        super().__init__()
        self.target_handler = target_handler
        self.queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self.shutdown_event = threading.Event()
        self.worker_thread = threading.Thread(target=self._worker, daemon=True)
        self.worker_thread.start()

    def _worker(self):
        while not self.shutdown_event.is_set():
            try:
                record = self.queue.get(timeout=1.0)
            except queue.Empty:
                continue
            if record is None:
                break
            try:
                self.target_handler.handle(record)
            except Exception as e:
                print(f"Async log handler error: {e}", file=sys.stderr)
            finally:
                self.queue.task_done()

    def emit(self, record: logging.LogRecord):
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            pass  # dropped

    def flush(self):
        self.target_handler.flush()

    def close(self):
        self.shutdown_event.set()
        try:
            self.queue.put_nowait(None)
        except queue.Full:
            pass

        self.worker_thread.join(timeout=5.0)
        self.target_handler.close()
        super().close()


class TeleCapLogger:
    """Logger wrapper that attaches a LogContext to every record."""

    def __init__(self, name: str, context: Optional[LogContext] = None):
        self.logger = logging.getLogger(name)
        self.context = context or LogContext(component=name.rsplit('.', 1)[-1])

    def log(self, level: int, message: str, **kwargs):
        exc_info = kwargs.pop('exc_info', None)
        extra = {
            'component': self.context.component,
            'stream': self.context.stream,
            'operation': self.context.operation,
            **kwargs
        }
        self.logger.log(level, message, extra=extra, exc_info=exc_info)

    def debug(self, message: str, **kwargs):
        self.log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        self.log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self.log(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        self.log(logging.CRITICAL, message, **kwargs)


class LogManager:
    """Process-wide log manager."""

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if hasattr(self, '_initialized'):
            return

        self._initialized = True
        self.handlers: List[logging.Handler] = []
        self.log_directory = Path("logs")
        self.config = {}

    def setup_logging(
            self,
            level: Union[str, int] = logging.INFO,
            log_file: Optional[str] = None,
            log_directory: Optional[Union[str, Path]] = None,
            json_format: bool = False,
            async_logging: bool = False,
            max_file_size: int = 10 * 1024 * 1024,  # 10MB
            backup_count: int = 5
    ):
        """Configure handlers on the ``telecap`` logger namespace."""
        if isinstance(level, str):
            level = getattr(logging, level.upper())

        if log_directory is not None:
            self.log_directory = Path(log_directory)

        package_logger = logging.getLogger(LOGGER_NAMESPACE)
        self._remove_handlers(package_logger)

        console_handler: logging.Handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(TeleCapFormatter(json_format=False))
        console_handler.setLevel(level)
        if async_logging:
            console_handler = AsyncLogHandler(console_handler)
        self.handlers.append(console_handler)

        if log_file:
            self.log_directory.mkdir(parents=True, exist_ok=True)
            file_handler: logging.Handler = logging.handlers.RotatingFileHandler(
                self.log_directory / log_file,
                maxBytes=max_file_size,
                backupCount=backup_count,
                encoding='utf-8'
            )
            file_handler.setFormatter(TeleCapFormatter(json_format=json_format))
            file_handler.setLevel(logging.DEBUG)  # file gets all levels
            if async_logging:
                file_handler = AsyncLogHandler(file_handler)
            self.handlers.append(file_handler)

        package_logger.setLevel(logging.DEBUG if log_file else level)
        for handler in self.handlers:
            package_logger.addHandler(handler)

        self.config = {
            'level': level,
            'log_file': log_file,
            'json_format': json_format,
            'async_logging': async_logging
        }

        self.get_logger('logging_setup').debug(
            "Logging system initialized",
            log_level=logging.getLevelName(level),
            handlers_count=len(self.handlers)
        )

    def ensure_logging(self, level: Union[str, int] = logging.INFO):
        """Install console logging unless this manager or the host program already has handlers."""
        if self.handlers or logging.getLogger().handlers:
            return
        self.setup_logging(level=level)

    def get_logger(self, name: str, context: Optional[LogContext] = None) -> TeleCapLogger:
        """Get a logger under the package namespace."""
        return TeleCapLogger(f"{LOGGER_NAMESPACE}.{name}", context)

    def flush_logs(self):
        for handler in self.handlers:
            try:
                handler.flush()
            except Exception as e:
                print(f"Error flushing handler: {e}", file=sys.stderr)

    def shutdown(self):
        """Flush and detach every handler installed by setup_logging."""
        self.flush_logs()
        self._remove_handlers(logging.getLogger(LOGGER_NAMESPACE))

    def _remove_handlers(self, package_logger: logging.Logger):
        for handler in self.handlers:
            package_logger.removeHandler(handler)
            try:
                handler.close()
            except Exception as e:
                print(f"Error closing handler: {e}", file=sys.stderr)
        self.handlers.clear()


_log_manager = LogManager()


def setup_logging(**kwargs):
    """Setup logging with the given configuration."""
    _log_manager.setup_logging(**kwargs)


def ensure_logging(**kwargs):
    """Setup console logging if nothing is configured yet."""
    _log_manager.ensure_logging(**kwargs)


def get_logger(name: str, context: Optional[LogContext] = None) -> TeleCapLogger:
    """Get a logger instance."""
    return _log_manager.get_logger(name, context)


def get_stream_logger(stream: str, component: str) -> TeleCapLogger:
    """Get a logger tagged with a capture stream name."""
    return _log_manager.get_logger(component, LogContext(component=component, stream=stream or None))


def shutdown_logging():
    """Shutdown the logging system."""
    _log_manager.shutdown()
