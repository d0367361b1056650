"""Logging configuration for actionflow.

This module provides structured logging with run ID tracking, a node
lifecycle logger, and environment-independent handler setup.
"""

import json
import logging
import logging.handlers
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

# Run ID of the flow currently executing in this context
run_id_var: ContextVar[Optional[str]] = ContextVar('run_id', default=None)

_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'taskName', 'message',
    'exc_info', 'exc_text', 'stack_info', 'asctime',
])


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for logs."""

    def __init__(self, include_run_id: bool = True):
        """
        Initialize the formatter.

        Parameters:
            include_run_id (bool): If True, the formatter adds the active run ID
                (from ``run_id_var``) to every entry that does not carry one.
        """
        super().__init__()
        self.include_run_id = include_run_id

    def format(self, record):
        """
        Format a LogRecord into a single-line JSON string.

        The output always contains `timestamp`, `level`, `logger`, `message`,
        `module`, `function` and `line`; `exception` is added when the record
        carries exc_info, and any non-standard attribute passed through
        ``extra`` is copied as-is. Values that are not JSON serializable are
        rendered with str().
        """
        log_entry = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if self.include_run_id:
            run_id = run_id_var.get()
            if run_id:
                log_entry['run_id'] = run_id

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self, include_run_id: bool = True):
        super().__init__(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        self.include_run_id = include_run_id

    def format(self, record):
        """Format the record, prefixed with ``[run_id]`` when a run is active."""
        formatted = super().format(record)

        if self.include_run_id:
            run_id = run_id_var.get()
            if run_id:
                formatted = f"[{run_id}] {formatted}"

        return formatted


class RunContext:
    """Sets the run ID for log correlation while a flow runs."""

    def __init__(self, run_id: Optional[str] = None):
        """
        Create a run context.

        Parameters:
            run_id (Optional[str]): Identifier to use for this run; a short
                UUID is generated when omitted.
        """
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.start_time = time.perf_counter()
        self._token = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self._token = run_id_var.set(self.run_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        run_id_var.reset(self._token)
        self._token = None

    def get_duration_ms(self) -> float:
        """Return the elapsed time in milliseconds since the context was entered."""
        return (time.perf_counter() - self.start_time) * 1000


def configure_logging(
    level: str = "INFO",
    format_type: str = "human",
    log_file: Optional[str] = None,
    max_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    include_run_id: bool = True
) -> None:
    """
    Configure the root logger with console (and optional rotating file) handlers.

    Parameters:
        level: Log level name (e.g., "DEBUG", "INFO", "WARNING").
        format_type: "human" for readable text or "json" for structured output.
        log_file: Optional path; when provided a RotatingFileHandler is added.
        max_size: Maximum size in bytes of a log file before rollover.
        backup_count: Number of rotated log files to retain.
        include_run_id: If True, include the active run ID in formatted records.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if format_type.lower() == 'json':
        formatter = StructuredFormatter(include_run_id=include_run_id)
    else:
        formatter = HumanReadableFormatter(include_run_id=include_run_id)

    handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(numeric_level)
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(numeric_level)
        handlers.append(file_handler)

    logging.basicConfig(
        level=numeric_level,
        handlers=handlers,
        force=True
    )

    logging.getLogger(__name__).debug(
        "Logging configured",
        extra={
            'log_level': level,
            'log_format': format_type,
            'log_file': log_file,
        }
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class NodeLogger:
    """Lifecycle logging for a single node.

    Every record carries ``node`` and ``phase`` extras so the JSON formatter
    can group the prep/exec/post events of one node visit.
    """

    def __init__(self, node_name: str):
        self.node_name = node_name
        self.logger = get_logger(f"actionflow.node.{node_name}")

    def _extra(self, phase: str, **fields: Any) -> Dict[str, Any]:
        extra = {'node': self.node_name, 'phase': phase}
        extra.update(fields)
        return extra

    def prep_start(self):
        self.logger.debug(f"{self.node_name}: prep started", extra=self._extra('prep'))

    def prep_end(self):
        self.logger.debug(f"{self.node_name}: prep finished", extra=self._extra('prep'))

    def exec_start(self, attempt: int = 0, max_retries: int = 1):
        self.logger.debug(
            f"{self.node_name}: exec attempt {attempt + 1}/{max_retries}",
            extra=self._extra('exec', attempt=attempt, max_retries=max_retries),
        )

    def exec_end(self, attempt: int = 0):
        self.logger.debug(
            f"{self.node_name}: exec succeeded",
            extra=self._extra('exec', attempt=attempt),
        )

    def exec_retry(self, attempt: int, error: BaseException, wait_millis: int):
        self.logger.warning(
            f"{self.node_name}: exec attempt {attempt + 1} failed ({error}); retrying in {wait_millis}ms",
            extra=self._extra('exec', attempt=attempt, error=str(error),
                              error_type=type(error).__name__, wait_millis=wait_millis),
        )

    def exec_fallback(self, attempts: int, error: BaseException):
        self.logger.warning(
            f"{self.node_name}: retries exhausted after {attempts} attempt(s) ({error}); running fallback",
            extra=self._extra('fallback', attempts=attempts, error=str(error),
                              error_type=type(error).__name__),
        )

    def post_start(self):
        self.logger.debug(f"{self.node_name}: post started", extra=self._extra('post'))

    def post_end(self, action: Optional[str] = None):
        self.logger.debug(
            f"{self.node_name}: post returned action {action!r}",
            extra=self._extra('post', action=action),
        )

    def error(self, message: str, phase: str, error: Optional[BaseException] = None):
        fields = {}
        if error is not None:
            fields = {'error': str(error), 'error_type': type(error).__name__}
        self.logger.error(f"{self.node_name}: {message}", extra=self._extra(phase, **fields))


def get_node_logger(node_name: str) -> NodeLogger:
    return NodeLogger(node_name)


def log_flow_start(flow_name: str, shared: Any):
    """Log that a flow run has started, recording the shared-store keys present."""
    get_logger('actionflow.flow').info(
        f"Starting flow execution: {flow_name}",
        extra={
            'flow_name': flow_name,
            'shared_keys': sorted(str(k) for k in shared.keys()) if hasattr(shared, 'keys') else [],
        }
    )


def log_flow_completion(flow_name: str, duration_ms: float, success: bool,
                        action: Optional[str] = None, error: Optional[BaseException] = None):
    """
    Record the completion or failure of a flow run.

    Logs INFO on success and ERROR on failure, with the duration, the final
    action and, on failure, the error type and message.
    """
    extra = {
        'flow_name': flow_name,
        'duration_ms': duration_ms,
        'success': success,
        'action': action,
    }
    if error is not None:
        extra['error'] = str(error)
        extra['error_type'] = type(error).__name__

    log_level = logging.INFO if success else logging.ERROR
    message = f"Flow completed: {flow_name}" if success else f"Flow failed: {flow_name}"
    get_logger('actionflow.flow').log(log_level, message, extra=extra)
