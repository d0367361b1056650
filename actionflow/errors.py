"""
Error types for the actionflow engine.

Node execution failures are transient and handled inside the node (retry,
then fallback). Everything else in this module is fatal: it aborts the
enclosing run and propagates to the caller of ``run``.
"""

from enum import Enum
from typing import Any, Optional


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    LOW = "low"          # Logged only
    MEDIUM = "medium"    # Handled inside the node
    HIGH = "high"        # Aborts the run
    CRITICAL = "critical"  # Programming error


class RecoveryStrategy(Enum):
    """How the engine reacts to an error kind."""
    RETRY = "retry"              # Retry the execute step
    FALLBACK = "fallback"        # Hand over to exec_fallback
    FAIL = "fail"                # Abort the run


class WorkflowError(Exception):
    """Base exception for all actionflow errors."""
    def __init__(self, message: str, severity: ErrorSeverity = ErrorSeverity.MEDIUM,
                 recovery_strategy: RecoveryStrategy = RecoveryStrategy.FAIL):
        super().__init__(message)
        self.severity = severity
        self.recovery_strategy = recovery_strategy


class ExecutionFailure(WorkflowError):
    """Raised by a node's execute step; recoverable by retry."""
    def __init__(self, message: str, node_name: Optional[str] = None):
        super().__init__(message, ErrorSeverity.MEDIUM, RecoveryStrategy.RETRY)
        self.node_name = node_name


class RetryExhausted(WorkflowError):
    """Record of a node running out of attempts.

    Built by the retry loop right before the fallback is invoked. It is never
    raised out of a node; when the fallback fails it is attached to the
    resulting ``FallbackFailure`` as ``exhausted``.
    """
    def __init__(self, node_name: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"{node_name}: {attempts} attempt(s) failed, last error: {last_error}",
            ErrorSeverity.MEDIUM,
            RecoveryStrategy.FALLBACK,
        )
        self.node_name = node_name
        self.attempts = attempts
        self.last_error = last_error


class FallbackFailure(WorkflowError):
    """Raised when exec_fallback fails; aborts the enclosing run."""
    def __init__(self, node_name: str, attempts: int, cause: BaseException,
                 exhausted: Optional[RetryExhausted] = None,
                 item_index: Optional[int] = None):
        where = f"{node_name}[{item_index}]" if item_index is not None else node_name
        super().__init__(
            f"Fallback failed in {where} after {attempts} attempt(s): "
            f"{type(cause).__name__}: {cause}",
            ErrorSeverity.HIGH,
            RecoveryStrategy.FAIL,
        )
        self.node_name = node_name
        self.attempts = attempts
        self.cause = cause
        self.exhausted = exhausted
        self.item_index = item_index


class TypeMismatch(WorkflowError, TypeError):
    """Raised when a Context or Params value is read under the wrong type."""
    def __init__(self, key: Any, expected: Any, actual: Any):
        super().__init__(
            f"Value for {key!r} is {_type_name(actual)}, not {_type_name(expected)}",
            ErrorSeverity.CRITICAL,
            RecoveryStrategy.FAIL,
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class WiringError(WorkflowError):
    """Raised when a node graph is wired incorrectly."""
    def __init__(self, message: str):
        super().__init__(message, ErrorSeverity.CRITICAL, RecoveryStrategy.FAIL)


class StepLimitExceeded(WorkflowError):
    """Raised when a flow configured with ``max_steps`` runs past it."""
    def __init__(self, max_steps: int, node_name: str):
        super().__init__(
            f"Flow exceeded max_steps={max_steps} (next node: {node_name})",
            ErrorSeverity.HIGH,
            RecoveryStrategy.FAIL,
        )
        self.max_steps = max_steps
        self.node_name = node_name


class ConfigurationError(WorkflowError):
    """Raised when configuration is invalid or cannot be loaded."""
    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message, ErrorSeverity.CRITICAL, RecoveryStrategy.FAIL)
        self.config_key = config_key


def _type_name(tp: Any) -> str:
    if isinstance(tp, tuple):
        return " | ".join(_type_name(t) for t in tp)
    return getattr(tp, "__name__", repr(tp))
