"""actionflow: a minimal workflow engine of nodes wired by string actions."""

from .batch import BatchFlow, BatchNode, ItemFailure
from .errors import (
    ConfigurationError,
    ErrorSeverity,
    ExecutionFailure,
    FallbackFailure,
    RecoveryStrategy,
    RetryExhausted,
    StepLimitExceeded,
    TypeMismatch,
    WiringError,
    WorkflowError,
)
from .flow import Flow
from .node import DEFAULT_ACTION, BaseNode, Node, RetryPolicy, TransitionTable
from .values import Context, DynamicValue, Params

__version__ = "0.1.0"

__all__ = [
    "BaseNode",
    "Node",
    "BatchNode",
    "ItemFailure",
    "Flow",
    "BatchFlow",
    "DEFAULT_ACTION",
    "RetryPolicy",
    "TransitionTable",
    "Context",
    "Params",
    "DynamicValue",
    "WorkflowError",
    "ExecutionFailure",
    "RetryExhausted",
    "FallbackFailure",
    "TypeMismatch",
    "WiringError",
    "StepLimitExceeded",
    "ConfigurationError",
    "ErrorSeverity",
    "RecoveryStrategy",
]
