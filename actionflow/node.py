"""Nodes: the unit of work in an actionflow graph.

Each node implements the prep -> exec -> post lifecycle and stores
transitions to successor nodes keyed by action labels:

    - prep(shared): reads/writes the shared context, produces exec input
    - exec(prep_res): the unit of work, retried per the node's RetryPolicy
    - exec_fallback(prep_res, exc): runs once attempts are exhausted
    - post(shared, prep_res, exec_res): writes results, returns the next action

Wiring:
    a >> b            # default transition
    a - "retry" >> b  # labeled transition
    a.connect(b, "retry")
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .errors import (
    ConfigurationError,
    FallbackFailure,
    RetryExhausted,
    TypeMismatch,
    WiringError,
)
from .config import get_config
from .logging_config import NodeLogger, get_node_logger
from .values import Params

logger = logging.getLogger(__name__)


class _DefaultAction:
    """Key of the unlabeled transition; distinct from every string."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "DEFAULT_ACTION"

    def __reduce__(self):
        return (_DefaultAction, ())


DEFAULT_ACTION = _DefaultAction()


@dataclass(frozen=True)
class RetryPolicy:
    """How many times exec is attempted and how long to wait in between."""
    max_retries: int = 1
    wait_millis: int = 0

    def __post_init__(self):
        if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int) or self.max_retries < 1:
            raise ConfigurationError(f"max_retries must be an integer >= 1, got {self.max_retries!r}",
                                     config_key="max_retries")
        if isinstance(self.wait_millis, bool) or not isinstance(self.wait_millis, (int, float)) \
                or self.wait_millis < 0:
            raise ConfigurationError(f"wait_millis must be >= 0, got {self.wait_millis!r}",
                                     config_key="wait_millis")

    @property
    def wait_seconds(self) -> float:
        return self.wait_millis / 1000.0

    @classmethod
    def from_config(cls, retry_config) -> "RetryPolicy":
        """Build a policy from a RetryConfig section."""
        return cls(max_retries=retry_config.max_retries, wait_millis=retry_config.wait_millis)


class TransitionTable:
    """Mapping from action label to successor node for one node."""

    def __init__(self):
        self._routes: Dict[Any, "BaseNode"] = {}

    def register(self, action: Any, node: "BaseNode") -> bool:
        """Set the successor for ``action``; returns True if one was replaced."""
        if action is not DEFAULT_ACTION:
            if not isinstance(action, str):
                raise WiringError(f"Action must be a string or DEFAULT_ACTION, got {type(action).__name__}")
            if action == "":
                raise WiringError("Empty action label is ambiguous; use DEFAULT_ACTION for the default transition")
            if action == "default":
                logger.warning("Action 'default' is an ordinary label; "
                               "the unlabeled transition is DEFAULT_ACTION (a >> b)")
        if not isinstance(node, BaseNode):
            raise WiringError(f"Successor must be a node, got {type(node).__name__}")
        replaced = action in self._routes
        self._routes[action] = node
        return replaced

    def lookup(self, action: Optional[str]) -> Optional["BaseNode"]:
        """Return the successor for ``action``; None selects the default entry."""
        return self._routes.get(DEFAULT_ACTION if action is None else action)

    def actions(self) -> List[Any]:
        return list(self._routes)

    def items(self) -> List[Tuple[Any, "BaseNode"]]:
        return list(self._routes.items())

    def __getitem__(self, action: Any) -> "BaseNode":
        return self._routes[action]

    def __contains__(self, action: Any) -> bool:
        return action in self._routes

    def __iter__(self) -> Iterator[Any]:
        return iter(self._routes)

    def __len__(self) -> int:
        return len(self._routes)

    def __repr__(self):
        routes = ", ".join(f"{a!r}: {n.name}" for a, n in self._routes.items())
        return f"TransitionTable({{{routes}}})"


class BaseNode:
    """Node contract without retry: prep -> exec -> post."""

    def __init__(self, name: Optional[str] = None):
        self.params = Params()
        self.successors = TransitionTable()
        self.name = name or type(self).__name__
        self._node_logger: Optional[NodeLogger] = None

    @property
    def node_logger(self) -> NodeLogger:
        if self._node_logger is None:
            self._node_logger = get_node_logger(self.name)
        return self._node_logger

    def set_params(self, params) -> None:
        self.params = params if isinstance(params, Params) else Params(params)

    def connect(self, node: "BaseNode", action: Any = DEFAULT_ACTION) -> "BaseNode":
        """Register ``node`` as the successor for ``action`` and return it."""
        if self.successors.register(action, node):
            logger.warning(f"Overwriting successor for action {action!r} on {self.name}")
        return node

    def next(self, node: "BaseNode", action: Any = DEFAULT_ACTION) -> "BaseNode":
        return self.connect(node, action)

    # Overridable lifecycle hooks
    def prep(self, shared) -> Any:
        return None

    def exec(self, prep_res: Any) -> Any:
        return None

    def post(self, shared, prep_res: Any, exec_res: Any) -> Optional[str]:
        return None

    def _exec(self, prep_res: Any) -> Any:
        return self.exec(prep_res)

    def _run(self, shared) -> Optional[str]:
        log = self.node_logger
        log.prep_start()
        prep_res = self.prep(shared)
        log.prep_end()

        exec_res = self._exec(prep_res)

        log.post_start()
        action = self.post(shared, prep_res, exec_res)
        log.post_end(action)
        return action

    def run(self, shared) -> Optional[str]:
        """Run one prep/exec/post cycle; successors are not followed."""
        if self.successors:
            logger.warning(f"{self.name} won't run successors. Use Flow.")
        return self._run(shared)

    def __rshift__(self, other: "BaseNode") -> "BaseNode":
        return self.connect(other)

    def __sub__(self, action: str) -> "_LabeledEdge":
        if isinstance(action, str):
            return _LabeledEdge(self, action)
        raise TypeError("Action must be a string")

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


class _LabeledEdge:
    def __init__(self, node: BaseNode, action: str):
        self.node = node
        self.action = action

    def __rshift__(self, other: BaseNode) -> BaseNode:
        return self.node.connect(other, self.action)


class Node(BaseNode):
    """Node whose exec step is retried, then handed to exec_fallback.

    ``max_retries`` / ``wait_millis`` left as None come from the ``retry``
    configuration section (1 attempt, no wait unless configured).
    """

    def __init__(self, max_retries: Optional[int] = None, wait_millis: Optional[int] = None, *,
                 retry_policy: Optional[RetryPolicy] = None,
                 sleep: Optional[Callable[[float], Any]] = None,
                 name: Optional[str] = None):
        super().__init__(name=name)
        if retry_policy is None:
            defaults = get_config().retry
            retry_policy = RetryPolicy(
                defaults.max_retries if max_retries is None else max_retries,
                defaults.wait_millis if wait_millis is None else wait_millis,
            )
        self.retry_policy = retry_policy
        self.cur_retry = 0
        self._sleep = sleep

    @property
    def max_retries(self) -> int:
        return self.retry_policy.max_retries

    @property
    def wait_millis(self) -> int:
        return self.retry_policy.wait_millis

    def exec_fallback(self, prep_res: Any, exc: Exception) -> Any:
        raise exc

    def _wait(self) -> None:
        if self.retry_policy.wait_millis > 0:
            (self._sleep or time.sleep)(self.retry_policy.wait_seconds)

    def _exec(self, prep_res: Any) -> Any:
        return self._exec_with_retry(prep_res)

    def _exec_with_retry(self, prep_res: Any, item_index: Optional[int] = None) -> Any:
        log = self.node_logger
        max_retries = self.retry_policy.max_retries
        last_error: Optional[Exception] = None

        for attempt in range(max_retries):
            self.cur_retry = attempt
            log.exec_start(attempt, max_retries)
            try:
                result = self.exec(prep_res)
            except TypeMismatch as exc:
                log.error("type mismatch in exec", "exec", exc)
                raise
            except Exception as exc:
                last_error = exc
                if attempt + 1 < max_retries:
                    log.exec_retry(attempt, exc, self.retry_policy.wait_millis)
                    self._wait()
            else:
                log.exec_end(attempt)
                return result

        exhausted = RetryExhausted(self.name, max_retries, last_error)
        log.exec_fallback(max_retries, last_error)
        try:
            return self.exec_fallback(prep_res, last_error)
        except Exception as exc:
            self._raise_fallback_failure(exc, exhausted, item_index)

    def _raise_fallback_failure(self, exc: Exception, exhausted: RetryExhausted,
                                item_index: Optional[int]) -> None:
        if isinstance(exc, (FallbackFailure, TypeMismatch)):
            raise exc
        self.node_logger.error("fallback failed", "fallback", exc)
        raise FallbackFailure(self.name, exhausted.attempts, exc, exhausted, item_index) from exc
