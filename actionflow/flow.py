"""Flow orchestration.

A Flow starts at its start node, runs the node's prep/exec/post cycle,
follows the transition selected by the returned action, and repeats until
the current node has no transition for that action. The last action is
returned to the caller.

Params: a visited node runs on a shallow copy whose params are the node's
own params overridden key by key by the flow's params, so the caller's node
instances are never mutated and the same node can appear in several flows.
Attributes a node sets on ``self`` during a visit are therefore gone by the
next visit; keep run state (counters, accumulators) in the shared context.
"""

import copy
import logging
from typing import Any, Optional

from .config import get_config
from .errors import ConfigurationError, StepLimitExceeded, WiringError
from .logging_config import RunContext, log_flow_completion, log_flow_start
from .node import BaseNode
from .values import Params

logger = logging.getLogger(__name__)


class Flow(BaseNode):
    """Orchestrator that walks a node graph; also usable as a node itself.

    ``max_steps`` left as None comes from the ``flow`` configuration section,
    which has no limit unless configured. Nodes run as per-visit copies, so
    keep run state in the shared context rather than on the node.
    """

    def __init__(self, start: Optional[BaseNode] = None, *, max_steps: Optional[int] = None,
                 name: Optional[str] = None):
        super().__init__(name=name)
        if max_steps is None:
            max_steps = get_config().flow.max_steps
        if max_steps is not None and max_steps < 1:
            raise ConfigurationError(f"max_steps must be >= 1, got {max_steps}", config_key="max_steps")
        self.start_node = start
        self.max_steps = max_steps

    def start(self, start: BaseNode) -> BaseNode:
        self.start_node = start
        return start

    def get_next_node(self, curr: BaseNode, action: Optional[str]) -> Optional[BaseNode]:
        nxt = curr.successors.lookup(action)
        if nxt is None and curr.successors:
            logger.warning(f"Flow ends: {action!r} not found in {curr.successors.actions()} of {curr.name}")
        return nxt

    def _bind(self, node: BaseNode, flow_params: Params) -> BaseNode:
        visit = copy.copy(node)
        visit.set_params(node.params.merged(flow_params))
        return visit

    def _check_step(self, steps: int, node: BaseNode) -> None:
        if self.max_steps is not None and steps > self.max_steps:
            raise StepLimitExceeded(self.max_steps, node.name)

    def _first_node(self) -> BaseNode:
        if self.start_node is None:
            raise WiringError(f"{self.name} has no start node")
        return self.start_node

    def _orch(self, shared, params: Optional[Params] = None) -> Optional[str]:
        flow_params = self.params if params is None else params
        curr: Optional[BaseNode] = self._first_node()
        last_action: Optional[str] = None
        steps = 0
        while curr is not None:
            steps += 1
            self._check_step(steps, curr)
            last_action = self._bind(curr, flow_params)._run(shared)
            curr = self.get_next_node(curr, last_action)
        return last_action

    def _run(self, shared) -> Optional[str]:
        prep_res = self.prep(shared)
        exec_res = self._orch(shared)
        return self.post(shared, prep_res, exec_res)

    def post(self, shared, prep_res: Any, exec_res: Any) -> Optional[str]:
        return exec_res

    def run(self, shared) -> Optional[str]:
        """Run the graph against ``shared`` and return the last action."""
        if self.successors:
            logger.warning(f"{self.name} won't run successors. Use Flow.")
        with RunContext() as run_ctx:
            log_flow_start(self.name, shared)
            try:
                action = self._run(shared)
            except Exception as exc:
                log_flow_completion(self.name, run_ctx.get_duration_ms(), False, error=exc)
                raise
            log_flow_completion(self.name, run_ctx.get_duration_ms(), True, action=action)
            return action
