"""Batch variants of Node and Flow.

BatchNode runs exec once per item returned by prep, each item with its own
retry/fallback cycle. BatchFlow runs its whole graph once per parameter set
returned by prep, against the same shared context.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from .config import get_config
from .errors import FallbackFailure
from .flow import Flow
from .node import BaseNode, Node

logger = logging.getLogger(__name__)


@dataclass
class ItemFailure:
    """Placeholder result for an item whose fallback failed (fail_fast=False)."""
    index: int
    item: Any
    error: FallbackFailure


class BatchNode(Node):
    """Node whose exec step is applied to each prepared item independently.

    With ``fail_fast=True`` the first item whose fallback fails aborts the
    batch and no later item runs. With ``fail_fast=False`` that item's slot
    holds an ``ItemFailure`` and the remaining items still run. Left as None,
    the policy comes from the ``batch`` configuration section (fail-fast
    unless configured).
    """

    def __init__(self, max_retries: Optional[int] = None, wait_millis: Optional[int] = None, *,
                 fail_fast: Optional[bool] = None, **kwargs):
        super().__init__(max_retries, wait_millis, **kwargs)
        self.fail_fast = get_config().batch.fail_fast if fail_fast is None else fail_fast

    def _item_failed(self, index: int, item: Any, exc: FallbackFailure) -> ItemFailure:
        if self.fail_fast:
            raise exc
        logger.warning(f"{self.name}: item {index} failed, continuing batch: {exc}")
        return ItemFailure(index, item, exc)

    def _exec(self, items) -> List[Any]:
        results = []
        for index, item in enumerate(items or []):
            try:
                results.append(self._exec_with_retry(item, item_index=index))
            except FallbackFailure as exc:
                results.append(self._item_failed(index, item, exc))
        return results


class BatchFlow(Flow):
    """Flow that runs once per parameter set returned by ``prep``.

    Each set overrides the BatchFlow's own params for one iteration only;
    the shared context is the same object across iterations, so state can
    accumulate. With ``collect_actions=True`` the last action of each
    iteration is passed to ``post`` and kept on ``last_actions``.
    """

    def __init__(self, start: Optional[BaseNode] = None, *, max_steps: Optional[int] = None,
                 collect_actions: Optional[bool] = None, name: Optional[str] = None):
        super().__init__(start, max_steps=max_steps, name=name)
        if collect_actions is None:
            collect_actions = get_config().batch.collect_actions
        self.collect_actions = collect_actions
        self.last_actions: Optional[List[Optional[str]]] = None

    def prep(self, shared):
        return None

    def _collected(self, actions: List[Optional[str]]) -> Optional[List[Optional[str]]]:
        self.last_actions = actions if self.collect_actions else None
        return self.last_actions

    def _run(self, shared) -> Optional[str]:
        param_sets = list(self.prep(shared) or [])
        actions = []
        for index, param_set in enumerate(param_sets):
            logger.debug(f"{self.name}: iteration {index} with params {sorted(param_set)}")
            actions.append(self._orch(shared, self.params.merged(param_set)))
        return self.post(shared, param_sets, self._collected(actions))

    def post(self, shared, prep_res: Any, exec_res: Any) -> Optional[str]:
        return None
