"""asyncio variants of nodes and flows.

The hooks are coroutines (prep_async, exec_async, exec_fallback_async,
post_async) and retry waits use asyncio.sleep, so cancelling a run also
interrupts a pending retry wait.

The parallel variants run batch items / flow iterations concurrently:
    - concurrency is bounded by ``max_concurrency``, independent of the
      number of items;
    - the first failure cancels everything still pending and propagates
      (fail-fast); results keep input order;
    - iterations share one context; context operations between two awaits
      run without interleaving on the event loop.
"""

import asyncio
import logging
from typing import Any, Awaitable, Iterable, List, Optional

from .batch import BatchFlow, BatchNode, ItemFailure
from .config import get_config
from .errors import ConfigurationError, FallbackFailure, RetryExhausted, TypeMismatch
from .flow import Flow
from .logging_config import RunContext, log_flow_completion, log_flow_start
from .node import BaseNode, Node

logger = logging.getLogger(__name__)


async def gather_fail_fast(aws: Iterable[Awaitable[Any]]) -> List[Any]:
    """Await all in order; on the first failure cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []
    try:
        _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    failed = [t for t in tasks if t.done() and not t.cancelled() and t.exception() is not None]
    if failed:
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise failed[0].exception()
    return [task.result() for task in tasks]


def _resolve_concurrency(max_concurrency: Optional[int]) -> int:
    if max_concurrency is None:
        max_concurrency = get_config().batch.max_concurrency
    if max_concurrency < 1:
        raise ConfigurationError(f"max_concurrency must be >= 1, got {max_concurrency}",
                                 config_key="max_concurrency")
    return max_concurrency


class AsyncNode(Node):
    """Node with coroutine hooks; run it with ``await node.run_async(shared)``."""

    async def prep_async(self, shared) -> Any:
        return None

    async def exec_async(self, prep_res: Any) -> Any:
        return None

    async def exec_fallback_async(self, prep_res: Any, exc: Exception) -> Any:
        raise exc

    async def post_async(self, shared, prep_res: Any, exec_res: Any) -> Optional[str]:
        return None

    async def _wait_async(self) -> None:
        if self.retry_policy.wait_millis > 0:
            await (self._sleep or asyncio.sleep)(self.retry_policy.wait_seconds)

    async def _exec_with_retry_async(self, prep_res: Any, item_index: Optional[int] = None) -> Any:
        log = self.node_logger
        max_retries = self.retry_policy.max_retries
        last_error: Optional[Exception] = None

        for attempt in range(max_retries):
            self.cur_retry = attempt
            log.exec_start(attempt, max_retries)
            try:
                result = await self.exec_async(prep_res)
            except TypeMismatch as exc:
                log.error("type mismatch in exec", "exec", exc)
                raise
            except Exception as exc:
                last_error = exc
                if attempt + 1 < max_retries:
                    log.exec_retry(attempt, exc, self.retry_policy.wait_millis)
                    await self._wait_async()
            else:
                log.exec_end(attempt)
                return result

        exhausted = RetryExhausted(self.name, max_retries, last_error)
        log.exec_fallback(max_retries, last_error)
        try:
            return await self.exec_fallback_async(prep_res, last_error)
        except Exception as exc:
            self._raise_fallback_failure(exc, exhausted, item_index)

    async def _exec(self, prep_res: Any) -> Any:
        return await self._exec_with_retry_async(prep_res)

    async def _run_async(self, shared) -> Optional[str]:
        log = self.node_logger
        log.prep_start()
        prep_res = await self.prep_async(shared)
        log.prep_end()

        exec_res = await self._exec(prep_res)

        log.post_start()
        action = await self.post_async(shared, prep_res, exec_res)
        log.post_end(action)
        return action

    async def run_async(self, shared) -> Optional[str]:
        if self.successors:
            logger.warning(f"{self.name} won't run successors. Use AsyncFlow.")
        return await self._run_async(shared)

    def _run(self, shared):
        raise RuntimeError(f"{self.name} is async; use run_async.")


class AsyncBatchNode(AsyncNode, BatchNode):
    """Async batch node; items are processed one after another."""

    async def _exec(self, items) -> List[Any]:
        results = []
        for index, item in enumerate(items or []):
            try:
                results.append(await self._exec_with_retry_async(item, item_index=index))
            except FallbackFailure as exc:
                results.append(self._item_failed(index, item, exc))
        return results


class AsyncParallelBatchNode(AsyncNode, BatchNode):
    """Async batch node; items run concurrently, at most ``max_concurrency`` at once."""

    def __init__(self, max_retries: Optional[int] = None, wait_millis: Optional[int] = None, *,
                 max_concurrency: Optional[int] = None, **kwargs):
        super().__init__(max_retries, wait_millis, **kwargs)
        self.max_concurrency = _resolve_concurrency(max_concurrency)

    async def _exec(self, items) -> List[Any]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_item(index: int, item: Any) -> Any:
            async with semaphore:
                try:
                    return await self._exec_with_retry_async(item, item_index=index)
                except FallbackFailure as exc:
                    return self._item_failed(index, item, exc)

        return await gather_fail_fast(run_item(i, item) for i, item in enumerate(items or []))


class AsyncFlow(Flow, AsyncNode):
    """Flow that can run both sync and async nodes."""

    async def _orch_async(self, shared, params=None) -> Optional[str]:
        flow_params = self.params if params is None else params
        curr: Optional[BaseNode] = self._first_node()
        last_action: Optional[str] = None
        steps = 0
        while curr is not None:
            steps += 1
            self._check_step(steps, curr)
            visit = self._bind(curr, flow_params)
            if isinstance(visit, AsyncNode):
                last_action = await visit._run_async(shared)
            else:
                last_action = visit._run(shared)
            curr = self.get_next_node(curr, last_action)
        return last_action

    async def _run_async(self, shared) -> Optional[str]:
        prep_res = await self.prep_async(shared)
        exec_res = await self._orch_async(shared)
        return await self.post_async(shared, prep_res, exec_res)

    async def post_async(self, shared, prep_res: Any, exec_res: Any) -> Optional[str]:
        return exec_res

    async def run_async(self, shared) -> Optional[str]:
        if self.successors:
            logger.warning(f"{self.name} won't run successors. Use AsyncFlow.")
        with RunContext() as run_ctx:
            log_flow_start(self.name, shared)
            try:
                action = await self._run_async(shared)
            except Exception as exc:
                log_flow_completion(self.name, run_ctx.get_duration_ms(), False, error=exc)
                raise
            log_flow_completion(self.name, run_ctx.get_duration_ms(), True, action=action)
            return action

    def _run(self, shared):
        raise RuntimeError(f"{self.name} is async; use run_async.")


class AsyncBatchFlow(AsyncFlow, BatchFlow):
    """Async batch flow; iterations run one after another."""

    async def _run_async(self, shared) -> Optional[str]:
        param_sets = list(await self.prep_async(shared) or [])
        actions = []
        for param_set in param_sets:
            actions.append(await self._orch_async(shared, self.params.merged(param_set)))
        return await self.post_async(shared, param_sets, self._collected(actions))

    async def post_async(self, shared, prep_res: Any, exec_res: Any) -> Optional[str]:
        return None


class AsyncParallelBatchFlow(AsyncFlow, BatchFlow):
    """Async batch flow; iterations run concurrently against the same context."""

    def __init__(self, start: Optional[BaseNode] = None, *, max_concurrency: Optional[int] = None, **kwargs):
        super().__init__(start, **kwargs)
        self.max_concurrency = _resolve_concurrency(max_concurrency)

    async def _run_async(self, shared) -> Optional[str]:
        param_sets = list(await self.prep_async(shared) or [])
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_iteration(param_set) -> Optional[str]:
            async with semaphore:
                return await self._orch_async(shared, self.params.merged(param_set))

        actions = await gather_fail_fast(run_iteration(ps) for ps in param_sets)
        return await self.post_async(shared, param_sets, self._collected(actions))

    async def post_async(self, shared, prep_res: Any, exec_res: Any) -> Optional[str]:
        return None


__all__ = [
    "AsyncNode",
    "AsyncBatchNode",
    "AsyncParallelBatchNode",
    "AsyncFlow",
    "AsyncBatchFlow",
    "AsyncParallelBatchFlow",
    "ItemFailure",
    "gather_fail_fast",
]
