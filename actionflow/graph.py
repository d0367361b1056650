"""Graph introspection helpers: walking, validating and rendering node graphs."""

import io
import logging
from collections import deque
from typing import Any, Iterator, List, Optional, Set, Tuple

from rich.console import Console
from rich.markup import escape
from rich.tree import Tree

from .errors import WiringError
from .flow import Flow
from .node import DEFAULT_ACTION, BaseNode

logger = logging.getLogger(__name__)

Edge = Tuple[BaseNode, Any, BaseNode]


def _root(obj: Any) -> Optional[BaseNode]:
    if isinstance(obj, Flow):
        return obj.start_node
    return obj


def action_label(action: Any) -> str:
    return "default" if action is DEFAULT_ACTION else repr(action)


def iter_nodes(flow_or_node: Any) -> Iterator[BaseNode]:
    """Yield every node reachable from the start node, once each, breadth first."""
    root = _root(flow_or_node)
    if root is None:
        return
    seen: Set[int] = {id(root)}
    queue = deque([root])
    while queue:
        node = queue.popleft()
        yield node
        for _, successor in node.successors.items():
            if id(successor) not in seen:
                seen.add(id(successor))
                queue.append(successor)


def list_edges(flow_or_node: Any) -> List[Edge]:
    """Return (source, action, target) for every transition in the graph."""
    return [
        (node, action, successor)
        for node in iter_nodes(flow_or_node)
        for action, successor in node.successors.items()
    ]


def validate_flow_structure(flow: Any) -> None:
    """Raise WiringError if the flow cannot be run."""
    if flow is None:
        raise WiringError("Flow cannot be None")
    if not isinstance(flow, Flow):
        raise WiringError(f"Expected a Flow, got {type(flow).__name__}")
    if flow.start_node is None:
        raise WiringError(f"{flow.name} has no start node")
    if not isinstance(flow.start_node, BaseNode):
        raise WiringError(f"{flow.name} start node is not a node: {flow.start_node!r}")
    for source, action, target in list_edges(flow):
        if not isinstance(target, BaseNode):
            raise WiringError(f"{source.name} -{action_label(action)}-> {target!r} is not a node")
    logger.debug(f"Flow structure validated: {flow.name}")


def render_flow(flow_or_node: Any) -> Tree:
    """Build a rich Tree of the graph; revisited nodes are marked instead of expanded."""
    root = _root(flow_or_node)
    title = getattr(flow_or_node, "name", "flow")
    tree = Tree(f"[bold]{escape(str(title))}[/bold]")
    if root is None:
        tree.add("[dim](no start node)[/dim]")
        return tree

    expanded: Set[int] = set()

    def add(branch: Tree, node: BaseNode, label: str) -> None:
        if id(node) in expanded:
            branch.add(f"{label}{escape(node.name)} [dim](see above)[/dim]")
            return
        expanded.add(id(node))
        child = branch.add(f"{label}[cyan]{escape(node.name)}[/cyan]")
        for action, successor in node.successors.items():
            add(child, successor, f"--{escape(action_label(action))}--> ")

    add(tree, root, "")
    return tree


def describe_flow(flow_or_node: Any, width: int = 100) -> str:
    """Return the rendered graph as plain text."""
    console = Console(file=io.StringIO(), record=True, width=width, color_system=None)
    console.print(render_flow(flow_or_node))
    return console.export_text()
