"""Read access to other nodes' outputs from inside a running node.

The graph executor puts the serialised node list and a live reference to its
results map into every node's graph_context; WorkflowDataProxy resolves a
node by its display name against those.
"""

import logging
from typing import Any

from core.types_registry import NodeError, WorkflowItem

logger = logging.getLogger(__name__)


class NodeLookupError(NodeError):
    """Raised when a named node does not exist or has produced no items yet."""

    pass


def node_display_name(node_data: dict[str, Any]) -> str:
    return str(node_data.get("title") or node_data.get("type") or "")


class WorkflowDataProxy:
    def __init__(self, graph_context: dict[str, Any] | None):
        context = graph_context or {}
        self._nodes: list[dict[str, Any]] = list(context.get("nodes") or [])
        results = context.get("results")
        self._results: dict[int, dict[str, Any]] = results if results is not None else {}
        self._current_node_id = context.get("current_node_id")

    def node_ids(self, node_name: str) -> list[int]:
        """Ids of nodes whose title (or type, when untitled) equals node_name exactly."""
        return [
            node_data["id"]
            for node_data in self._nodes
            if node_display_name(node_data) == node_name and "id" in node_data
        ]

    def all(self, node_name: str) -> list[WorkflowItem]:
        """Output items of the named node.

        Raises NodeLookupError if no node has that name or none of the matching
        nodes has produced items.
        """
        node_ids = self.node_ids(node_name)
        if not node_ids:
            raise NodeLookupError(f"No node named '{node_name}' in this workflow")

        for node_id in node_ids:
            if node_id == self._current_node_id:
                continue
            output = self._results.get(node_id)
            if not isinstance(output, dict) or "items" not in output:
                continue
            items = output.get("items") or []
            logger.debug(f"WorkflowDataProxy: node '{node_name}' ({node_id}) has {len(items)} items")
            return list(items)

        raise NodeLookupError(f"Node '{node_name}' has not produced any items")
