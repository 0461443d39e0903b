"""Graph visualization utilities for workflows.

This module turns validated graphs, and optionally a run's history, into the
node/edge structure served by the API next to the MermaidJS source.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from litestar_pipelines.core.types import HistoryEventType

if TYPE_CHECKING:
    from collections.abc import Iterable

    from litestar_pipelines.core.models import HistoryEntry
    from litestar_pipelines.engine.graph import WorkflowGraph

__all__ = ["parse_graph_to_dict", "state_outcomes"]


def parse_graph_to_dict(graph: WorkflowGraph) -> dict[str, Any]:
    """Parse a workflow graph into a dictionary representation.

    Args:
        graph: The workflow graph to parse.

    Returns:
        A dictionary containing nodes and edges lists.

    Example:
        >>> graph_dict = parse_graph_to_dict(graph)
        >>> graph_dict["nodes"][0]
        {"id": "Crawl", "type": "Task", "is_initial": True, "is_terminal": False}
    """
    nodes = [
        {
            "id": state_id,
            "type": str(state.type),
            "is_initial": state_id == graph.start_at,
            "is_terminal": state.is_terminal,
        }
        for state_id, state in graph.states.items()
    ]

    edges = []
    for state_id, state in graph.states.items():
        for label, target in state.transitions():
            edge = {"source": state_id, "target": target}
            if label != "next":
                edge["condition"] = label
            edges.append(edge)

    return {"nodes": nodes, "edges": edges}


def state_outcomes(entries: Iterable[HistoryEntry]) -> tuple[list[str], list[str]]:
    """Split the states a run went through into completed and failed ones.

    A state counts as failed only while its latest step outcome is a failure, so a
    step that succeeded on retry is reported as completed.

    Returns:
        Tuple of (completed state ids, failed state ids).
    """
    latest: dict[str, bool] = {}
    for entry in entries:
        if entry.state_id is None:
            continue
        if entry.event is HistoryEventType.STEP_SUCCEEDED:
            latest[entry.state_id] = True
        elif entry.event is HistoryEventType.STEP_FAILED:
            latest[entry.state_id] = False
    completed = [state_id for state_id, ok in latest.items() if ok]
    failed = [state_id for state_id, ok in latest.items() if not ok]
    return completed, failed
