"""Workflow registry for managing validated workflow graphs.

This module provides a registry for storing, retrieving, and managing
workflow graphs with support for versioning.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeAlias, Union

from litestar_pipelines.core.definition import WorkflowDefinition
from litestar_pipelines.engine.graph import WorkflowGraph, validate
from litestar_pipelines.exceptions import WorkflowNotFoundError

__all__ = ["WorkflowRegistry", "WorkflowSource"]

WorkflowSource: TypeAlias = Union[WorkflowGraph, WorkflowDefinition, Mapping[str, Any]]


def _version_key(version: str) -> tuple[Any, ...]:
    """Sort key ordering ``"1.10.0"`` after ``"1.9.0"``."""
    return tuple((0, int(part)) if part.isdigit() else (1, part) for part in version.split("."))


class WorkflowRegistry:
    """Registry for storing and retrieving workflow graphs.

    The registry maps workflow names to versions and their validated graphs.
    Anything registered is validated first, so only runnable graphs are ever
    handed to the engine.

    Attributes:
        _graphs: Nested dict mapping name -> version -> WorkflowGraph.
    """

    def __init__(self) -> None:
        """Initialize an empty workflow registry."""
        self._graphs: dict[str, dict[str, WorkflowGraph]] = {}

    def register(self, workflow: WorkflowSource) -> WorkflowGraph:
        """Validate and register a workflow.

        Args:
            workflow: A validated graph, a parsed definition or a definition document.

        Returns:
            The registered graph.

        Raises:
            WorkflowValidationError: If the definition is invalid.

        Example:
            >>> registry = WorkflowRegistry()
            >>> graph = registry.register({"name": "ingest", "start_at": "Crawl", "states": {...}})
        """
        if isinstance(workflow, WorkflowGraph):
            graph = workflow
        elif isinstance(workflow, WorkflowDefinition):
            graph = validate(workflow)
        else:
            graph = validate(WorkflowDefinition.from_document(workflow))

        self._graphs.setdefault(graph.name, {})[graph.version] = graph
        return graph

    def get_graph(self, name: str, version: str | None = None) -> WorkflowGraph:
        """Retrieve a workflow graph by name and optional version.

        Args:
            name: The workflow name.
            version: The workflow version. If None, returns the latest version.

        Returns:
            The WorkflowGraph for the requested workflow.

        Raises:
            WorkflowNotFoundError: If the workflow name or version is not found.

        Example:
            >>> graph = registry.get_graph("ingest")
            >>> graph_v1 = registry.get_graph("ingest", "1.0.0")
        """
        versions = self._graphs.get(name)
        if not versions:
            raise WorkflowNotFoundError(name)

        if version is None:
            version = max(versions, key=_version_key)

        if version not in versions:
            raise WorkflowNotFoundError(name, version)

        return versions[version]

    def list_graphs(self, active_only: bool = True) -> list[WorkflowGraph]:
        """List registered workflow graphs.

        Args:
            active_only: If True, only return the latest version of each workflow.
                If False, return all versions.

        Returns:
            List of WorkflowGraph objects.
        """
        graphs = []

        for versions in self._graphs.values():
            if active_only:
                graphs.append(versions[max(versions, key=_version_key)])
            else:
                graphs.extend(versions.values())

        return graphs

    def unregister(self, name: str, version: str | None = None) -> None:
        """Remove a workflow from the registry.

        Args:
            name: The workflow name.
            version: The specific version to remove. If None, removes all versions.
        """
        if name not in self._graphs:
            return

        if version is None:
            del self._graphs[name]
            return

        self._graphs[name].pop(version, None)
        if not self._graphs[name]:
            del self._graphs[name]

    def has_workflow(self, name: str, version: str | None = None) -> bool:
        """Check if a workflow exists in the registry.

        Args:
            name: The workflow name.
            version: Optional specific version to check.

        Returns:
            True if the workflow exists, False otherwise.
        """
        if name not in self._graphs:
            return False

        if version is None:
            return True

        return version in self._graphs[name]

    def get_versions(self, name: str) -> list[str]:
        """Get all versions for a workflow, oldest first.

        Raises:
            WorkflowNotFoundError: If the workflow name is not found.
        """
        if name not in self._graphs:
            raise WorkflowNotFoundError(name)

        return sorted(self._graphs[name], key=_version_key)
