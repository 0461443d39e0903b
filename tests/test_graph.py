"""Tests for graph validation and the WorkflowGraph API."""

from __future__ import annotations

from typing import Any

import pytest

from litestar_pipelines.core.definition import WorkflowDefinition
from litestar_pipelines.engine.graph import WorkflowGraph, validate
from litestar_pipelines.exceptions import (
    CyclicWithoutGuardError,
    InvalidStateError,
    MalformedBranchError,
    MissingDefaultError,
    UnknownStateReferenceError,
    UnreachableStateError,
    WorkflowValidationError,
)


def build(document: dict[str, Any]) -> WorkflowGraph:
    return validate(WorkflowDefinition.from_document(document))


def workflow(states: dict[str, Any], start_at: str = "A") -> dict[str, Any]:
    return {"name": "test", "start_at": start_at, "states": states}


@pytest.mark.unit
class TestValidate:
    """Tests for validate()."""

    def test_valid_linear_graph(self, linear_document: dict[str, Any]) -> None:
        """Test a well-formed document builds a graph."""
        graph = build(linear_document)

        assert graph.name == "ingest"
        assert graph.start_at == "Crawl"
        assert graph.successors("Crawl") == ("Done",)
        assert graph.predecessors("Done") == ("Crawl",)
        assert graph.is_terminal("Done")
        assert not graph.is_terminal("Crawl")

    def test_unknown_start_state(self) -> None:
        """Test start_at must name an existing state."""
        with pytest.raises(UnknownStateReferenceError, match="Start state 'Nope' not found"):
            build(workflow({"A": {"type": "Succeed"}}, start_at="Nope"))

    def test_unknown_transition_target(self) -> None:
        """Test next targets must exist."""
        with pytest.raises(UnknownStateReferenceError, match="next target 'B' not found"):
            build(workflow({"A": {"type": "Pass", "next": "B"}}))

    def test_unknown_catcher_target(self) -> None:
        """Test catcher targets must exist."""
        with pytest.raises(UnknownStateReferenceError):
            build(workflow({"A": {"type": "Task", "end": True, "catch": [{"next": "Ghost"}]}}))

    def test_next_and_end_together(self) -> None:
        """Test a state cannot both continue and end."""
        with pytest.raises(InvalidStateError, match="cannot have both next and end"):
            build(workflow({"A": {"type": "Pass", "next": "B", "end": True}, "B": {"type": "Succeed"}}))

    def test_neither_next_nor_end(self) -> None:
        """Test a non-terminal state needs a way out."""
        with pytest.raises(InvalidStateError, match="needs either next or end"):
            build(workflow({"A": {"type": "Pass"}}))

    def test_choice_without_default(self) -> None:
        """Test Choice states need a default."""
        document = workflow(
            {
                "A": {"type": "Choice", "choices": [{"variable": "x", "equals": 1, "next": "B"}]},
                "B": {"type": "Succeed"},
            }
        )

        with pytest.raises(MissingDefaultError):
            build(document)

    def test_choice_without_rules(self) -> None:
        """Test Choice states need at least one rule."""
        with pytest.raises(InvalidStateError, match="at least one rule"):
            build(workflow({"A": {"type": "Choice", "default": "B"}, "B": {"type": "Succeed"}}))

    def test_wait_needs_exactly_one_duration(self) -> None:
        """Test a Wait with both seconds and seconds_path is rejected."""
        document = workflow(
            {"A": {"type": "Wait", "seconds": 5, "seconds_path": "delay", "next": "B"}, "B": {"type": "Succeed"}}
        )

        with pytest.raises(InvalidStateError, match="exactly one of seconds"):
            build(document)

    def test_unreachable_state(self) -> None:
        """Test every state must be reachable from the start state."""
        with pytest.raises(UnreachableStateError, match="'Orphan' is unreachable"):
            build(workflow({"A": {"type": "Succeed"}, "Orphan": {"type": "Succeed"}}))

    def test_malformed_branch(self) -> None:
        """Test a Parallel branch must validate on its own."""
        document = workflow(
            {
                "A": {
                    "type": "Parallel",
                    "branches": [{"start_at": "X", "states": {"X": {"type": "Pass", "next": "Y"}}}],
                    "end": True,
                }
            }
        )

        with pytest.raises(MalformedBranchError, match="branch 0"):
            build(document)

    def test_map_sub_graph_is_kept(self) -> None:
        """Test Map iterators become sub-graphs of their owning state."""
        graph = build(
            workflow(
                {
                    "A": {
                        "type": "Map",
                        "iterator": {"start_at": "P", "states": {"P": {"type": "Succeed"}}},
                        "end": True,
                    }
                }
            )
        )

        assert [sub.start_at for sub in graph.branches("A")] == ["P"]

    def test_unguarded_cycle(self) -> None:
        """Test a bare loop is rejected."""
        document = workflow({"A": {"type": "Pass", "next": "B"}, "B": {"type": "Pass", "next": "A"}})

        with pytest.raises(CyclicWithoutGuardError, match=r"Cycle through \[A, B\]"):
            build(document)

    def test_cycle_with_choice_but_no_wait(self) -> None:
        """Test a loop with an exit but no Wait is still rejected."""
        document = workflow(
            {
                "A": {"type": "Task", "next": "Check"},
                "Check": {
                    "type": "Choice",
                    "choices": [{"variable": "done", "equals": True, "next": "End"}],
                    "default": "A",
                },
                "End": {"type": "Succeed"},
            }
        )

        with pytest.raises(CyclicWithoutGuardError):
            build(document)

    def test_cycle_with_wait_but_no_exit(self) -> None:
        """Test a loop with a Wait but no way out is rejected."""
        document = workflow(
            {
                "A": {"type": "Task", "next": "Pause"},
                "Pause": {"type": "Wait", "seconds": 10, "next": "A"},
            }
        )

        with pytest.raises(CyclicWithoutGuardError):
            build(document)

    def test_guarded_polling_cycle(self, polling_document: dict[str, Any]) -> None:
        """Test a loop through a Choice with an exit and a Wait is valid."""
        graph = build(polling_document)

        assert graph.reachable_states() == {"Start", "Check", "Wait30", "Done"}

    def test_inner_loop_without_wait(self) -> None:
        """Test a busy loop nested inside a guarded polling loop is rejected."""
        document = workflow(
            {
                "Outer": {
                    "type": "Choice",
                    "choices": [{"variable": "done", "equals": True, "next": "Done"}],
                    "default": "Pause",
                },
                "Pause": {"type": "Wait", "seconds": 1, "next": "Inner"},
                "Inner": {
                    "type": "Choice",
                    "choices": [{"variable": "go", "equals": True, "next": "Outer"}],
                    "default": "Spin",
                },
                "Spin": {"type": "Pass", "next": "Inner"},
                "Done": {"type": "Succeed"},
            },
            start_at="Outer",
        )

        with pytest.raises(CyclicWithoutGuardError) as exc_info:
            build(document)

        assert exc_info.value.errors == ["Cycle through [Inner, Spin] must pass through a Wait state"]

    def test_inner_loop_needs_its_own_exit(self) -> None:
        """Test a waiting loop whose only way out is another loop's Choice is rejected."""
        document = workflow(
            {
                "Outer": {
                    "type": "Choice",
                    "choices": [{"variable": "done", "equals": True, "next": "Done"}],
                    "default": "Crawl",
                },
                "Crawl": {"type": "Task", "resource": "crawler", "next": "Pause"},
                "Pause": {"type": "Wait", "seconds": 5, "next": "Poll"},
                "Poll": {"type": "Task", "resource": "check", "next": "Pause"},
                "Done": {"type": "Succeed"},
            },
            start_at="Outer",
        )

        with pytest.raises(CyclicWithoutGuardError, match=r"Cycle through \[Pause, Poll\]"):
            build(document)

    def test_nested_guarded_loops(self) -> None:
        """Test loops are valid when each passes a Wait and a Choice that can leave it."""
        document = workflow(
            {
                "Outer": {
                    "type": "Choice",
                    "choices": [{"variable": "done", "equals": True, "next": "Done"}],
                    "default": "Crawl",
                },
                "Crawl": {"type": "Task", "resource": "crawler", "next": "Poll"},
                "Poll": {"type": "Task", "resource": "check", "next": "Ready"},
                "Ready": {
                    "type": "Choice",
                    "choices": [{"variable": "status", "equals": "READY", "next": "Rest"}],
                    "default": "Pause",
                },
                "Pause": {"type": "Wait", "seconds": 5, "next": "Poll"},
                "Rest": {"type": "Wait", "seconds": 60, "next": "Outer"},
                "Done": {"type": "Succeed"},
            },
            start_at="Outer",
        )

        assert build(document).successors("Ready") == ("Rest", "Pause")

    def test_collects_all_errors(self) -> None:
        """Test the exception carries every problem and is typed after the first one."""
        document = workflow(
            {
                "A": {"type": "Pass", "next": "Missing"},
                "B": {"type": "Choice", "choices": [{"variable": "x", "equals": 1, "next": "A"}]},
            }
        )

        with pytest.raises(WorkflowValidationError) as exc_info:
            build(document)

        assert type(exc_info.value) is UnknownStateReferenceError
        assert len(exc_info.value.errors) == 3
        assert any("needs a default" in error for error in exc_info.value.errors)
        assert any("'B' is unreachable" in error for error in exc_info.value.errors)


@pytest.mark.unit
class TestWorkflowGraph:
    """Tests for the read-only graph API."""

    def test_graph_is_immutable(self, linear_document: dict[str, Any]) -> None:
        """Test attributes cannot be reassigned and states cannot be replaced."""
        graph = build(linear_document)

        with pytest.raises(AttributeError):
            graph.definition = None  # type: ignore[misc]
        with pytest.raises(TypeError):
            graph.states["Crawl"] = graph.states["Done"]  # type: ignore[index]

    def test_get_unknown_state(self, linear_document: dict[str, Any]) -> None:
        """Test get_state raises KeyError for unknown ids."""
        with pytest.raises(KeyError):
            build(linear_document).get_state("Nope")

    def test_to_dict(self, linear_document: dict[str, Any]) -> None:
        """Test the summary lists states with their targets."""
        summary = build(linear_document).to_dict()

        assert summary["name"] == "ingest"
        assert summary["states"]["Crawl"] == {"type": "Task", "transitions": ["Done"], "terminal": False}
        assert summary["states"]["Done"]["terminal"] is True

    def test_to_mermaid(self, polling_document: dict[str, Any]) -> None:
        """Test the mermaid source contains nodes and labelled edges."""
        source = build(polling_document).to_mermaid()

        assert source.startswith("graph TD")
        assert "Start[START: Start]" in source
        assert "Check{Check}" in source
        assert "Done((END: Done))" in source
        assert "Start --> Check" in source
        assert "Check -->|status equals READY| Done" in source
        assert "Check -->|default| Wait30" in source

    def test_to_mermaid_with_state(self, polling_document: dict[str, Any]) -> None:
        """Test execution styling is appended for each state category."""
        source = build(polling_document).to_mermaid_with_state(
            current_state="Wait30",
            completed_states=["Start"],
            failed_states=["Check"],
        )

        assert "style Start fill:#90EE90" in source
        assert "style Check fill:#FFB6C1" in source
        assert "style Wait30 fill:#FFD700" in source
