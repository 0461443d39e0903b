"""Tests for run context helpers."""

from __future__ import annotations

import pytest

from litestar_pipelines.core.context import MISSING, get_path, merge_output, resolve_parameters, set_path, snapshot


@pytest.mark.unit
class TestPaths:
    """Tests for get_path and set_path."""

    def test_get_nested(self) -> None:
        """Test dotted and "$."-prefixed lookups."""
        data = {"job": {"status": "READY", "files": ["a", "b"]}}

        assert get_path(data, "job.status") == "READY"
        assert get_path(data, "$.job.status") == "READY"
        assert get_path(data, "job.files.1") == "b"

    def test_get_missing(self) -> None:
        """Test missing paths return the default or MISSING."""
        assert get_path({}, "job.status") is MISSING
        assert get_path({"job": None}, "job.status", default="n/a") == "n/a"
        assert get_path({"files": ["a"]}, "files.3") is MISSING
        assert not MISSING

    def test_set_creates_intermediate_dicts(self) -> None:
        """Test set_path builds the nested structure it needs."""
        data: dict = {"job": "replaced"}

        set_path(data, "$.job.output.rows", 10)

        assert data == {"job": {"output": {"rows": 10}}}


@pytest.mark.unit
class TestParameters:
    """Tests for resolve_parameters."""

    def test_resolves_references_recursively(self) -> None:
        """Test references inside nested mappings and lists are resolved."""
        context = {"bucket": "raw", "prefixes": ["a/", "b/"]}
        parameters = {
            "source": {"bucket": "$.bucket", "prefixes": "$.prefixes"},
            "targets": ["$.bucket", "static"],
            "limit": 5,
        }

        resolved = resolve_parameters(parameters, context)

        assert resolved == {
            "source": {"bucket": "raw", "prefixes": ["a/", "b/"]},
            "targets": ["raw", "static"],
            "limit": 5,
        }

    def test_resolved_values_are_copies(self) -> None:
        """Test jobs cannot mutate the context through their parameters."""
        context = {"prefixes": ["a/"]}

        resolve_parameters({"p": "$.prefixes"}, context)["p"].append("b/")

        assert context == {"prefixes": ["a/"]}


@pytest.mark.unit
class TestMergeOutput:
    """Tests for merge_output and snapshot."""

    def test_mapping_is_merged(self) -> None:
        """Test mapping output updates top-level keys."""
        context = {"bucket": "raw", "rows": 1}

        merge_output(context, {"rows": 5}, None)

        assert context == {"bucket": "raw", "rows": 5}

    def test_scalar_goes_under_result(self) -> None:
        """Test non-mapping output is stored under "result"."""
        context: dict = {}

        merge_output(context, [1, 2], None)

        assert context == {"result": [1, 2]}

    def test_none_is_ignored(self) -> None:
        """Test a job returning None leaves the context unchanged."""
        context = {"a": 1}

        merge_output(context, None, None)

        assert context == {"a": 1}

    def test_result_path(self) -> None:
        """Test result_path stores the output as-is."""
        context: dict = {}

        merge_output(context, None, "crawl.result")

        assert context == {"crawl": {"result": None}}

    def test_snapshot_is_deep(self) -> None:
        """Test snapshots share no nested objects with the source."""
        context = {"job": {"files": ["a"]}}

        copy = snapshot(context)
        copy["job"]["files"].append("b")

        assert context == {"job": {"files": ["a"]}}
