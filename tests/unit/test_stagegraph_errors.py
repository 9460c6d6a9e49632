# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for the error hierarchy."""

import pytest

from stagegraph.core.errors import (
    CheckpointError,
    ConfigurationError,
    ErrorCategory,
    ErrorSeverity,
    GraphStructureError,
    LoopDetectedError,
    NodeExecutionError,
    RouteNotFoundError,
    SchemaError,
    StageGraphError,
)


class TestStageGraphError:
    """Tests for the base error."""

    def test_defaults(self):
        error = StageGraphError("something broke")

        assert error.category == ErrorCategory.UNKNOWN
        assert error.severity == ErrorSeverity.ERROR
        assert len(error.correlation_id) == 8
        assert error.details == {}

    def test_str_includes_correlation_id_and_hint(self):
        error = StageGraphError("bad", correlation_id="abc12345", recovery_hint="try again")

        assert str(error) == "[abc12345] bad\nRecovery hint: try again"

    def test_to_dict(self):
        cause = ValueError("root")
        error = StageGraphError("wrapped", details={"k": 1}, cause=cause)

        data = error.to_dict()

        assert data["error"] == "wrapped"
        assert data["category"] == "unknown"
        assert data["details"] == {"k": 1}
        assert "timestamp" in data
        assert error.cause is cause


class TestSpecificErrors:
    """Tests for category assignment and structured details."""

    @pytest.mark.parametrize(
        "error, category",
        [
            (GraphStructureError("x"), ErrorCategory.GRAPH_STRUCTURE),
            (RouteNotFoundError("x"), ErrorCategory.ROUTE_NOT_FOUND),
            (LoopDetectedError("x", source="a", target="b"), ErrorCategory.LOOP_DETECTED),
            (NodeExecutionError("x", node="n"), ErrorCategory.NODE_EXECUTION),
            (SchemaError("x"), ErrorCategory.SCHEMA_INVALID),
            (CheckpointError("x"), ErrorCategory.CHECKPOINT),
            (ConfigurationError("x"), ErrorCategory.CONFIG_INVALID),
        ],
    )
    def test_category(self, error, category):
        assert error.category == category
        assert isinstance(error, StageGraphError)

    def test_route_not_found_details(self):
        error = RouteNotFoundError("no route", source="classify", target="ghost")

        assert error.details == {"source": "classify", "target": "ghost"}
        assert error.recovery_hint

    def test_loop_detected_is_warning(self):
        error = LoopDetectedError("loop", source="a", target="b")

        assert error.severity == ErrorSeverity.WARNING
        assert (error.source, error.target) == ("a", "b")

    def test_graph_structure_problems(self):
        error = GraphStructureError("invalid", problems=["No edge from START"])

        assert error.details["problems"] == ["No edge from START"]

    def test_checkpoint_ids(self):
        error = CheckpointError("io", session_id="s", checkpoint_id="c")

        assert error.details == {"session_id": "s", "checkpoint_id": "c"}
