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

"""stagegraph framework - staged LLM pipelines as state graphs.

Core concepts:

1. **StateGraph** - nodes (state -> state functions) joined by direct or
   conditional edges between START and END
2. **StateSchema** - declared state fields with per-field reducers
3. **GraphExecutor** - sequential runner with loop detection and fail-soft
   node failures
4. **CheckpointStore** - snapshots keyed by (session_id, checkpoint_id)
5. **Supervisor** - routing node plus TeamRouter edge dispatching to teams

Quick Start:
    from stagegraph.framework import StateGraph, END

    graph = StateGraph()
    graph.add_node("init", lambda s: {**s, "stage": "initialized"})
    graph.add_node("transform", lambda s: {**s, "x": s["x"] * 2})
    graph.set_entry_point("init")
    graph.add_edge("init", "transform")
    graph.add_edge("transform", END)

    state = await graph.compile().execute({"x": 2})
"""

from stagegraph.framework.checkpoint import CheckpointBackend
from stagegraph.framework.checkpointer import (
    Checkpoint,
    CheckpointStore,
    JSONFileCheckpointStore,
    MemoryCheckpointStore,
    SQLiteCheckpointStore,
    create_checkpoint_store,
)
from stagegraph.framework.executor import (
    ExecutionStatus,
    ExecutionStream,
    ExecutorConfig,
    GraphExecutionResult,
    GraphExecutor,
    GraphStep,
    LoopDetection,
    NodeError,
)
from stagegraph.framework.graph import (
    END,
    START,
    BranchResolver,
    Edge,
    EdgeResolver,
    EdgeType,
    FunctionResolver,
    Node,
    StateGraph,
)
from stagegraph.framework.pipeline import PipelineBuilder, PipelineDriver
from stagegraph.framework.progress import ProgressEvent, ProgressStatus, ProgressTracker
from stagegraph.framework.state import (
    Reducer,
    State,
    StateField,
    StateSchema,
    base_workflow_schema,
)
from stagegraph.framework.supervisor import (
    RoutingDecision,
    TeamRegistry,
    TeamRouter,
    TeamSpec,
    add_supervisor,
)

__all__ = [
    # Graph
    "START",
    "END",
    "StateGraph",
    "Node",
    "Edge",
    "EdgeType",
    "EdgeResolver",
    "FunctionResolver",
    "BranchResolver",
    # State
    "State",
    "StateField",
    "StateSchema",
    "Reducer",
    "base_workflow_schema",
    # Execution
    "GraphExecutor",
    "ExecutorConfig",
    "LoopDetection",
    "ExecutionStatus",
    "GraphExecutionResult",
    "GraphStep",
    "ExecutionStream",
    "NodeError",
    # Checkpoints
    "Checkpoint",
    "CheckpointBackend",
    "CheckpointStore",
    "MemoryCheckpointStore",
    "SQLiteCheckpointStore",
    "JSONFileCheckpointStore",
    "create_checkpoint_store",
    # Supervisor
    "RoutingDecision",
    "TeamRouter",
    "TeamRegistry",
    "TeamSpec",
    "add_supervisor",
    # Progress
    "ProgressTracker",
    "ProgressEvent",
    "ProgressStatus",
    # Pipelines
    "PipelineBuilder",
    "PipelineDriver",
]
