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

"""
stagegraph - a workflow graph engine for multi-step LLM pipelines.

Pipelines (meeting analysis, email triage, calendar preparation) are
directed graphs of async stages with conditional branching, per-field
state reducers, loop detection and checkpoint persistence. A supervisor
node routes each request to the pipeline that should handle it.

Simple API:
    from stagegraph import StateGraph, END

    graph = StateGraph()
    graph.add_node("classify", classify)
    graph.set_entry_point("classify")
    graph.add_edge("classify", END)
    final_state = await graph.compile().execute({"email": raw_email})

Checkpointed runs:
    from stagegraph import PipelineDriver, create_checkpoint_store, load_settings

    settings = load_settings()
    driver = PipelineDriver(executor, create_checkpoint_store(settings), name="email_triage")
    final_state = await driver.run("session-1", {"input": {"email": raw_email}})
"""

__version__ = "0.1.0"
__author__ = "Vijaykumar Singh"
__email__ = "singhvjd@gmail.com"
__license__ = "Apache-2.0"

from stagegraph.framework import (
    END,
    START,
    Checkpoint,
    CheckpointStore,
    ExecutorConfig,
    GraphExecutionResult,
    GraphExecutor,
    JSONFileCheckpointStore,
    LoopDetection,
    MemoryCheckpointStore,
    PipelineBuilder,
    PipelineDriver,
    ProgressTracker,
    Reducer,
    RoutingDecision,
    SQLiteCheckpointStore,
    StateGraph,
    StateSchema,
    TeamRegistry,
    TeamRouter,
    add_supervisor,
    base_workflow_schema,
    create_checkpoint_store,
)
from stagegraph.config import (
    GraphSettings,
    configure_logging,
    configure_logging_from_settings,
    load_settings,
)
from stagegraph.core.errors import StageGraphError

__all__ = [
    "__version__",
    # Graph
    "START",
    "END",
    "StateGraph",
    "StateSchema",
    "Reducer",
    "base_workflow_schema",
    # Execution
    "GraphExecutor",
    "ExecutorConfig",
    "LoopDetection",
    "GraphExecutionResult",
    # Checkpoints
    "Checkpoint",
    "CheckpointStore",
    "MemoryCheckpointStore",
    "SQLiteCheckpointStore",
    "JSONFileCheckpointStore",
    "create_checkpoint_store",
    # Routing and pipelines
    "RoutingDecision",
    "TeamRouter",
    "TeamRegistry",
    "add_supervisor",
    "ProgressTracker",
    "PipelineBuilder",
    "PipelineDriver",
    # Configuration
    "GraphSettings",
    "load_settings",
    "configure_logging",
    "configure_logging_from_settings",
    "StageGraphError",
]
