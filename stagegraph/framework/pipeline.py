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

"""Pipeline assembly and checkpointed execution.

``PipelineBuilder`` is the base class for concrete pipelines (meeting
analysis, email triage, ...): subclasses list their nodes and wire their
edges, and the base class turns that into a ``StateGraph``.

``PipelineDriver`` runs a compiled pipeline for a session and owns the
checkpoint policy:

    <name>_start    initial state, before execution
    <name>_<node>   after each node (streaming only)
    final           final state
    <name>_error    state with ``stage="workflow_failed"`` if execution raised
"""

from __future__ import annotations

import abc
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from stagegraph.core.errors import CheckpointError
from stagegraph.framework.checkpointer import CheckpointStore
from stagegraph.framework.executor import (
    ExecutorConfig,
    GraphExecutionResult,
    GraphExecutor,
    GraphStep,
    NodeError,
)
from stagegraph.framework.graph import NodeHandler, StateGraph, TransitionHandler
from stagegraph.framework.progress import ProgressTracker
from stagegraph.framework.state import State, StateSchema

logger = logging.getLogger(__name__)

FINAL_CHECKPOINT = "final"
FAILED_STAGE = "workflow_failed"


class PipelineBuilder(abc.ABC):
    """Abstract base for building pipeline graphs.

    Example:
        class EmailTriagePipeline(PipelineBuilder):
            name = "email_triage"

            def build_nodes(self):
                return {"classify": self.classify, "draft_reply": self.draft_reply}

            def define_edges(self, graph):
                graph.set_entry_point("classify")
                graph.add_edge("classify", "draft_reply")
                graph.set_finish_point("draft_reply")
    """

    name: str = "pipeline"

    @abc.abstractmethod
    def build_nodes(self) -> Dict[str, NodeHandler]:
        """Return node names mapped to handlers."""

    @abc.abstractmethod
    def define_edges(self, graph: StateGraph) -> None:
        """Wire edges between the nodes from ``build_nodes``."""

    def schema(self) -> Optional[StateSchema]:
        return None

    def transition_handlers(self) -> List[TransitionHandler]:
        return []

    def build(self) -> StateGraph:
        """Build the graph: nodes first, then edges, then transition handlers."""
        logger.info(f"Building pipeline graph: {self.name}")
        graph = StateGraph(schema=self.schema(), name=self.name)

        for node_name, handler in self.build_nodes().items():
            logger.debug(f"Adding node {node_name} to {self.name}")
            graph.add_node(node_name, handler)

        self.define_edges(graph)

        for handler in self.transition_handlers():
            graph.add_transition_handler(handler)

        return graph

    def compile(self, config: Optional[ExecutorConfig] = None) -> GraphExecutor:
        return self.build().compile(config)


class PipelineDriver:
    """Runs a compiled pipeline with checkpointing.

    Args:
        executor: Compiled pipeline
        store: Checkpoint store used for all sessions
        name: Prefix for checkpoint ids
        schema: Schema for merging resume updates (defaults to the executor's)
        tracker: Optional progress tracker notified on completion or failure
    """

    def __init__(
        self,
        executor: GraphExecutor,
        store: CheckpointStore,
        name: Optional[str] = None,
        schema: Optional[StateSchema] = None,
        tracker: Optional[ProgressTracker] = None,
    ):
        self.executor = executor
        self.store = store
        self.name = name or executor.name
        self.schema = schema or executor.schema
        self.tracker = tracker

    def _initial(self, session_id: str, initial_state: Optional[Mapping[str, Any]]) -> State:
        state = dict(initial_state or {})
        state.setdefault("session_id", session_id)
        metadata = dict(state.get("metadata") or {})
        metadata.setdefault("workflow_type", self.name)
        metadata.setdefault("start_time", datetime.now(timezone.utc).isoformat())
        state["metadata"] = metadata
        return state

    def _failed_state(self, state: State, error: Exception) -> State:
        return {**state, "error": str(error) or type(error).__name__, "stage": FAILED_STAGE}

    async def run(self, session_id: str, initial_state: Optional[Mapping[str, Any]] = None) -> State:
        """Execute the pipeline for a session.

        Returns:
            Final state, or the failure state if execution raised
        """
        state = self._initial(session_id, initial_state)
        await self.store.save(session_id, f"{self.name}_start", state)
        if self.tracker:
            await self.tracker.start(session_id)

        try:
            result = await self.executor.invoke(state)
        except Exception as e:
            logger.error(f"Pipeline {self.name} failed for session {session_id}: {e}", exc_info=True)
            return await self._record_failure(session_id, state, e)

        await self._finish(session_id, result)
        return result.state

    async def stream(
        self, session_id: str, initial_state: Optional[Mapping[str, Any]] = None
    ) -> AsyncIterator[GraphStep]:
        """Execute the pipeline, checkpointing and yielding after each node.

        If execution raises, the failure state is checkpointed and yielded as
        a last failed step named after the pipeline.
        """
        state = self._initial(session_id, initial_state)
        await self.store.save(session_id, f"{self.name}_start", state)
        if self.tracker:
            await self.tracker.start(session_id)

        steps = self.executor.stream(state)
        try:
            async for step in steps:
                await self.store.save(session_id, f"{self.name}_{step.node}", step.state)
                yield step
        except Exception as e:
            logger.error(f"Pipeline {self.name} stream failed for session {session_id}: {e}", exc_info=True)
            failed = await self._record_failure(session_id, state, e)
            yield GraphStep(
                node=self.name,
                state=failed,
                error=NodeError(
                    step=self.name,
                    error=failed["error"],
                    timestamp=datetime.now(timezone.utc).isoformat(),
                    exception_type=type(e).__name__,
                ),
            )
            return

        await self._finish(session_id, steps.result)

    async def resume(
        self,
        session_id: str,
        checkpoint_id: str,
        update: Optional[Mapping[str, Any]] = None,
    ) -> State:
        """Re-run the pipeline from a saved checkpoint.

        ``update`` is merged into the checkpoint through the schema reducers
        (plain key replacement without a schema).

        Raises:
            CheckpointError: If the checkpoint does not exist
        """
        saved = await self.store.load(session_id, checkpoint_id)
        if saved is None:
            raise CheckpointError(
                f"Checkpoint not found: {checkpoint_id}",
                session_id=session_id,
                checkpoint_id=checkpoint_id,
            )

        if update:
            if self.schema is not None:
                saved = self.schema.merge(saved, update)
            else:
                saved = {**saved, **update}

        logger.info(f"Resuming pipeline {self.name} for session {session_id} from {checkpoint_id}")
        return await self.run(session_id, saved)

    async def _finish(self, session_id: str, result: GraphExecutionResult) -> None:
        await self.store.save(
            session_id,
            FINAL_CHECKPOINT,
            result.state,
            metadata={"status": result.status.value, "steps": result.steps},
        )
        if self.tracker:
            if result.aborted:
                await self.tracker.fail(session_id, result.abort_reason.message)
            else:
                await self.tracker.complete(session_id)

        logger.info(f"Pipeline {self.name} finished for session {session_id}: {result.status.value}")

    async def _record_failure(self, session_id: str, state: State, error: Exception) -> State:
        failed = self._failed_state(state, error)
        await self.store.save(session_id, f"{self.name}_error", failed)
        if self.tracker:
            await self.tracker.fail(session_id, failed["error"])
        return failed


__all__ = [
    "FINAL_CHECKPOINT",
    "FAILED_STAGE",
    "PipelineBuilder",
    "PipelineDriver",
]
