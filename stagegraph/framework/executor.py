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

"""Graph executor.

Walks a compiled graph from START to END one node at a time:

1. Resolve the outgoing edges of the current node in registration order.
   The first edge yielding a target wins; a conditional edge returning
   None defers to the next edge.
2. Abort if nothing resolves, if the target is not a registered node (or
   END), or if the loop guard has already seen the step.
3. Run the target node inside the failure boundary. A raising handler
   leaves the previous state untouched apart from one appended entry in
   ``errors``; execution then continues along that node's normal edges.

Aborts never raise. ``execute`` returns the state accumulated so far and
``invoke`` additionally reports why the run stopped.
"""

from __future__ import annotations

import copy
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Dict,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
)

from stagegraph.core.errors import (
    LoopDetectedError,
    NodeExecutionError,
    RouteNotFoundError,
    StageGraphError,
)
from stagegraph.framework.graph import END, START, Edge, Node, TransitionHandler
from stagegraph.framework.state import State, StateSchema

if TYPE_CHECKING:
    from stagegraph.config.settings import GraphSettings

logger = logging.getLogger(__name__)


class LoopDetection(str, Enum):
    """Loop detection strategies.

    TRANSITION aborts when the same ``(from, to)`` pair is taken twice, so a
    node may be re-entered through a different edge (supervisor rework
    loops). NODE aborts on any second visit to a node.
    """

    TRANSITION = "transition"
    NODE = "node"


class ExecutionStatus(Enum):
    """Terminal status of a run."""

    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class ExecutorConfig:
    """Per-graph execution options.

    Attributes:
        loop_detection: Loop guard strategy
        isolate_node_state: Hand each node a deep copy of state instead of
            the live one. Failed nodes are rolled back either way.
    """

    loop_detection: LoopDetection = LoopDetection.TRANSITION
    isolate_node_state: bool = True

    @classmethod
    def from_settings(cls, settings: "GraphSettings") -> "ExecutorConfig":
        return cls(
            loop_detection=LoopDetection(settings.loop_detection),
            isolate_node_state=settings.isolate_node_state,
        )


@dataclass
class NodeError:
    """A recoverable node failure.

    Attributes:
        step: Name of the node that failed
        error: Error message
        timestamp: ISO-8601 UTC time of the failure
        exception_type: Class name of the raised exception
    """

    step: str
    error: str
    timestamp: str
    exception_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Record stored in ``state["errors"]``."""
        return {"step": self.step, "error": self.error, "timestamp": self.timestamp}


@dataclass
class GraphStep:
    """State after a single node ran.

    ``error`` is set when the node failed; ``state`` is then the state from
    before the node with the failure record appended.
    """

    node: str
    state: State
    error: Optional[NodeError] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class GraphExecutionResult:
    """Result from graph execution.

    Attributes:
        state: Final state
        status: COMPLETED when END was reached, ABORTED otherwise
        abort_reason: Structural error that stopped the run
        node_history: Nodes executed, in order, failed ones included
        errors: Node failures recorded during this run
        steps: Number of node executions
        duration: Wall time in seconds
    """

    state: State
    status: ExecutionStatus = ExecutionStatus.COMPLETED
    abort_reason: Optional[StageGraphError] = None
    node_history: List[str] = field(default_factory=list)
    errors: List[NodeError] = field(default_factory=list)
    steps: int = 0
    duration: float = 0.0

    @property
    def completed(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def aborted(self) -> bool:
        return self.status == ExecutionStatus.ABORTED


class LoopGuard:
    """Remembers what a run has already done to stop cycles."""

    def __init__(self, strategy: LoopDetection):
        self.strategy = strategy
        self._transitions: Set[Tuple[str, str]] = set()
        self._visited: Set[str] = set()

    def check(self, source: str, target: str) -> Optional[LoopDetectedError]:
        """Record a step; return an error if it repeats."""
        if self.strategy == LoopDetection.NODE:
            if target != END and target in self._visited:
                return LoopDetectedError(
                    f"Node '{target}' already visited (from '{source}')",
                    source=source,
                    target=target,
                )
            self._visited.add(target)
            return None

        if (source, target) in self._transitions:
            return LoopDetectedError(
                f"Transition {source} -> {target} already taken",
                source=source,
                target=target,
            )
        self._transitions.add((source, target))
        return None


class NodeRunner:
    """Runs a node plus transition handlers inside the failure boundary."""

    def __init__(self, handlers: List[TransitionHandler], isolate: bool):
        self.handlers = handlers
        self.isolate = isolate

    async def run(self, node: Node, state: State) -> Tuple[State, Optional[NodeError]]:
        """Execute a node.

        Returns:
            Tuple of (new_state, error). On failure ``new_state`` is the
            input state with the failure appended to ``errors``.
        """
        # Without isolation the node mutates ``state`` itself, so failures
        # recover from a snapshot taken first.
        if self.isolate:
            node_input = copy.deepcopy(state)
        else:
            node_input = state
            state = copy.deepcopy(state)
        try:
            result = await node.execute(node_input)
            if not isinstance(result, Mapping):
                raise NodeExecutionError(
                    f"Node returned {type(result).__name__}, expected a mapping",
                    node=node.name,
                )
            new_state: State = dict(result)

            for handler in self.handlers:
                previous = copy.deepcopy(state)
                handled = handler(previous, new_state, node.name)
                if inspect.isawaitable(handled):
                    handled = await handled
                if not isinstance(handled, Mapping):
                    raise NodeExecutionError(
                        f"Transition handler returned {type(handled).__name__}, expected a mapping",
                        node=node.name,
                    )
                new_state = dict(handled)

            return new_state, None

        except Exception as e:
            message = e.message if isinstance(e, NodeExecutionError) else str(e)
            error = NodeError(
                step=node.name,
                error=message or type(e).__name__,
                timestamp=datetime.now(timezone.utc).isoformat(),
                exception_type=type(e).__name__,
            )
            logger.warning(f"Node '{node.name}' failed, keeping previous state: {error.error}")
            recovered = dict(state)
            recovered["errors"] = list(state.get("errors") or []) + [error.to_dict()]
            return recovered, error


class _Run:
    """Bookkeeping for one execution."""

    def __init__(self) -> None:
        self.node_history: List[str] = []
        self.errors: List[NodeError] = []
        self.abort_reason: Optional[StageGraphError] = None
        self.state: State = {}
        self.started = time.time()

    def result(self) -> GraphExecutionResult:
        return GraphExecutionResult(
            state=self.state,
            status=ExecutionStatus.ABORTED if self.abort_reason else ExecutionStatus.COMPLETED,
            abort_reason=self.abort_reason,
            node_history=list(self.node_history),
            errors=list(self.errors),
            steps=len(self.node_history),
            duration=time.time() - self.started,
        )


class GraphExecutor:
    """Executes a frozen graph definition.

    Created by ``StateGraph.compile()``. Holds no per-run state, so one
    executor can serve any number of sequential or concurrent runs.
    """

    def __init__(
        self,
        nodes: Dict[str, Node],
        edges: Dict[str, List[Edge]],
        schema: Optional[StateSchema] = None,
        transition_handlers: Optional[List[TransitionHandler]] = None,
        config: Optional[ExecutorConfig] = None,
        name: str = "graph",
    ):
        self._nodes = nodes
        self._edges = edges
        self._schema = schema
        self._transition_handlers = transition_handlers or []
        self._config = config or ExecutorConfig()
        self.name = name

    @property
    def config(self) -> ExecutorConfig:
        return self._config

    @property
    def schema(self) -> Optional[StateSchema]:
        return self._schema

    @property
    def node_names(self) -> List[str]:
        return list(self._nodes)

    async def execute(self, initial_state: Optional[Mapping[str, Any]] = None) -> State:
        """Run the graph and return the final state."""
        result = await self.invoke(initial_state)
        return result.state

    async def invoke(self, initial_state: Optional[Mapping[str, Any]] = None) -> GraphExecutionResult:
        """Run the graph and return a typed result.

        Args:
            initial_state: Starting state; not modified

        Returns:
            GraphExecutionResult with final state and run diagnostics
        """
        run = _Run()
        async for _ in self._iterate(initial_state, run):
            pass
        result = run.result()
        if result.aborted:
            logger.warning(f"Graph '{self.name}' aborted after {result.steps} steps: {result.abort_reason.message}")
        else:
            logger.debug(
                f"Graph '{self.name}' completed: steps={result.steps}, "
                f"errors={len(result.errors)}, duration={result.duration:.3f}s"
            )
        return result

    def stream(self, initial_state: Optional[Mapping[str, Any]] = None) -> "ExecutionStream":
        """Yield a ``GraphStep`` after every executed node.

        The returned stream's ``result`` is filled in once iteration ends,
        so callers can tell a completed run from an aborted one.
        """
        return ExecutionStream(self, initial_state)

    def _prepare(self, initial_state: Optional[Mapping[str, Any]]) -> State:
        state = copy.deepcopy(dict(initial_state or {}))
        if self._schema is not None:
            state = self._schema.seed(state)
        return state

    async def _iterate(self, initial_state: Optional[Mapping[str, Any]], run: _Run) -> AsyncIterator[GraphStep]:
        guard = LoopGuard(self._config.loop_detection)
        runner = NodeRunner(self._transition_handlers, self._config.isolate_node_state)
        run.state = self._prepare(initial_state)
        current = START

        while current != END:
            target, abort = await self._next_node(current, run.state)
            if abort is None:
                abort = guard.check(current, target)
            if abort is not None:
                run.abort_reason = abort
                return

            if target == END:
                break

            node = self._nodes[target]
            logger.debug(f"Executing node: {target}")
            run.state, error = await runner.run(node, run.state)
            run.node_history.append(target)
            if error is not None:
                run.errors.append(error)
            yield GraphStep(node=target, state=run.state, error=error)
            current = target

    async def _next_node(self, current: str, state: State) -> Tuple[str, Optional[StageGraphError]]:
        """Resolve the next node.

        Returns:
            Tuple of (target, abort_reason)
        """
        for edge in self._edges.get(current, []):
            try:
                target = await edge.get_target(state)
            except Exception as e:
                logger.warning(f"Edge resolver from '{current}' raised: {e}")
                return "", RouteNotFoundError(
                    f"Edge resolver from '{current}' raised: {e}",
                    source=current,
                    cause=e,
                )
            if target is None:
                continue
            if not isinstance(target, str) or (target != END and target not in self._nodes):
                return "", RouteNotFoundError(
                    f"Edge from '{current}' resolved to unknown node '{target}'",
                    source=current,
                    target=str(target),
                )
            return target, None

        return "", RouteNotFoundError(f"No edge resolved from '{current}'", source=current)


class ExecutionStream:
    """Async iterator over the steps of one run.

    ``result`` stays None until the last step has been consumed.
    """

    def __init__(self, executor: GraphExecutor, initial_state: Optional[Mapping[str, Any]]):
        self._executor = executor
        self._run = _Run()
        self._steps = executor._iterate(initial_state, self._run)
        self.result: Optional[GraphExecutionResult] = None

    def __aiter__(self) -> "ExecutionStream":
        return self

    async def __anext__(self) -> GraphStep:
        try:
            return await self._steps.__anext__()
        except StopAsyncIteration:
            if self.result is None:
                self.result = self._run.result()
                if self.result.aborted:
                    logger.warning(
                        f"Graph '{self._executor.name}' stream aborted: {self.result.abort_reason.message}"
                    )
            raise


__all__ = [
    "LoopDetection",
    "ExecutionStatus",
    "ExecutorConfig",
    "NodeError",
    "GraphStep",
    "GraphExecutionResult",
    "LoopGuard",
    "NodeRunner",
    "GraphExecutor",
    "ExecutionStream",
]
