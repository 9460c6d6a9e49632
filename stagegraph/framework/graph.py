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

"""StateGraph - graph definition for staged LLM pipelines.

A StateGraph is an append-only registry of named nodes (state -> state
functions) and edges between them. Edges are either direct (fixed target)
or conditional (a resolver picks the target from the current state).

Definitions are assembled incrementally, often across several modules
during startup wiring, so nothing is validated eagerly: duplicate names,
dangling targets and missing routes surface when the graph runs (or on an
explicit ``validate()`` call). There is no way to remove a node or edge.

Example:
    from stagegraph.framework.graph import StateGraph, START, END

    graph = StateGraph()
    graph.add_node("init", init_node)
    graph.add_node("classify", classify_node)
    graph.add_node("summarize", summarize_node)

    graph.add_edge(START, "init")
    graph.add_edge("init", "classify")
    graph.add_conditional_edge(
        "classify",
        lambda state: "summarize" if state.get("needs_summary") else END,
    )
    graph.add_edge("summarize", END)

    executor = graph.compile()
    final_state = await executor.execute({"email": raw_email})
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

from stagegraph.framework.state import State, StateSchema

if TYPE_CHECKING:
    from stagegraph.framework.executor import ExecutorConfig, GraphExecutor

logger = logging.getLogger(__name__)

# Reserved node names, never executed
START = "__start__"
END = "__end__"

NodeHandler = Callable[[State], Union[State, Awaitable[State]]]
TransitionHandler = Callable[[State, State, str], Union[State, Awaitable[State]]]


class EdgeType(Enum):
    """Types of edges in the graph."""

    DIRECT = "direct"
    CONDITIONAL = "conditional"


@runtime_checkable
class EdgeResolver(Protocol):
    """Picks the next node for a conditional edge.

    ``resolve`` returns a registered node name, END, or None when the edge
    does not apply (the next edge from the same source is then tried).
    """

    def resolve(self, state: State) -> Optional[str]: ...


class FunctionResolver:
    """Adapts a plain ``state -> name`` callable to ``EdgeResolver``."""

    def __init__(self, func: Callable[[State], Any]):
        self.func = func
        self.name = getattr(func, "__name__", repr(func))

    def resolve(self, state: State) -> Any:
        return self.func(state)

    def __repr__(self) -> str:
        return f"FunctionResolver({self.name})"


class BranchResolver:
    """Maps the label returned by a condition to a target node.

    Labels missing from ``branches`` resolve to None.
    """

    def __init__(self, condition: Union[EdgeResolver, Callable[[State], Any]], branches: Mapping[str, str]):
        self.condition = as_resolver(condition)
        self.branches = dict(branches)

    def resolve(self, state: State) -> Any:
        label = self.condition.resolve(state)
        if inspect.isawaitable(label):
            return self._resolve_async(label)
        return self.branches.get(label) if label is not None else None

    async def _resolve_async(self, pending: Awaitable[Any]) -> Optional[str]:
        label = await pending
        return self.branches.get(label) if label is not None else None

    def __repr__(self) -> str:
        return f"BranchResolver({self.condition!r}, branches={self.branches})"


def as_resolver(resolver: Union[EdgeResolver, Callable[[State], Any]]) -> EdgeResolver:
    """Return ``resolver`` unchanged if it has ``resolve``, else wrap it."""
    if isinstance(resolver, EdgeResolver):
        return resolver
    if callable(resolver):
        return FunctionResolver(resolver)
    raise TypeError(f"Conditional edge resolver must be callable, got {type(resolver).__name__}")


@dataclass
class Node:
    """A named unit of work.

    Attributes:
        name: Unique node name
        handler: Sync or async ``state -> state`` function
        metadata: Additional node metadata
    """

    name: str
    handler: NodeHandler
    metadata: Dict[str, Any] = field(default_factory=dict)

    async def execute(self, state: State) -> Any:
        """Run the handler, awaiting it if it is a coroutine."""
        result = self.handler(state)
        if inspect.isawaitable(result):
            return await result
        return result


@dataclass
class Edge:
    """A directed transition out of ``source``.

    Attributes:
        source: Source node name (or START)
        edge_type: Direct or conditional
        target: Fixed target for direct edges
        resolver: Resolver for conditional edges
    """

    source: str
    edge_type: EdgeType = EdgeType.DIRECT
    target: Optional[str] = None
    resolver: Optional[EdgeResolver] = None

    @property
    def is_conditional(self) -> bool:
        return self.edge_type == EdgeType.CONDITIONAL

    async def get_target(self, state: State) -> Optional[str]:
        """Resolve this edge against the current state.

        Returns:
            Target node name, or None if the edge does not apply
        """
        if self.edge_type == EdgeType.DIRECT:
            return self.target
        if self.resolver is None:
            return None
        target = self.resolver.resolve(state)
        if inspect.isawaitable(target):
            target = await target
        return target


class StateGraph:
    """Builder for stage pipelines.

    Example:
        graph = StateGraph(schema=base_workflow_schema())
        graph.add_node("supervisor", supervisor_node)
        graph.add_node("meeting_analysis", meeting_node)
        graph.set_entry_point("supervisor")
        graph.add_conditional_edge("supervisor", TeamRouter({"meeting": "meeting_analysis"}))
        graph.set_finish_point("meeting_analysis")

        executor = graph.compile()
        result = await executor.invoke({"input": {"transcript": text}})
    """

    def __init__(self, schema: Optional[StateSchema] = None, name: str = "graph"):
        """Initialize StateGraph.

        Args:
            schema: Optional state schema used to seed defaults at run start
            name: Graph name used in logs and events
        """
        self.name = name
        self.schema = schema
        self._nodes: Dict[str, Node] = {}
        self._edges: Dict[str, List[Edge]] = {}
        self._transition_handlers: List[TransitionHandler] = []
        self._duplicate_nodes: List[str] = []

    @property
    def nodes(self) -> Dict[str, Node]:
        return dict(self._nodes)

    @property
    def edges(self) -> Dict[str, List[Edge]]:
        return {source: list(edges) for source, edges in self._edges.items()}

    @property
    def transition_handlers(self) -> List[TransitionHandler]:
        return list(self._transition_handlers)

    def add_node(self, name: str, handler: NodeHandler, **metadata: Any) -> "StateGraph":
        """Add a node to the graph.

        A duplicate name keeps the first registration and is reported by
        ``validate()``.

        Args:
            name: Unique node name
            handler: Node function
            **metadata: Additional metadata

        Returns:
            Self for chaining
        """
        if name in self._nodes or name in (START, END):
            logger.warning(f"Ignoring duplicate or reserved node name: {name}")
            self._duplicate_nodes.append(name)
            return self

        self._nodes[name] = Node(name=name, handler=handler, metadata=metadata)
        logger.debug(f"Added node: {name}")
        return self

    def add_edge(self, source: str, target: str) -> "StateGraph":
        """Add a direct edge.

        Args:
            source: Source node name (or START)
            target: Target node name (or END)

        Returns:
            Self for chaining
        """
        edge = Edge(source=source, edge_type=EdgeType.DIRECT, target=target)
        self._edges.setdefault(source, []).append(edge)
        logger.debug(f"Added edge: {source} -> {target}")
        return self

    def add_conditional_edge(
        self,
        source: str,
        resolver: Union[EdgeResolver, Callable[[State], Any]],
        branches: Optional[Mapping[str, str]] = None,
    ) -> "StateGraph":
        """Add a conditional edge.

        Args:
            source: Source node name
            resolver: ``EdgeResolver`` or callable returning a node name, END or None
            branches: Optional mapping from resolver labels to node names

        Returns:
            Self for chaining
        """
        edge_resolver = BranchResolver(resolver, branches) if branches else as_resolver(resolver)
        edge = Edge(source=source, edge_type=EdgeType.CONDITIONAL, resolver=edge_resolver)
        self._edges.setdefault(source, []).append(edge)
        logger.debug(f"Added conditional edge: {source} -> {edge_resolver!r}")
        return self

    def set_entry_point(self, name: str) -> "StateGraph":
        """Add the START edge."""
        return self.add_edge(START, name)

    def set_finish_point(self, name: str) -> "StateGraph":
        """Add an edge from ``name`` to END."""
        return self.add_edge(name, END)

    def add_transition_handler(self, handler: TransitionHandler) -> "StateGraph":
        """Register a ``(previous, new, node_name) -> state`` post-node hook.

        Handlers run in registration order after every successful node and
        inside the same failure boundary as the node itself.
        """
        self._transition_handlers.append(handler)
        return self

    def validate(self) -> List[str]:
        """Report structural problems without raising.

        Returns:
            List of problem descriptions (empty when the graph looks sound)
        """
        problems: List[str] = []

        for name in self._duplicate_nodes:
            problems.append(f"Node '{name}' registered more than once or uses a reserved name")

        if not self._nodes:
            problems.append("Graph has no nodes")

        start_edges = self._edges.get(START, [])
        if not start_edges:
            problems.append("No edge from START")
        elif len(start_edges) > 1:
            problems.append(f"START has {len(start_edges)} outgoing edges, expected exactly one")

        if self._edges.get(END):
            problems.append("END must not have outgoing edges")

        for source, edges in self._edges.items():
            if source not in (START, END) and source not in self._nodes:
                problems.append(f"Edge source '{source}' not found")
            direct = [e for e in edges if not e.is_conditional]
            if len(direct) > 1:
                problems.append(f"Node '{source}' has {len(direct)} direct edges")
            for edge in direct:
                if edge.target != END and edge.target not in self._nodes:
                    problems.append(f"Edge target '{edge.target}' not found (from '{source}')")

        for name in self._nodes:
            if not self._edges.get(name):
                problems.append(f"Node '{name}' has no outgoing edge")

        reachable = self._find_reachable()
        for name in self._nodes:
            if name not in reachable:
                problems.append(f"Node '{name}' is unreachable by direct edges")

        return problems

    def _find_reachable(self) -> set[str]:
        """Nodes reachable from START through direct edges.

        Conditional targets are unknown until run time, so the source of a
        conditional edge marks every node as potentially reachable.
        """
        reachable: set[str] = set()
        to_visit = [START]
        while to_visit:
            name = to_visit.pop()
            if name in reachable or name == END:
                continue
            reachable.add(name)
            for edge in self._edges.get(name, []):
                if edge.is_conditional:
                    return set(self._nodes)
                if edge.target:
                    to_visit.append(edge.target)
        reachable.discard(START)
        return reachable

    def compile(self, config: Optional["ExecutorConfig"] = None) -> "GraphExecutor":
        """Freeze the current definition into an executor.

        Later additions to this builder do not affect the returned executor.
        Problems found by ``validate()`` are logged, not raised.
        """
        from stagegraph.framework.executor import GraphExecutor

        for problem in self.validate():
            logger.warning(f"Graph '{self.name}': {problem}")

        return GraphExecutor(
            nodes=dict(self._nodes),
            edges={source: list(edges) for source, edges in self._edges.items()},
            schema=self.schema,
            transition_handlers=list(self._transition_handlers),
            config=config,
            name=self.name,
        )

    def get_graph_schema(self) -> Dict[str, Any]:
        """Describe the graph structure as a plain dictionary."""
        return {
            "name": self.name,
            "nodes": list(self._nodes),
            "edges": {
                source: [
                    {
                        "type": e.edge_type.value,
                        "target": e.target if not e.is_conditional else repr(e.resolver),
                    }
                    for e in edges
                ]
                for source, edges in self._edges.items()
            },
        }


__all__ = [
    "START",
    "END",
    "NodeHandler",
    "TransitionHandler",
    "EdgeType",
    "EdgeResolver",
    "FunctionResolver",
    "BranchResolver",
    "as_resolver",
    "Node",
    "Edge",
    "StateGraph",
]
