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

"""Supervisor routing between pipelines.

A supervisor is an ordinary node that writes a routing decision into
``state["routing"]``, followed by a single conditional edge whose resolver
(``TeamRouter``) maps the chosen team to that team's entry node. Unknown or
missing teams route to END, so a bad decision ends the run instead of
aborting it.

Example:
    registry = TeamRegistry()
    registry.register("meeting_analysis", "meeting_init")
    registry.register("email_triage", "email_init")

    add_supervisor(graph, "supervisor", decide_team, registry)
    graph.set_entry_point("supervisor")
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from stagegraph.framework.graph import END, StateGraph
from stagegraph.framework.state import State

logger = logging.getLogger(__name__)


@dataclass
class RoutingDecision:
    """Which team should handle the current input.

    Attributes:
        team: Team name
        reasoning: Short explanation of the decision
        confidence: Optional confidence in [0, 1]
        priority: Optional priority label
    """

    team: str
    reasoning: str = ""
    confidence: Optional[float] = None
    priority: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"team": self.team, "reasoning": self.reasoning}
        if self.confidence is not None:
            data["confidence"] = self.confidence
        if self.priority is not None:
            data["priority"] = self.priority
        return data

    @classmethod
    def from_value(cls, value: Any) -> Optional["RoutingDecision"]:
        """Coerce a decision, a mapping or None into a decision."""
        if value is None:
            return None
        if isinstance(value, RoutingDecision):
            return value
        if isinstance(value, Mapping):
            team = value.get("team")
            if not team:
                return None
            return cls(
                team=str(team),
                reasoning=value.get("reasoning") or value.get("explanation") or "",
                confidence=value.get("confidence"),
                priority=value.get("priority"),
            )
        return None

    @classmethod
    def from_state(cls, state: Mapping[str, Any]) -> Optional["RoutingDecision"]:
        """Read the decision stored under ``routing``, if any."""
        return cls.from_value(state.get("routing"))


class TeamRouter:
    """Conditional-edge resolver for supervisor dispatch.

    Reads ``state["routing"]["team"]`` and returns the registered entry
    node for that team, or ``default`` (END) for unknown or missing teams.
    """

    def __init__(self, teams: Optional[Mapping[str, str]] = None, default: str = END):
        self._teams: Dict[str, str] = dict(teams or {})
        self.default = default

    def register(self, team: str, entry_node: str) -> "TeamRouter":
        self._teams[team] = entry_node
        return self

    @property
    def teams(self) -> Dict[str, str]:
        return dict(self._teams)

    def resolve(self, state: State) -> str:
        decision = RoutingDecision.from_state(state)
        if decision is None:
            logger.debug(f"No routing decision in state, routing to {self.default}")
            return self.default

        target = self._teams.get(decision.team)
        if target is None:
            logger.info(f"No entry node for team '{decision.team}', routing to {self.default}")
            return self.default
        return target

    def __repr__(self) -> str:
        return f"TeamRouter(teams={self._teams}, default={self.default!r})"


@dataclass
class TeamSpec:
    """A registered team.

    Attributes:
        name: Team name used in routing decisions
        entry_node: First node of the team's pipeline
        description: Human-readable description
        can_handle: Optional predicate over the raw input (sync or async)
    """

    name: str
    entry_node: str
    description: str = ""
    can_handle: Optional[Callable[[Any], Union[bool, Awaitable[bool]]]] = field(default=None, repr=False)


class TeamRegistry:
    """Registry of teams and their entry nodes."""

    def __init__(self) -> None:
        self._teams: Dict[str, TeamSpec] = {}

    def register(
        self,
        name: str,
        entry_node: str,
        description: str = "",
        can_handle: Optional[Callable[[Any], Union[bool, Awaitable[bool]]]] = None,
    ) -> TeamSpec:
        """Register a team; re-registering a name overrides it."""
        if name in self._teams:
            logger.warning(f"Overriding existing team '{name}'")
        spec = TeamSpec(name=name, entry_node=entry_node, description=description, can_handle=can_handle)
        self._teams[name] = spec
        logger.debug(f"Registered team '{name}' -> {entry_node}")
        return spec

    def get(self, name: str) -> Optional[TeamSpec]:
        return self._teams.get(name)

    def list_teams(self) -> List[str]:
        return list(self._teams)

    def __contains__(self, name: object) -> bool:
        return name in self._teams

    def __len__(self) -> int:
        return len(self._teams)

    async def find_team_for_input(self, value: Any) -> Optional[TeamSpec]:
        """First team whose ``can_handle`` accepts ``value``, in registration order."""
        for spec in self._teams.values():
            if spec.can_handle is None:
                continue
            accepted = spec.can_handle(value)
            if inspect.isawaitable(accepted):
                accepted = await accepted
            if accepted:
                return spec
        return None

    def router(self, default: str = END) -> TeamRouter:
        """Build a ``TeamRouter`` over the current registrations."""
        return TeamRouter({name: spec.entry_node for name, spec in self._teams.items()}, default=default)


Decide = Callable[[State], Union[RoutingDecision, Mapping[str, Any], Awaitable[Any]]]


def add_supervisor(
    graph: StateGraph,
    name: str,
    decide: Decide,
    teams: Union[Mapping[str, str], TeamRegistry, TeamRouter],
) -> TeamRouter:
    """Add a supervisor node plus its routing edge to ``graph``.

    The node calls ``decide(state)`` and stores the result under
    ``routing``; the conditional edge then dispatches through a
    ``TeamRouter``.

    Returns:
        The router driving the supervisor's edge
    """
    if isinstance(teams, TeamRouter):
        router = teams
    elif isinstance(teams, TeamRegistry):
        router = teams.router()
    else:
        router = TeamRouter(teams)

    async def supervisor_node(state: State) -> State:
        decision = decide(state)
        if inspect.isawaitable(decision):
            decision = await decision
        routing = RoutingDecision.from_value(decision)
        logger.info(f"Supervisor '{name}' routed to team: {routing.team if routing else None}")
        return {**state, "routing": routing.to_dict() if routing else None}

    graph.add_node(name, supervisor_node, role="supervisor")
    graph.add_conditional_edge(name, router)
    return router


__all__ = [
    "RoutingDecision",
    "TeamRouter",
    "TeamSpec",
    "TeamRegistry",
    "add_supervisor",
]
