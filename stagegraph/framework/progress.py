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

"""Progress tracking for pipeline runs.

``ProgressTracker`` is a transition handler: after each node it maps the
node name to a percentage, records it in ``state["progress"]`` (which
never decreases) and notifies listeners whenever a session's progress
strictly increases.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from stagegraph.framework.graph import StateGraph
from stagegraph.framework.state import State, max_value

logger = logging.getLogger(__name__)

DEFAULT_SESSION = "default"

DEFAULT_STAGE_PROGRESS: Dict[str, int] = {
    "initialization": 5,
    "routing": 10,
    "analysis": 50,
    "processing": 75,
    "finalization": 90,
}


class ProgressStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ProgressEvent:
    """A progress update for one session."""

    session_id: str
    phase: str
    progress: int
    status: ProgressStatus
    message: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


ProgressListener = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class ProgressTracker:
    """Publishes monotonic progress events from node transitions.

    Example:
        tracker = ProgressTracker({"classify": 30, "draft_reply": 80})
        tracker.add_listener(websocket_push)
        tracker.attach(graph)
    """

    def __init__(
        self,
        stage_progress: Optional[Mapping[str, int]] = None,
        listeners: Optional[List[ProgressListener]] = None,
    ):
        self.stage_progress: Dict[str, int] = dict(
            DEFAULT_STAGE_PROGRESS if stage_progress is None else stage_progress
        )
        self._listeners: List[ProgressListener] = list(listeners or [])
        self._progress: Dict[str, int] = {}

    def add_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def attach(self, graph: StateGraph) -> StateGraph:
        """Register this tracker as a transition handler on ``graph``."""
        return graph.add_transition_handler(self)

    def progress_for(self, node_name: str) -> int:
        return self.stage_progress.get(node_name, 0)

    def current(self, session_id: str) -> int:
        return self._progress.get(session_id, 0)

    async def start(self, session_id: str) -> ProgressEvent:
        """Reset a session to 0% and publish a pending event."""
        self._progress[session_id] = 0
        return await self._publish(
            session_id, "initialization", 0, ProgressStatus.PENDING, "Starting graph execution"
        )

    async def complete(self, session_id: str, message: str = "Graph execution completed") -> ProgressEvent:
        """Publish a terminal 100% event and forget the session."""
        event = await self._publish(session_id, "completed", 100, ProgressStatus.COMPLETED, message)
        self._progress.pop(session_id, None)
        return event

    async def fail(self, session_id: str, message: str) -> ProgressEvent:
        """Publish a terminal failure at the current percentage and forget the session."""
        event = await self._publish(
            session_id, "failed", self.current(session_id), ProgressStatus.FAILED, message
        )
        self._progress.pop(session_id, None)
        return event

    async def __call__(self, previous: State, new_state: State, node_name: str) -> State:
        session_id = new_state.get("session_id") or DEFAULT_SESSION
        progress = self.progress_for(node_name)

        if progress > 0 and progress > self.current(session_id):
            await self._publish(
                session_id,
                node_name,
                progress,
                ProgressStatus.IN_PROGRESS,
                f"Executing {node_name.replace('_', ' ')}",
            )

        if progress > 0:
            return {**new_state, "progress": max_value(new_state.get("progress"), progress)}
        return new_state

    async def _publish(
        self,
        session_id: str,
        phase: str,
        progress: int,
        status: ProgressStatus,
        message: str,
    ) -> ProgressEvent:
        event = ProgressEvent(
            session_id=session_id,
            phase=phase,
            progress=progress,
            status=status,
            message=message,
        )
        self._progress[session_id] = progress

        for listener in self._listeners:
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Progress listener failed for session {session_id}: {e}")

        logger.debug(f"Published progress for session {session_id}: {progress}% ({phase}) - {message}")
        return event


__all__ = [
    "DEFAULT_STAGE_PROGRESS",
    "ProgressStatus",
    "ProgressEvent",
    "ProgressListener",
    "ProgressTracker",
]
