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

"""State schemas and per-field reducers.

A pipeline declares each state field once, with a default and a reducer
controlling how an update combines with the value already in state:

    - REPLACE_LAST: ``update if update is not None else existing``
    - CONCAT: ``existing + update`` (history accumulates, order preserved)
    - SHALLOW_MERGE: ``{**existing, **update}``
    - MAX: ``max(existing, update)`` (never regresses)

Node handlers return the full next state, so reducers are not applied to a
node's own return value. They apply when state is combined through the
schema, e.g. when a pipeline driver merges an update into a checkpoint.

Example:
    schema = (
        StateSchema("email_triage")
        .field("messages", default=list, reducer=Reducer.CONCAT)
        .field("stage", default="initialization")
        .field("metadata", default=dict, reducer=Reducer.SHALLOW_MERGE)
        .field("progress", default=0, reducer=Reducer.MAX)
    )

    state = schema.initial_state({"stage": "received"})
    state = schema.merge(state, {"messages": ["hello"], "progress": 10})
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from stagegraph.core.errors import SchemaError

logger = logging.getLogger(__name__)

State = Dict[str, Any]
ReducerFunc = Callable[[Any, Any], Any]


class Reducer(str, Enum):
    """Built-in merge behaviors for state fields."""

    REPLACE_LAST = "replace_last"
    CONCAT = "concat"
    SHALLOW_MERGE = "shallow_merge"
    MAX = "max"


def replace_last(existing: Any, update: Any) -> Any:
    """Take the update unless it is None."""
    return update if update is not None else existing


def concat(existing: Any, update: Any) -> List[Any]:
    """Append update items after existing items."""
    if update is None:
        return list(existing or [])
    if not isinstance(update, (list, tuple)):
        update = [update]
    return list(existing or []) + list(update)


def shallow_merge(existing: Any, update: Any) -> Dict[str, Any]:
    """Overwrite only the top-level keys present in the update."""
    if update is None:
        return dict(existing or {})
    return {**(existing or {}), **update}


def max_value(existing: Any, update: Any) -> Any:
    """Keep the larger value; a missing side yields the other."""
    if existing is None:
        return update
    if update is None:
        return existing
    return max(existing, update)


_REDUCERS: Dict[Reducer, ReducerFunc] = {
    Reducer.REPLACE_LAST: replace_last,
    Reducer.CONCAT: concat,
    Reducer.SHALLOW_MERGE: shallow_merge,
    Reducer.MAX: max_value,
}


def get_reducer(reducer: Union[Reducer, str, ReducerFunc]) -> ReducerFunc:
    """Resolve a reducer name, enum member or callable to a function.

    Raises:
        SchemaError: If the reducer name is unknown
    """
    if callable(reducer) and not isinstance(reducer, Reducer):
        return reducer
    try:
        return _REDUCERS[Reducer(reducer)]
    except ValueError as e:
        raise SchemaError(
            f"Unknown reducer: {reducer!r}. Valid options: {[r.value for r in Reducer]}"
        ) from e


@dataclass(frozen=True)
class StateField:
    """Declaration of a single state field.

    Attributes:
        name: Field name (key in the state dict)
        default: Default value, or a zero-argument factory such as ``list``
        reducer: How updates combine with the existing value
        type_: Optional type, documentation only
    """

    name: str
    default: Any = None
    reducer: Union[Reducer, ReducerFunc] = Reducer.REPLACE_LAST
    type_: Optional[type] = None

    def default_value(self) -> Any:
        """Produce a fresh default, never shared between states."""
        if callable(self.default):
            return self.default()
        return copy.deepcopy(self.default)

    def reduce(self, existing: Any, update: Any) -> Any:
        return get_reducer(self.reducer)(existing, update)


class StateSchema:
    """Ordered set of field declarations with reducer semantics.

    Fields are declared once with the ``field`` builder method; declaring
    the same name twice raises ``SchemaError``. Keys that are not declared
    are still accepted in state and merge with replace-last semantics, so
    any pipeline can carry extra fields.
    """

    def __init__(self, name: str = "state", fields: Optional[Iterable[StateField]] = None):
        self.name = name
        self._fields: Dict[str, StateField] = {}
        for f in fields or ():
            self._add(f)

    def _add(self, state_field: StateField) -> None:
        if state_field.name in self._fields:
            raise SchemaError(
                f"Field '{state_field.name}' already declared in schema '{self.name}'",
                field_name=state_field.name,
            )
        get_reducer(state_field.reducer)
        self._fields[state_field.name] = state_field

    def field(
        self,
        name: str,
        *,
        default: Any = None,
        reducer: Union[Reducer, str, ReducerFunc] = Reducer.REPLACE_LAST,
        type_: Optional[type] = None,
    ) -> "StateSchema":
        """Declare a field.

        Args:
            name: Field name
            default: Default value or zero-argument factory
            reducer: Reducer enum, reducer name, or ``(existing, update) -> value``
            type_: Optional declared type

        Returns:
            Self for chaining

        Raises:
            SchemaError: If the field is already declared or the reducer is unknown
        """
        if isinstance(reducer, str) and not isinstance(reducer, Reducer):
            get_reducer(reducer)
            reducer = Reducer(reducer)
        self._add(StateField(name=name, default=default, reducer=reducer, type_=type_))
        return self

    def extend(self, name: str, *fields: StateField) -> "StateSchema":
        """Create a new schema with this schema's fields plus ``fields``."""
        return StateSchema(name, [*self._fields.values(), *fields])

    @classmethod
    def compose(cls, name: str, *schemas: "StateSchema") -> "StateSchema":
        """Combine several schemas; a field declared in two of them is an error."""
        combined = cls(name)
        for schema in schemas:
            for f in schema:
                combined._add(f)
        return combined

    def __iter__(self) -> Iterator[StateField]:
        return iter(self._fields.values())

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __len__(self) -> int:
        return len(self._fields)

    def __getitem__(self, name: str) -> StateField:
        return self._fields[name]

    @property
    def field_names(self) -> List[str]:
        return list(self._fields)

    def defaults(self) -> State:
        """Fresh default values for every declared field."""
        return {name: f.default_value() for name, f in self._fields.items()}

    def initial_state(self, values: Optional[Mapping[str, Any]] = None) -> State:
        """Seed defaults, then overlay explicit values as-is."""
        state = self.defaults()
        if values:
            state.update(copy.deepcopy(dict(values)))
        return state

    def seed(self, state: Mapping[str, Any]) -> State:
        """Fill in defaults only for declared fields missing from ``state``."""
        seeded = dict(state)
        for name, f in self._fields.items():
            if name not in seeded:
                seeded[name] = f.default_value()
        return seeded

    def merge(self, state: Mapping[str, Any], update: Mapping[str, Any]) -> State:
        """Combine an update into state through each field's reducer.

        Returns:
            New state dict; neither argument is modified
        """
        merged = copy.deepcopy(dict(state))
        for key, value in update.items():
            value = copy.deepcopy(value)
            state_field = self._fields.get(key)
            if state_field is None:
                merged[key] = replace_last(merged.get(key), value)
                continue
            existing = merged[key] if key in merged else state_field.default_value()
            merged[key] = state_field.reduce(existing, value)
        return merged

    def merge_all(self, state: Mapping[str, Any], updates: Iterable[Mapping[str, Any]]) -> State:
        """Fold updates into state in order."""
        merged = dict(state)
        for update in updates:
            merged = self.merge(merged, update)
        return merged

    def __repr__(self) -> str:
        return f"StateSchema({self.name!r}, fields={self.field_names})"


def base_workflow_schema() -> StateSchema:
    """Fields shared by every pipeline.

    Pipelines build on this with ``extend`` or ``StateSchema.compose``.
    """
    return (
        StateSchema("base_workflow")
        .field("messages", default=list, reducer=Reducer.CONCAT, type_=list)
        .field("session_id", default=None, type_=str)
        .field("input", default=dict, reducer=Reducer.SHALLOW_MERGE, type_=dict)
        .field("stage", default="initialization", type_=str)
        .field("results", default=dict, reducer=Reducer.SHALLOW_MERGE, type_=dict)
        .field("error", default=None, type_=str)
        .field("errors", default=list, reducer=Reducer.CONCAT, type_=list)
        .field("metadata", default=dict, reducer=Reducer.SHALLOW_MERGE, type_=dict)
        .field("routing", default=None, type_=dict)
        .field("progress", default=0, reducer=Reducer.MAX, type_=int)
    )


__all__ = [
    "State",
    "ReducerFunc",
    "Reducer",
    "StateField",
    "StateSchema",
    "replace_last",
    "concat",
    "shallow_merge",
    "max_value",
    "get_reducer",
    "base_workflow_schema",
]
