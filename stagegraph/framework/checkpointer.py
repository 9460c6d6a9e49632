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

"""Checkpoint stores for pipeline state snapshots.

A checkpoint is a named copy of pipeline state, keyed by
``(session_id, checkpoint_id)``. Stores are independent of the executor:
the pipeline owner decides when to save (typically at start, after each
stage and at the end) and which checkpoint to resume from.

Implementations:
    - MemoryCheckpointStore: In-process dictionary (tests, single run)
    - SQLiteCheckpointStore: File-based SQLite storage
    - JSONFileCheckpointStore: One JSON file per checkpoint

Saving is an upsert: writing the same key twice keeps one checkpoint with
the latest state, in its original position in ``list()``.

Example:
    store = SQLiteCheckpointStore("~/.stagegraph/checkpoints.db")
    await store.save("session-1", "email_triage_start", state)
    state = await store.load("session-1", "email_triage_start")
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
import re
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from stagegraph.core.errors import CheckpointError, ConfigurationError
from stagegraph.framework.checkpoint import CheckpointBackend
from stagegraph.framework.state import State

if TYPE_CHECKING:
    from stagegraph.config.settings import GraphSettings

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_\-:@][A-Za-z0-9_\-:@.]*$")


@dataclass
class Checkpoint:
    """A saved state snapshot.

    Attributes:
        session_id: Session (pipeline run) identifier
        checkpoint_id: Name of the snapshot within the session
        state: Saved state
        saved_at: Unix time of the most recent save
        metadata: Additional checkpoint metadata
    """

    session_id: str
    checkpoint_id: str
    state: State
    saved_at: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "checkpoint_id": self.checkpoint_id,
            "state": self.state,
            "saved_at": self.saved_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            session_id=data["session_id"],
            checkpoint_id=data["checkpoint_id"],
            state=data["state"],
            saved_at=data.get("saved_at", 0.0),
            metadata=data.get("metadata") or {},
        )


@runtime_checkable
class CheckpointStore(Protocol):
    """Protocol for checkpoint persistence."""

    async def save(
        self,
        session_id: str,
        checkpoint_id: str,
        state: State,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Insert or replace a checkpoint."""
        ...

    async def load(self, session_id: str, checkpoint_id: str) -> Optional[State]:
        """Return the saved state, or None if the checkpoint does not exist."""
        ...

    async def get(self, session_id: str, checkpoint_id: str) -> Optional[Checkpoint]:
        """Return the full checkpoint record, or None."""
        ...

    async def delete(self, session_id: str, checkpoint_id: str) -> bool:
        """Delete a checkpoint; True if it existed."""
        ...

    async def list(self, session_id: str) -> List[str]:
        """Checkpoint ids of a session, oldest first."""
        ...

    async def delete_session(self, session_id: str) -> int:
        """Delete every checkpoint of a session; returns how many."""
        ...


def _check_keys(value: Any, path: str = "state") -> None:
    """Reject mapping keys that JSON would silently turn into strings."""
    if isinstance(value, Mapping):
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Key {key!r} at {path} is {type(key).__name__}, expected str")
            _check_keys(item, f"{path}.{key}")
    elif isinstance(value, (list, tuple)):
        for index, item in enumerate(value):
            _check_keys(item, f"{path}[{index}]")


def _validate_state(state: Any, session_id: str, checkpoint_id: str) -> None:
    try:
        _check_keys(state)
    except TypeError as e:
        raise CheckpointError(
            f"State is not JSON serializable: {e}",
            session_id=session_id,
            checkpoint_id=checkpoint_id,
            cause=e,
        ) from e


def _serialize(value: Any, session_id: str, checkpoint_id: str) -> str:
    _validate_state(value, session_id, checkpoint_id)
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        raise CheckpointError(
            f"State is not JSON serializable: {e}",
            session_id=session_id,
            checkpoint_id=checkpoint_id,
            cause=e,
        ) from e


class MemoryCheckpointStore:
    """In-memory checkpoint store.

    Stores deep copies, so later changes to a saved or loaded state never
    reach the stored snapshot. Non-string mapping keys are rejected as in the
    persistent stores.
    """

    def __init__(self) -> None:
        self._checkpoints: Dict[str, Dict[str, Checkpoint]] = {}

    async def save(
        self,
        session_id: str,
        checkpoint_id: str,
        state: State,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        _validate_state(state, session_id, checkpoint_id)
        session = self._checkpoints.setdefault(session_id, {})
        session[checkpoint_id] = Checkpoint(
            session_id=session_id,
            checkpoint_id=checkpoint_id,
            state=copy.deepcopy(dict(state)),
            metadata=dict(metadata or {}),
        )
        logger.debug(f"Saved checkpoint: {checkpoint_id} (session: {session_id})")

    async def load(self, session_id: str, checkpoint_id: str) -> Optional[State]:
        checkpoint = await self.get(session_id, checkpoint_id)
        return checkpoint.state if checkpoint else None

    async def get(self, session_id: str, checkpoint_id: str) -> Optional[Checkpoint]:
        checkpoint = self._checkpoints.get(session_id, {}).get(checkpoint_id)
        return copy.deepcopy(checkpoint) if checkpoint else None

    async def delete(self, session_id: str, checkpoint_id: str) -> bool:
        session = self._checkpoints.get(session_id, {})
        return session.pop(checkpoint_id, None) is not None

    async def list(self, session_id: str) -> List[str]:
        return list(self._checkpoints.get(session_id, {}))

    async def delete_session(self, session_id: str) -> int:
        return len(self._checkpoints.pop(session_id, {}))


class SQLiteCheckpointStore:
    """SQLite-based checkpoint store.

    Blocking sqlite calls run in the default thread pool executor.

    Attributes:
        db_path: Path to SQLite database file
        table_name: Name of the checkpoints table

    Example:
        store = SQLiteCheckpointStore("~/.stagegraph/checkpoints.db")
        await store.save("session-1", "final", state)
        state = await store.load("session-1", "final")
    """

    def __init__(
        self,
        db_path: str = "~/.stagegraph/checkpoints.db",
        table_name: str = "checkpoints",
    ):
        """Initialize SQLite checkpoint store.

        Args:
            db_path: Path to database file (created if missing)
            table_name: Name for checkpoints table
        """
        self.db_path = Path(os.path.expanduser(str(db_path)))
        self.table_name = table_name
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._init_schema(self._conn)
        return self._conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                checkpoint_id TEXT NOT NULL,
                state TEXT NOT NULL,
                saved_at REAL NOT NULL,
                metadata TEXT,
                UNIQUE (session_id, checkpoint_id)
            )
        """)
        conn.commit()
        logger.debug(f"Initialized checkpoint schema: {self.db_path}")

    async def _run(self, func: Any, *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def save(
        self,
        session_id: str,
        checkpoint_id: str,
        state: State,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Insert or replace a checkpoint.

        Raises:
            CheckpointError: If the state cannot be serialized or written
        """
        payload = _serialize(dict(state), session_id, checkpoint_id)
        meta = _serialize(dict(metadata or {}), session_id, checkpoint_id)
        await self._run(self._save_sync, session_id, checkpoint_id, payload, meta)

    def _save_sync(self, session_id: str, checkpoint_id: str, payload: str, meta: str) -> None:
        try:
            with self._lock:
                conn = self._get_connection()
                conn.execute(
                    f"""
                    INSERT INTO {self.table_name}
                    (session_id, checkpoint_id, state, saved_at, metadata)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT (session_id, checkpoint_id) DO UPDATE SET
                        state = excluded.state,
                        saved_at = excluded.saved_at,
                        metadata = excluded.metadata
                """,
                    (session_id, checkpoint_id, payload, time.time(), meta),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise CheckpointError(
                f"Failed to save checkpoint: {e}",
                session_id=session_id,
                checkpoint_id=checkpoint_id,
                cause=e,
            ) from e
        logger.debug(f"Saved checkpoint: {checkpoint_id} (session: {session_id})")

    async def load(self, session_id: str, checkpoint_id: str) -> Optional[State]:
        checkpoint = await self.get(session_id, checkpoint_id)
        return checkpoint.state if checkpoint else None

    async def get(self, session_id: str, checkpoint_id: str) -> Optional[Checkpoint]:
        return await self._run(self._get_sync, session_id, checkpoint_id)

    def _get_sync(self, session_id: str, checkpoint_id: str) -> Optional[Checkpoint]:
        with self._lock:
            row = (
                self._get_connection()
                .execute(
                    f"SELECT * FROM {self.table_name} WHERE session_id = ? AND checkpoint_id = ?",
                    (session_id, checkpoint_id),
                )
                .fetchone()
            )

        if row is None:
            return None

        return Checkpoint(
            session_id=row["session_id"],
            checkpoint_id=row["checkpoint_id"],
            state=json.loads(row["state"]),
            saved_at=row["saved_at"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
        )

    async def delete(self, session_id: str, checkpoint_id: str) -> bool:
        return await self._run(self._delete_sync, session_id, checkpoint_id)

    def _delete_sync(self, session_id: str, checkpoint_id: str) -> bool:
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute(
                f"DELETE FROM {self.table_name} WHERE session_id = ? AND checkpoint_id = ?",
                (session_id, checkpoint_id),
            )
            conn.commit()
        return cursor.rowcount > 0

    async def list(self, session_id: str) -> List[str]:
        return await self._run(self._list_sync, session_id)

    def _list_sync(self, session_id: str) -> List[str]:
        with self._lock:
            rows = (
                self._get_connection()
                .execute(
                    f"SELECT checkpoint_id FROM {self.table_name} WHERE session_id = ? ORDER BY seq",
                    (session_id,),
                )
                .fetchall()
            )
        return [row["checkpoint_id"] for row in rows]

    async def delete_session(self, session_id: str) -> int:
        return await self._run(self._delete_session_sync, session_id)

    def _delete_session_sync(self, session_id: str) -> int:
        with self._lock:
            conn = self._get_connection()
            cursor = conn.execute(
                f"DELETE FROM {self.table_name} WHERE session_id = ?",
                (session_id,),
            )
            conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


class JSONFileCheckpointStore:
    """JSON file-based checkpoint store.

    Layout: ``<base_dir>/<session_id>/<checkpoint_id>.json`` plus a
    ``.index.json`` per session recording save order. Suitable for
    development and debugging.
    """

    INDEX_FILE = ".index.json"

    def __init__(self, base_dir: str = "~/.stagegraph/checkpoints"):
        self.base_dir = Path(os.path.expanduser(str(base_dir)))
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _session_dir(self, session_id: str) -> Path:
        self._check_id(session_id, session_id, None)
        return self.base_dir / session_id

    def _checkpoint_path(self, session_id: str, checkpoint_id: str) -> Path:
        self._check_id(checkpoint_id, session_id, checkpoint_id)
        return self._session_dir(session_id) / f"{checkpoint_id}.json"

    @staticmethod
    def _check_id(value: str, session_id: str, checkpoint_id: Optional[str]) -> None:
        if not _SAFE_ID.match(value or ""):
            raise CheckpointError(
                f"Identifier not usable as a file name: {value!r}",
                session_id=session_id,
                checkpoint_id=checkpoint_id,
            )

    def _read_index(self, session_id: str) -> List[str]:
        index_path = self._session_dir(session_id) / self.INDEX_FILE
        if not index_path.exists():
            return []
        with open(index_path, encoding="utf-8") as f:
            return list(json.load(f))

    def _write_index(self, session_id: str, ids: List[str]) -> None:
        index_path = self._session_dir(session_id) / self.INDEX_FILE
        with open(index_path, "w", encoding="utf-8") as f:
            json.dump(ids, f)

    async def save(
        self,
        session_id: str,
        checkpoint_id: str,
        state: State,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Write checkpoint to its JSON file.

        Raises:
            CheckpointError: If the state cannot be serialized or written
        """
        filepath = self._checkpoint_path(session_id, checkpoint_id)
        _validate_state(state, session_id, checkpoint_id)
        checkpoint = Checkpoint(
            session_id=session_id,
            checkpoint_id=checkpoint_id,
            state=dict(state),
            metadata=dict(metadata or {}),
        )
        payload = _serialize(checkpoint.to_dict(), session_id, checkpoint_id)

        try:
            filepath.parent.mkdir(parents=True, exist_ok=True)
            with open(filepath, "w", encoding="utf-8") as f:
                f.write(payload)
            ids = self._read_index(session_id)
            if checkpoint_id not in ids:
                ids.append(checkpoint_id)
                self._write_index(session_id, ids)
        except OSError as e:
            raise CheckpointError(
                f"Failed to write checkpoint: {e}",
                session_id=session_id,
                checkpoint_id=checkpoint_id,
                cause=e,
            ) from e

        logger.debug(f"Saved checkpoint to: {filepath}")

    async def load(self, session_id: str, checkpoint_id: str) -> Optional[State]:
        checkpoint = await self.get(session_id, checkpoint_id)
        return checkpoint.state if checkpoint else None

    async def get(self, session_id: str, checkpoint_id: str) -> Optional[Checkpoint]:
        filepath = self._checkpoint_path(session_id, checkpoint_id)
        if not filepath.exists():
            return None
        with open(filepath, encoding="utf-8") as f:
            return Checkpoint.from_dict(json.load(f))

    async def delete(self, session_id: str, checkpoint_id: str) -> bool:
        filepath = self._checkpoint_path(session_id, checkpoint_id)
        if not filepath.exists():
            return False
        filepath.unlink()
        ids = [i for i in self._read_index(session_id) if i != checkpoint_id]
        self._write_index(session_id, ids)
        return True

    async def list(self, session_id: str) -> List[str]:
        session_dir = self._session_dir(session_id)
        if not session_dir.exists():
            return []
        return [i for i in self._read_index(session_id) if (session_dir / f"{i}.json").exists()]

    async def delete_session(self, session_id: str) -> int:
        session_dir = self._session_dir(session_id)
        if not session_dir.exists():
            return 0
        deleted = 0
        for filepath in session_dir.glob("*.json"):
            if filepath.name != self.INDEX_FILE:
                deleted += 1
            filepath.unlink()
        index_path = session_dir / self.INDEX_FILE
        if index_path.exists():
            index_path.unlink()
        session_dir.rmdir()
        return deleted


def create_checkpoint_store(settings: "GraphSettings") -> CheckpointStore:
    """Create the checkpoint store selected by ``settings.checkpoint_backend``.

    Raises:
        ConfigurationError: If the backend is not recognized
    """
    backend = CheckpointBackend(settings.checkpoint_backend)
    if backend == CheckpointBackend.MEMORY:
        return MemoryCheckpointStore()
    if backend == CheckpointBackend.SQLITE:
        return SQLiteCheckpointStore(settings.checkpoint_db_path)
    if backend == CheckpointBackend.JSON:
        return JSONFileCheckpointStore(settings.checkpoint_dir)
    raise ConfigurationError(f"Unsupported checkpoint backend: {backend}", config_key="checkpoint_backend")


__all__ = [
    "Checkpoint",
    "CheckpointStore",
    "MemoryCheckpointStore",
    "SQLiteCheckpointStore",
    "JSONFileCheckpointStore",
    "create_checkpoint_store",
]
