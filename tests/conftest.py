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

"""Shared pytest fixtures and configuration."""

import os

import pytest

# Settings read .env at import time unless this is set
os.environ.setdefault("STAGEGRAPH_SKIP_ENV_FILE", "1")

from stagegraph.framework.checkpointer import (  # noqa: E402
    JSONFileCheckpointStore,
    MemoryCheckpointStore,
    SQLiteCheckpointStore,
)


@pytest.fixture(autouse=True)
def isolate_environment_variables(monkeypatch):
    """Isolate tests from STAGEGRAPH_* environment variables and .env files."""
    monkeypatch.setenv("STAGEGRAPH_SKIP_ENV_FILE", "1")
    for key in list(os.environ):
        if key.startswith("STAGEGRAPH_") and key != "STAGEGRAPH_SKIP_ENV_FILE":
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def memory_store():
    return MemoryCheckpointStore()


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLiteCheckpointStore(str(tmp_path / "checkpoints.db"))
    yield store
    store.close()


@pytest.fixture
def json_store(tmp_path):
    return JSONFileCheckpointStore(str(tmp_path / "checkpoints"))


@pytest.fixture(params=["memory", "sqlite", "json"])
def store(request, tmp_path):
    """Each checkpoint store implementation in turn."""
    if request.param == "memory":
        yield MemoryCheckpointStore()
    elif request.param == "sqlite":
        sqlite = SQLiteCheckpointStore(str(tmp_path / "checkpoints.db"))
        yield sqlite
        sqlite.close()
    else:
        yield JSONFileCheckpointStore(str(tmp_path / "checkpoints"))
