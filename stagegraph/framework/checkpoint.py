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

"""Checkpoint backend types.

This module defines the available checkpoint store backends for
persisting pipeline state snapshots between process restarts.
"""

from enum import Enum


class CheckpointBackend(str, Enum):
    """Available checkpoint backend types.

    Attributes:
        MEMORY: In-process dictionary (ephemeral, lost on restart)
        SQLITE: SQLite database file
        JSON: One JSON file per checkpoint under a directory
    """

    MEMORY = "memory"
    SQLITE = "sqlite"
    JSON = "json"

    @classmethod
    def is_persistent(cls, backend: "CheckpointBackend") -> bool:
        """Check if a backend survives process restarts.

        Args:
            backend: The backend type to check

        Returns:
            True if backend persists data across restarts
        """
        return backend is not cls.MEMORY


__all__ = ["CheckpointBackend"]
