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

"""Configuration management for stagegraph.

Precedence (highest to lowest):
1. Explicit keyword arguments / overrides
2. Environment variables (STAGEGRAPH_*)
3. .env file
4. YAML file passed to ``GraphSettings.from_yaml``
5. Default values

Usage:
    settings = load_settings()
    store = create_checkpoint_store(settings)
    executor = graph.compile(config=ExecutorConfig.from_settings(settings))
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Union

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stagegraph.core.errors import ConfigurationError
from stagegraph.framework.checkpoint import CheckpointBackend
from stagegraph.framework.executor import LoopDetection

logger = logging.getLogger(__name__)

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class GraphSettings(BaseSettings):
    """Settings for graph execution, checkpointing and logging."""

    model_config = SettingsConfigDict(
        env_prefix="STAGEGRAPH_",
        env_file=".env" if not os.getenv("STAGEGRAPH_SKIP_ENV_FILE") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level for stagegraph loggers")

    # Execution
    loop_detection: LoopDetection = Field(
        default=LoopDetection.TRANSITION,
        description="Loop detection strategy: 'transition' (from,to) pairs or 'node' revisits",
    )
    isolate_node_state: bool = Field(
        default=True,
        description="Hand each node a deep copy so failed nodes cannot leak partial writes",
    )

    # Checkpointing
    checkpoint_backend: CheckpointBackend = Field(
        default=CheckpointBackend.MEMORY,
        description="Checkpoint store backend (memory, sqlite, json)",
    )
    checkpoint_db_path: str = Field(
        default="~/.stagegraph/checkpoints.db",
        description="SQLite database file for the sqlite backend",
    )
    checkpoint_dir: str = Field(
        default="~/.stagegraph/checkpoints",
        description="Directory for the json backend",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {v!r}")
        return level

    @classmethod
    def from_yaml(cls, path: Union[str, Path], **overrides: Any) -> "GraphSettings":
        """Load settings from a YAML file.

        Values from the file sit below environment variables; ``overrides``
        win over both.

        Raises:
            ConfigurationError: If the file is missing or not a mapping
        """
        file_path = Path(os.path.expanduser(str(path)))
        if not file_path.exists():
            raise ConfigurationError(f"Settings file not found: {file_path}")

        with open(file_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Settings file must contain a mapping, got {type(data).__name__}",
                config_key=str(file_path),
            )

        env_values = cls().model_dump(exclude_unset=True)
        merged: Dict[str, Any] = {**data, **env_values, **overrides}
        logger.debug(f"Loaded settings from {file_path}: keys={sorted(data)}")
        return cls(**merged)


def load_settings(**overrides: Any) -> GraphSettings:
    """Load settings from environment (and .env), with optional overrides.

    Returns:
        GraphSettings instance
    """
    return GraphSettings(**overrides)


__all__ = ["GraphSettings", "load_settings"]
