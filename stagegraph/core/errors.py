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

"""Centralized error types for stagegraph.

This module provides:
- Error categories and severities for classification
- A base exception carrying structured details and a correlation ID
- Specific exceptions for graph structure, routing, loops, nodes,
  checkpoints, state schemas and configuration

Structural errors (``RouteNotFoundError``, ``LoopDetectedError``) are never
raised out of the executor. They are attached to the execution result as the
abort reason so callers can inspect them without try/except.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Error Categories
# =============================================================================


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""

    # Graph errors
    GRAPH_STRUCTURE = "graph_structure"
    ROUTE_NOT_FOUND = "route_not_found"
    LOOP_DETECTED = "loop_detected"
    NODE_EXECUTION = "node_execution"

    # State errors
    SCHEMA_INVALID = "schema_invalid"

    # Persistence errors
    CHECKPOINT = "checkpoint"

    # Configuration errors
    CONFIG_INVALID = "config_invalid"

    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# =============================================================================
# Custom Exception Types
# =============================================================================


class StageGraphError(Exception):
    """Base exception for all stagegraph errors.

    Provides structured error information including:
    - Error category and severity
    - Correlation ID for tracking
    - Recovery suggestions
    - Original exception chain
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        recovery_hint: Optional[str] = None,
        correlation_id: Optional[str] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.recovery_hint = recovery_hint
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
            "recovery_hint": self.recovery_hint,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        result = f"[{self.correlation_id}] {self.message}"
        if self.recovery_hint:
            result += f"\nRecovery hint: {self.recovery_hint}"
        return result


class GraphStructureError(StageGraphError):
    """Graph definition is inconsistent (bad entry point, dangling targets)."""

    def __init__(self, message: str, problems: Optional[list[str]] = None, **kwargs: Any):
        kwargs.setdefault("category", ErrorCategory.GRAPH_STRUCTURE)
        super().__init__(message, **kwargs)
        self.problems = problems or []
        self.details["problems"] = self.problems


class RouteNotFoundError(StageGraphError):
    """No outgoing edge resolved, or an edge resolved to an unknown node."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        target: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(
            message,
            category=ErrorCategory.ROUTE_NOT_FOUND,
            recovery_hint=(
                "Check that every node has an outgoing edge and that conditional "
                "resolvers only return registered node names or END."
            ),
            **kwargs,
        )
        self.source = source
        self.target = target
        self.details["source"] = source
        self.details["target"] = target


class LoopDetectedError(StageGraphError):
    """A transition (or node, in node mode) was about to be repeated."""

    def __init__(self, message: str, source: str, target: str, **kwargs: Any):
        super().__init__(
            message,
            category=ErrorCategory.LOOP_DETECTED,
            severity=ErrorSeverity.WARNING,
            **kwargs,
        )
        self.source = source
        self.target = target
        self.details["source"] = source
        self.details["target"] = target


class NodeExecutionError(StageGraphError):
    """A node handler raised; recorded in state, never propagated."""

    def __init__(self, message: str, node: str, **kwargs: Any):
        super().__init__(
            message,
            category=ErrorCategory.NODE_EXECUTION,
            severity=ErrorSeverity.WARNING,
            **kwargs,
        )
        self.node = node
        self.details["node"] = node


class SchemaError(StageGraphError):
    """State schema declaration problems (e.g. a field declared twice)."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs: Any):
        super().__init__(message, category=ErrorCategory.SCHEMA_INVALID, **kwargs)
        self.field_name = field_name
        self.details["field"] = field_name


class CheckpointError(StageGraphError):
    """Checkpoint persistence failures."""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        checkpoint_id: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, category=ErrorCategory.CHECKPOINT, **kwargs)
        self.session_id = session_id
        self.checkpoint_id = checkpoint_id
        self.details["session_id"] = session_id
        self.details["checkpoint_id"] = checkpoint_id


class ConfigurationError(StageGraphError):
    """Invalid configuration values."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any):
        super().__init__(
            message,
            category=ErrorCategory.CONFIG_INVALID,
            severity=ErrorSeverity.CRITICAL,
            **kwargs,
        )
        self.config_key = config_key
        self.details["config_key"] = config_key


__all__ = [
    "ErrorCategory",
    "ErrorSeverity",
    "StageGraphError",
    "GraphStructureError",
    "RouteNotFoundError",
    "LoopDetectedError",
    "NodeExecutionError",
    "SchemaError",
    "CheckpointError",
    "ConfigurationError",
]
