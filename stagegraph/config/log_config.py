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

"""Logging setup for stagegraph."""

import logging
from typing import TYPE_CHECKING, Optional

from stagegraph.core.errors import ConfigurationError

if TYPE_CHECKING:
    from stagegraph.config.settings import GraphSettings

PACKAGE_LOGGER = "stagegraph"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Marks the handler installed here so repeated calls do not stack handlers
_HANDLER_NAME = "stagegraph-console"


def configure_logging(level: str = "INFO", fmt: Optional[str] = None) -> logging.Logger:
    """Set the stagegraph logger level and attach a console handler once.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: Optional log format string

    Returns:
        The package logger

    Raises:
        ConfigurationError: If the level name is unknown
    """
    level_value = logging.getLevelName(level.upper())
    if not isinstance(level_value, int):
        raise ConfigurationError(f"Unknown log level: {level}", config_key="log_level")

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level_value)

    if not any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
        logger.addHandler(handler)

    return logger


def configure_logging_from_settings(settings: Optional["GraphSettings"] = None) -> logging.Logger:
    """Apply ``settings.log_level`` (loaded from the environment when omitted)."""
    if settings is None:
        from stagegraph.config.settings import load_settings

        settings = load_settings()
    return configure_logging(settings.log_level)


__all__ = ["configure_logging", "configure_logging_from_settings", "PACKAGE_LOGGER"]
