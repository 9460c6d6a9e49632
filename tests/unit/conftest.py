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

"""Pytest fixtures for unit tests."""

import logging

import pytest


@pytest.fixture(autouse=True)
def reset_stagegraph_logger():
    """Reset the package logger so caplog sees records from every test.

    configure_logging() attaches handlers and changes the level; restore
    the original state afterwards so tests stay independent.
    """
    logger = logging.getLogger("stagegraph")

    original_handlers = logger.handlers.copy()
    original_level = logger.level
    original_propagate = logger.propagate

    logger.propagate = True
    logger.setLevel(logging.DEBUG)

    yield

    logger.handlers = original_handlers
    logger.setLevel(original_level)
    logger.propagate = original_propagate
