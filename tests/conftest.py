from __future__ import annotations

import logging

import pytest


@pytest.fixture(autouse=True)
def _restore_root_logging():
    """Undo process-wide logging config between tests.

    CLI tests invoke configure_logging() while CliRunner has swapped
    sys.stderr; without this, later tests log to a closed stream.
    """
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
