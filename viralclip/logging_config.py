from __future__ import annotations

import logging
import sys
from typing import IO

from viralclip.config import LoggingSettings

DEFAULT_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(settings: LoggingSettings, *, stream: IO[str] | None = None) -> None:
    """Configure process-wide logging once at startup.

    Records go to stderr unless another stream is given; agent workers keep
    stdout for their single response line.
    """

    logging.basicConfig(
        level=resolve_level(settings.level),
        format=settings.format or DEFAULT_LOG_FORMAT,
        stream=stream or sys.stderr,
        force=True,
    )


def resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO
