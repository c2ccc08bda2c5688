from __future__ import annotations

import logging
import subprocess
from typing import Sequence

from viralclip.errors import EngineError

logger = logging.getLogger(__name__)


def run_engine(
    command: Sequence[str],
    *,
    timeout_seconds: float | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run an external engine to completion and capture its full text output.

    Output is read in full, so multi-megabyte filter reports are never truncated.
    Only launch failures and timeouts raise; the caller inspects the return code.
    """

    executable = command[0]
    logger.debug("Running engine command: %s", " ".join(command))
    try:
        return subprocess.run(
            list(command),
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout_seconds or None,
        )
    except FileNotFoundError as exc:
        raise EngineError(
            f"{executable} executable was not found. Install FFmpeg / yt-dlp so {executable} is available on PATH."
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise EngineError(f"{executable} timed out after {timeout_seconds:.1f}s") from exc
    except OSError as exc:
        raise EngineError(f"{executable} could not be started: {exc}") from exc


def engine_output(completed: subprocess.CompletedProcess[str]) -> str:
    """Return the text an ffmpeg filter report was written to (stderr, else stdout)."""

    return completed.stderr or completed.stdout or ""


def stderr_tail(text: str | None, limit: int = 400) -> str:
    stripped = (text or "").strip()
    if len(stripped) <= limit:
        return stripped
    return "..." + stripped[-limit:]
