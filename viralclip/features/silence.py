from __future__ import annotations

import logging
import re
from pathlib import Path

from viralclip.engine import engine_output, run_engine
from viralclip.models import SilenceInterval

logger = logging.getLogger(__name__)

_SILENCE_START_RE = re.compile(r"silence_start: (-?[\d.]+)")
_SILENCE_END_RE = re.compile(r"silence_end: (-?[\d.]+) \| silence_duration: ([\d.]+)")


def detect_silence(
    vod_path: str | Path,
    noise_floor_db: float = -30.0,
    min_duration_seconds: float = 2.0,
    ffmpeg_path: str = "ffmpeg",
) -> list[SilenceInterval]:
    """Run ffmpeg silencedetect over the whole file and return silence intervals."""

    command = [
        ffmpeg_path,
        "-hide_banner",
        "-nostats",
        "-i",
        str(vod_path),
        "-af",
        f"silencedetect=noise={noise_floor_db:g}dB:d={min_duration_seconds:g}",
        "-f",
        "null",
        "-",
    ]
    completed = run_engine(command)
    if completed.returncode != 0:
        logger.warning("silencedetect exited with code %s for %s", completed.returncode, vod_path)

    intervals = parse_silence_output(engine_output(completed))
    logger.info("Found %d silence intervals in %s", len(intervals), vod_path)
    return intervals


def parse_silence_output(output: str) -> list[SilenceInterval]:
    """Pair start/end markers by position; a trailing unmatched start is dropped."""

    starts = [max(0.0, float(match.group(1))) for match in _SILENCE_START_RE.finditer(output)]
    ends = [max(0.0, float(match.group(1))) for match in _SILENCE_END_RE.finditer(output)]
    return [SilenceInterval(start=start, end=end) for start, end in zip(starts, ends)]
