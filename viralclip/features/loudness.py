from __future__ import annotations

import logging
import re
from pathlib import Path

from viralclip.engine import engine_output, run_engine
from viralclip.models import LoudnessSample

logger = logging.getLogger(__name__)

_MEAN_VOLUME_RE = re.compile(r"mean_volume: (-?[\d.]+) dB")
_MAX_VOLUME_RE = re.compile(r"max_volume: (-?[\d.]+) dB")


def detect_loudness(vod_path: str | Path, ffmpeg_path: str = "ffmpeg") -> LoudnessSample | None:
    """Measure whole-file mean/max volume with ffmpeg volumedetect."""

    command = [
        ffmpeg_path,
        "-hide_banner",
        "-nostats",
        "-i",
        str(vod_path),
        "-af",
        "volumedetect",
        "-f",
        "null",
        "-",
    ]
    completed = run_engine(command)
    if completed.returncode != 0:
        logger.warning("volumedetect exited with code %s for %s", completed.returncode, vod_path)

    return parse_loudness_output(engine_output(completed))


def parse_loudness_output(output: str) -> LoudnessSample | None:
    mean_match = _MEAN_VOLUME_RE.search(output)
    max_match = _MAX_VOLUME_RE.search(output)
    if not (mean_match and max_match):
        return None
    return LoudnessSample(mean_db=float(mean_match.group(1)), max_db=float(max_match.group(1)))
