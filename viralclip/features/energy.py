from __future__ import annotations

import logging
import math
import re
from pathlib import Path

from viralclip.engine import engine_output, run_engine
from viralclip.models import EnergyPeak

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 20

# Per-frame metadata lines carry dB values; summary lines carry linear values.
_RMS_DB_RE = re.compile(r"lavfi\.astats\.Overall\.RMS_level=(-?inf|[-\d.eE+]+)")
_RMS_LINEAR_RE = re.compile(r"RMS level: ([\d.eE+-]+)")


def detect_energy_peaks(
    vod_path: str | Path,
    rms_threshold: float = 0.1,
    max_results: int = DEFAULT_MAX_RESULTS,
    ffmpeg_path: str = "ffmpeg",
) -> list[EnergyPeak]:
    """Report per-frame RMS measurements with astats and keep those above threshold."""

    command = [
        ffmpeg_path,
        "-hide_banner",
        "-nostats",
        "-i",
        str(vod_path),
        "-vn",
        "-af",
        "astats=metadata=1:reset=1,ametadata=print:key=lavfi.astats.Overall.RMS_level",
        "-f",
        "null",
        "-",
    ]
    completed = run_engine(command)
    if completed.returncode != 0:
        logger.warning("astats exited with code %s for %s", completed.returncode, vod_path)

    peaks = parse_energy_output(engine_output(completed), rms_threshold=rms_threshold, max_results=max_results)
    logger.info("Found %d energy peaks in %s", len(peaks), vod_path)
    return peaks


def parse_energy_output(
    output: str,
    rms_threshold: float = 0.1,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> list[EnergyPeak]:
    """Number every RMS measurement in report order and keep those above threshold."""

    measurements = [_db_to_linear(match.group(1)) for match in _RMS_DB_RE.finditer(output)]
    if not measurements:
        measurements = [_to_float(match.group(1)) for match in _RMS_LINEAR_RE.finditer(output)]

    peaks = [
        EnergyPeak(ordinal_index=index, rms=rms)
        for index, rms in enumerate(measurements)
        if rms > rms_threshold
    ]
    return peaks[: max(max_results, 0)]


def _db_to_linear(raw_value: str) -> float:
    if raw_value.endswith("inf"):
        return 0.0
    return math.pow(10.0, float(raw_value) / 20.0)


def _to_float(raw_value: str) -> float:
    try:
        return float(raw_value)
    except ValueError:
        return 0.0
