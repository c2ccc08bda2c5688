from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from viralclip.engine import engine_output, run_engine
from viralclip.errors import SignalError
from viralclip.models import SceneChange

logger = logging.getLogger(__name__)

SCENE_BACKENDS = {"ffmpeg", "opencv"}

_PTS_TIME_RE = re.compile(r"pts_time:\s*([\d.]+)")


def detect_scene_changes(
    vod_path: str | Path,
    threshold: float = 0.5,
    *,
    backend: str = "ffmpeg",
    ffmpeg_path: str = "ffmpeg",
    analysis_fps: float = 2.0,
) -> list[SceneChange]:
    """Detect scene cuts with the ffmpeg scene filter or an OpenCV histogram pass.

    ``threshold`` is a scene score in [0, 1] for both backends.
    """

    normalized_backend = backend.lower().strip()
    if normalized_backend not in SCENE_BACKENDS:
        raise ValueError(f"Unsupported scene backend '{backend}'. Expected one of: ffmpeg, opencv.")

    if normalized_backend == "opencv":
        changes = _detect_with_opencv(Path(vod_path), threshold=threshold, analysis_fps=analysis_fps)
    else:
        changes = _detect_with_ffmpeg(vod_path, threshold=threshold, ffmpeg_path=ffmpeg_path)

    logger.info("Found %d scene changes in %s (%s backend)", len(changes), vod_path, normalized_backend)
    return changes


def parse_scene_output(output: str) -> list[SceneChange]:
    timestamps = sorted({float(match.group(1)) for match in _PTS_TIME_RE.finditer(output)})
    return [SceneChange(timestamp_seconds=timestamp) for timestamp in timestamps if timestamp > 0]


def _detect_with_ffmpeg(vod_path: str | Path, threshold: float, ffmpeg_path: str) -> list[SceneChange]:
    command = [
        ffmpeg_path,
        "-hide_banner",
        "-nostats",
        "-i",
        str(vod_path),
        "-an",
        "-vf",
        f"select='gt(scene,{threshold:g})',showinfo",
        "-f",
        "null",
        "-",
    ]
    completed = run_engine(command)
    if completed.returncode != 0:
        logger.warning("scene filter exited with code %s for %s", completed.returncode, vod_path)
    return parse_scene_output(engine_output(completed))


def _detect_with_opencv(source_path: Path, threshold: float, analysis_fps: float) -> list[SceneChange]:
    if not source_path.exists():
        raise SignalError(f"Video file not found: {source_path}")

    import cv2
    import numpy as np

    capture = cv2.VideoCapture(str(source_path))
    if not capture.isOpened():
        raise SignalError(f"Unable to open video for scene analysis: {source_path}")

    native_fps = float(capture.get(cv2.CAP_PROP_FPS) or 0.0)
    if native_fps <= 0:
        native_fps = max(analysis_fps, 1.0)
    frame_interval = max(int(round(native_fps / max(analysis_fps, 0.1))), 1)

    samples: list[dict[str, Any]] = []
    prev_hist = None
    frame_index = 0

    try:
        while True:
            ok, frame = capture.read()
            if not ok:
                break

            if frame_index % frame_interval != 0:
                frame_index += 1
                continue

            timestamp_seconds = float(capture.get(cv2.CAP_PROP_POS_MSEC) / 1000.0)
            gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
            hist = cv2.calcHist([gray], [0], None, [64], [0, 256]).ravel()
            hist = hist / max(float(hist.sum()), 1.0)

            if prev_hist is None:
                scene_score = 0.0
            else:
                scene_score = float(0.5 * np.abs(hist - prev_hist).sum())

            samples.append(
                {
                    "frame_index": frame_index,
                    "timestamp_seconds": round(timestamp_seconds, 3),
                    "scene_score": round(scene_score, 6),
                }
            )
            prev_hist = hist
            frame_index += 1
    finally:
        capture.release()

    return [
        SceneChange(timestamp_seconds=sample["timestamp_seconds"])
        for sample in samples
        if sample["scene_score"] >= threshold and sample["timestamp_seconds"] > 0
    ]
