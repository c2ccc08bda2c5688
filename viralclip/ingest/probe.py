from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from viralclip.engine import run_engine, stderr_tail
from viralclip.errors import EngineError, ProbeError
from viralclip.models import VideoMetadata


def probe_media(vod_path: str | Path, ffprobe_path: str = "ffprobe") -> VideoMetadata:
    """Probe media metadata via ffprobe and return a typed snapshot."""

    source_path = Path(vod_path).expanduser().resolve()
    if not source_path.exists():
        raise ProbeError(f"Video file not found: {source_path}")

    payload = _run_ffprobe(source_path, ffprobe_path=ffprobe_path)
    return _normalize_probe_payload(payload)


def _run_ffprobe(vod_path: Path, ffprobe_path: str = "ffprobe") -> dict[str, Any]:
    command = [
        ffprobe_path,
        "-v",
        "quiet",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(vod_path),
    ]

    try:
        completed = run_engine(command)
    except EngineError as exc:
        raise ProbeError(str(exc)) from exc

    if completed.returncode != 0:
        stderr = stderr_tail(completed.stderr)
        details = f" ffprobe stderr: {stderr}" if stderr else ""
        raise ProbeError(f"ffprobe failed to read media file: {vod_path}.{details}")

    try:
        payload = json.loads(completed.stdout)
    except json.JSONDecodeError as exc:
        raise ProbeError("ffprobe returned invalid JSON output.") from exc

    if not isinstance(payload, dict):
        raise ProbeError("ffprobe returned an unexpected JSON document.")
    return payload


def _normalize_probe_payload(payload: dict[str, Any]) -> VideoMetadata:
    format_entry = payload.get("format") or {}
    streams = payload.get("streams") or []

    video_stream = next((stream for stream in streams if stream.get("codec_type") == "video"), None)
    has_audio = any(stream.get("codec_type") == "audio" for stream in streams)

    try:
        duration = _to_float(format_entry.get("duration"))
        if duration is None and video_stream is not None:
            duration = _to_float(video_stream.get("duration"))
    except ValueError as exc:
        raise ProbeError(f"ffprobe reported a non-numeric duration: {exc}") from exc

    if duration is None:
        raise ProbeError("ffprobe output does not contain a media duration.")

    return VideoMetadata(
        duration_seconds=duration,
        width=_to_int(video_stream.get("width")) if video_stream else None,
        height=_to_int(video_stream.get("height")) if video_stream else None,
        has_audio=has_audio,
        format_name=format_entry.get("format_name"),
    )


def _to_float(raw_value: Any) -> float | None:
    if raw_value in (None, "N/A", ""):
        return None
    return float(raw_value)


def _to_int(raw_value: Any) -> int | None:
    if raw_value in (None, "N/A", ""):
        return None
    return int(raw_value)
