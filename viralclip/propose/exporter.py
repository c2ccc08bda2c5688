from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Sequence

from viralclip.models import CandidateWindow, ExtractionReport, SignalSet


def export_windows(windows: Sequence[CandidateWindow], output_path: str | Path) -> Path:
    """Write ranked candidate windows as a JSON array."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps([window.to_dict() for window in windows], indent=2), encoding="utf-8")
    return path


def load_windows(path: str | Path) -> list[CandidateWindow]:
    """Load candidate windows from an exported JSON array."""

    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, list):
        raise ValueError("Window file must be a JSON array.")

    windows: list[CandidateWindow] = []
    for idx, row in enumerate(payload, start=1):
        if not isinstance(row, dict):
            raise ValueError(f"Window row {idx} must be an object.")
        try:
            windows.append(CandidateWindow.from_dict(row))
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError(f"Window row {idx} is invalid: {exc}") from exc
    return windows


def export_signals(signals: SignalSet, duration_seconds: float, output_path: str | Path) -> Path:
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"duration_seconds": duration_seconds, **signals.to_dict()}
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def load_signals(path: str | Path) -> tuple[float, SignalSet]:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict) or "duration_seconds" not in payload:
        raise ValueError("Signal file must be an object with a duration_seconds field.")
    return float(payload["duration_seconds"]), SignalSet.from_dict(payload)


def export_clip_manifest(
    report: ExtractionReport,
    output_dir: str | Path,
    *,
    basename: str = "clips",
    source: dict[str, Any] | None = None,
) -> dict[str, Path]:
    """Export the extraction report as JSON plus a CSV of produced clips."""

    resolved_output_dir = Path(output_dir)
    resolved_output_dir.mkdir(parents=True, exist_ok=True)

    json_path = resolved_output_dir / f"{basename}.json"
    csv_path = resolved_output_dir / f"{basename}.csv"

    payload = {
        "source": source or {},
        "clip_count": len(report.succeeded),
        "failed_count": len(report.failed),
        **report.to_dict(),
    }
    json_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    _write_csv(report, csv_path)

    return {
        "json": json_path,
        "csv": csv_path,
    }


def _write_csv(report: ExtractionReport, path: Path) -> None:
    fields = [
        "index",
        "output_path",
        "start_seconds",
        "end_seconds",
        "duration_seconds",
        "size_bytes",
        "score",
        "confidence",
        "window_type",
        "reason",
    ]

    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fields)
        writer.writeheader()
        for result in report.succeeded:
            writer.writerow(
                {
                    "index": result.index,
                    "output_path": result.output_path,
                    "start_seconds": f"{result.start:.3f}",
                    "end_seconds": f"{result.end:.3f}",
                    "duration_seconds": f"{result.duration_seconds:.2f}",
                    "size_bytes": result.size_bytes,
                    "score": f"{result.score:.1f}",
                    "confidence": _confidence_label(result.score),
                    "window_type": result.window_type,
                    "reason": result.reason,
                }
            )


def _confidence_label(score: float) -> str:
    if score >= 80:
        return "high"
    if score >= 60:
        return "medium"
    return "low"
