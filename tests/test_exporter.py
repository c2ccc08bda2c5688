from __future__ import annotations

import csv
import json
from pathlib import Path

import pytest

from viralclip.models import (
    CandidateWindow,
    ErrorKind,
    ExtractionFailure,
    ExtractionReport,
    ExtractionResult,
    SignalSet,
    SilenceInterval,
)
from viralclip.propose.exporter import (
    export_clip_manifest,
    export_signals,
    export_windows,
    load_signals,
    load_windows,
)


def _sample_report() -> ExtractionReport:
    return ExtractionReport(
        succeeded=[
            ExtractionResult(
                index=0,
                output_path="/clips/source_clip_1.mp4",
                start=25.0,
                end=85.0,
                duration_seconds=60.0,
                size_bytes=2048,
                score=80.0,
                reason="High energy segment",
                window_type="energy_peak",
            ),
            ExtractionResult(
                index=2,
                output_path="/clips/source_clip_3.mp4",
                start=0.0,
                end=300.0,
                duration_seconds=300.0,
                size_bytes=4096,
                score=50.0,
                reason="Full video",
            ),
        ],
        failed=[ExtractionFailure(index=1, error_kind=ErrorKind.OUTPUT_NOT_CREATED, message="missing")],
    )


def test_export_windows_round_trips(tmp_path: Path) -> None:
    windows = [CandidateWindow(25.0, 85.0, 60.0, 80.0, "High energy segment", "energy_peak")]

    path = export_windows(windows, tmp_path / "nested" / "windows.json")

    assert load_windows(path) == windows


def test_load_windows_rejects_non_list_payload(tmp_path: Path) -> None:
    path = tmp_path / "windows.json"
    path.write_text(json.dumps({"start": 0}), encoding="utf-8")

    with pytest.raises(ValueError, match="must be a JSON array"):
        load_windows(path)


def test_load_windows_reports_invalid_row(tmp_path: Path) -> None:
    path = tmp_path / "windows.json"
    path.write_text(json.dumps([{"start": 0, "end": 30}, {"end": 60}]), encoding="utf-8")

    with pytest.raises(ValueError, match="Window row 2 is invalid"):
        load_windows(path)


def test_export_signals_keeps_duration(tmp_path: Path) -> None:
    signals = SignalSet(silence=[SilenceInterval(1.0, 4.0)], degraded=["energy"])

    path = export_signals(signals, 312.5, tmp_path / "signals.json")
    duration, restored = load_signals(path)

    assert duration == pytest.approx(312.5)
    assert restored == signals


def test_load_signals_requires_duration(tmp_path: Path) -> None:
    path = tmp_path / "signals.json"
    path.write_text(json.dumps({"silence": []}), encoding="utf-8")

    with pytest.raises(ValueError, match="duration_seconds"):
        load_signals(path)


def test_export_clip_manifest_writes_json_and_csv(tmp_path: Path) -> None:
    exported = export_clip_manifest(_sample_report(), tmp_path, basename="source_clips", source={"title": "Talk"})

    payload = json.loads(exported["json"].read_text(encoding="utf-8"))
    assert payload["source"] == {"title": "Talk"}
    assert payload["clip_count"] == 2
    assert payload["failed_count"] == 1
    assert payload["failed"][0]["error_kind"] == "OutputNotCreated"

    with exported["csv"].open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))

    assert [row["index"] for row in rows] == ["0", "2"]
    assert rows[0]["confidence"] == "high"
    assert rows[1]["confidence"] == "low"
    assert rows[1]["reason"] == "Full video"


def test_report_round_trips_through_manifest_dict() -> None:
    report = _sample_report()

    assert ExtractionReport.from_dict(report.to_dict()) == report
