from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from viralclip.errors import SignalError
from viralclip.features.energy import detect_energy_peaks, parse_energy_output
from viralclip.features.loudness import parse_loudness_output
from viralclip.features.scene_changes import detect_scene_changes, parse_scene_output
from viralclip.features.silence import parse_silence_output

SILENCEDETECT_REPORT = """
[silencedetect @ 0x55d] silence_start: 12.5
[silencedetect @ 0x55d] silence_end: 15.75 | silence_duration: 3.25
[silencedetect @ 0x55d] silence_start: -0.02
[silencedetect @ 0x55d] silence_end: 2.5 | silence_duration: 2.52
[silencedetect @ 0x55d] silence_start: 200
"""


def test_parse_silence_output_pairs_markers_and_drops_unmatched_start() -> None:
    intervals = parse_silence_output(SILENCEDETECT_REPORT)

    assert [(interval.start, interval.end) for interval in intervals] == [(12.5, 15.75), (0.0, 2.5)]


def test_parse_silence_output_returns_empty_for_no_markers() -> None:
    assert parse_silence_output("Stream #0:1: Audio: aac") == []


def test_parse_loudness_output_keeps_negative_db_values() -> None:
    report = "[Parsed_volumedetect_0 @ 0x1] mean_volume: -23.4 dB\n[Parsed_volumedetect_0 @ 0x1] max_volume: -1.2 dB\n"

    loudness = parse_loudness_output(report)

    assert loudness is not None
    assert loudness.mean_db == pytest.approx(-23.4)
    assert loudness.max_db == pytest.approx(-1.2)


def test_parse_loudness_output_returns_none_without_both_values() -> None:
    assert parse_loudness_output("mean_volume: -20.0 dB") is None


def test_parse_energy_output_numbers_every_measurement() -> None:
    report = "\n".join(
        [
            "lavfi.astats.Overall.RMS_level=-40.0",
            "lavfi.astats.Overall.RMS_level=-6.0",
            "lavfi.astats.Overall.RMS_level=-inf",
            "lavfi.astats.Overall.RMS_level=-12.0",
        ]
    )

    peaks = parse_energy_output(report, rms_threshold=0.1)

    assert [peak.ordinal_index for peak in peaks] == [1, 3]
    assert peaks[0].rms == pytest.approx(10 ** (-6.0 / 20))


def test_parse_energy_output_accepts_linear_summary_lines() -> None:
    report = "RMS level: 0.05\nRMS level: 0.3\nRMS level: 0.2\n"

    peaks = parse_energy_output(report, rms_threshold=0.1, max_results=1)

    assert [(peak.ordinal_index, peak.rms) for peak in peaks] == [(1, 0.3)]


def test_detect_energy_peaks_reads_report_from_stderr(tmp_path: Path, monkeypatch) -> None:
    report = "lavfi.astats.Overall.RMS_level=-3.0\n"
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda *args, **kwargs: subprocess.CompletedProcess(args=args, returncode=0, stdout="", stderr=report),
    )

    peaks = detect_energy_peaks(tmp_path / "sample.mp4")

    assert len(peaks) == 1
    assert peaks[0].ordinal_index == 0


def test_parse_scene_output_sorts_and_drops_zero_timestamps() -> None:
    report = "\n".join(
        [
            "[Parsed_showinfo_1 @ 0x1] n:   1 pts:  90000 pts_time:45.2 pos: 100",
            "[Parsed_showinfo_1 @ 0x1] n:   0 pts:      0 pts_time:0 pos: 10",
            "[Parsed_showinfo_1 @ 0x1] n:   2 pts:  30000 pts_time:12.04 pos: 50",
            "[Parsed_showinfo_1 @ 0x1] n:   3 pts:  30000 pts_time:12.04 pos: 50",
        ]
    )

    changes = parse_scene_output(report)

    assert [change.timestamp_seconds for change in changes] == [12.04, 45.2]


def test_detect_scene_changes_rejects_unknown_backend(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Unsupported scene backend"):
        detect_scene_changes(tmp_path / "sample.mp4", backend="magic")


def test_opencv_backend_requires_existing_file(tmp_path: Path) -> None:
    with pytest.raises(SignalError, match="Video file not found"):
        detect_scene_changes(tmp_path / "missing.mp4", backend="opencv")
