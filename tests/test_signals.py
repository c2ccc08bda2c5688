from __future__ import annotations

from pathlib import Path

from viralclip.config import SignalSettings
from viralclip.errors import EngineError, SignalError
from viralclip.features.signals import SignalExtractor
from viralclip.models import EnergyPeak, LoudnessSample, SceneChange, SilenceInterval


class _StubExtractor(SignalExtractor):
    def __init__(self, failing: set[str] | None = None) -> None:
        super().__init__()
        self.failing = failing or set()
        self.scene_calls: list[dict[str, object]] = []

    def detect_silence(self, path, noise_floor_db=-30.0, min_duration_seconds=2.0):
        if "silence" in self.failing:
            raise EngineError("ffmpeg executable was not found")
        return [SilenceInterval(100.0, 110.0)]

    def detect_loudness(self, path):
        if "loudness" in self.failing:
            raise EngineError("volumedetect crashed")
        return LoudnessSample(mean_db=-20.0, max_db=-1.0)

    def detect_energy_peaks(self, path, rms_threshold=0.1, max_results=20):
        if "energy" in self.failing:
            raise SignalError("astats unavailable")
        return [EnergyPeak(15, 0.4)]

    def detect_scene_changes(self, path, threshold=0.5, *, backend="ffmpeg", analysis_fps=2.0):
        self.scene_calls.append({"threshold": threshold, "backend": backend})
        if "scene_changes" in self.failing:
            raise SignalError("unable to open video")
        return [SceneChange(42.0)]


def test_extract_all_collects_every_signal(tmp_path: Path) -> None:
    extractor = _StubExtractor()

    signals = extractor.extract_all(tmp_path / "sample.mp4", SignalSettings(scene_threshold=0.3))

    assert signals.silence == [SilenceInterval(100.0, 110.0)]
    assert signals.loudness == LoudnessSample(mean_db=-20.0, max_db=-1.0)
    assert signals.energy == [EnergyPeak(15, 0.4)]
    assert signals.scene_changes == [SceneChange(42.0)]
    assert signals.degraded == []
    assert extractor.scene_calls == [{"threshold": 0.3, "backend": "ffmpeg"}]


def test_extract_all_degrades_failed_detectors_to_empty(tmp_path: Path) -> None:
    extractor = _StubExtractor(failing={"silence", "loudness", "scene_changes"})

    signals = extractor.extract_all(tmp_path / "sample.mp4")

    assert signals.silence == []
    assert signals.loudness is None
    assert signals.scene_changes == []
    assert signals.energy == [EnergyPeak(15, 0.4)]
    assert signals.degraded == ["silence", "loudness", "scene_changes"]


def test_extract_all_skips_scene_detection_when_disabled(tmp_path: Path) -> None:
    extractor = _StubExtractor()

    signals = extractor.extract_all(tmp_path / "sample.mp4", SignalSettings(detect_scene_changes=False))

    assert signals.scene_changes == []
    assert extractor.scene_calls == []


def test_signal_set_round_trips_through_dict() -> None:
    extractor = _StubExtractor(failing={"energy"})
    signals = extractor.extract_all("sample.mp4")

    restored = type(signals).from_dict(signals.to_dict())

    assert restored == signals
