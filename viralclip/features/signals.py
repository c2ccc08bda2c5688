from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, TypeVar

from viralclip.config import EngineSettings, SignalSettings
from viralclip.errors import EngineError, SignalError
from viralclip.features.energy import detect_energy_peaks
from viralclip.features.loudness import detect_loudness
from viralclip.features.scene_changes import detect_scene_changes
from viralclip.features.silence import detect_silence
from viralclip.ingest.probe import probe_media
from viralclip.models import EnergyPeak, LoudnessSample, SceneChange, SignalSet, SilenceInterval, VideoMetadata

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SignalExtractor:
    """Independent probe/detection calls against the media-analysis engine.

    Each method is a separate engine invocation; none of them shares state with
    another, so callers may run them in any order or skip optional ones.
    """

    def __init__(self, engine: EngineSettings | None = None) -> None:
        self.engine = engine or EngineSettings()

    def probe(self, path: str | Path) -> VideoMetadata:
        return probe_media(path, ffprobe_path=self.engine.ffprobe_path)

    def detect_silence(
        self,
        path: str | Path,
        noise_floor_db: float = -30.0,
        min_duration_seconds: float = 2.0,
    ) -> list[SilenceInterval]:
        return detect_silence(
            path,
            noise_floor_db=noise_floor_db,
            min_duration_seconds=min_duration_seconds,
            ffmpeg_path=self.engine.ffmpeg_path,
        )

    def detect_loudness(self, path: str | Path) -> LoudnessSample | None:
        return detect_loudness(path, ffmpeg_path=self.engine.ffmpeg_path)

    def detect_energy_peaks(
        self,
        path: str | Path,
        rms_threshold: float = 0.1,
        max_results: int = 20,
    ) -> list[EnergyPeak]:
        return detect_energy_peaks(
            path,
            rms_threshold=rms_threshold,
            max_results=max_results,
            ffmpeg_path=self.engine.ffmpeg_path,
        )

    def detect_scene_changes(
        self,
        path: str | Path,
        threshold: float = 0.5,
        *,
        backend: str = "ffmpeg",
        analysis_fps: float = 2.0,
    ) -> list[SceneChange]:
        return detect_scene_changes(
            path,
            threshold,
            backend=backend,
            ffmpeg_path=self.engine.ffmpeg_path,
            analysis_fps=analysis_fps,
        )

    def extract_all(self, path: str | Path, settings: SignalSettings | None = None) -> SignalSet:
        """Run every detector; a failing detector degrades to an empty signal."""

        settings = settings or SignalSettings()
        signals = SignalSet()

        signals.silence = self._degrade(
            "silence",
            lambda: self.detect_silence(
                path,
                noise_floor_db=settings.silence_noise_floor_db,
                min_duration_seconds=settings.silence_min_duration_seconds,
            ),
            [],
            signals,
        )
        signals.loudness = self._degrade("loudness", lambda: self.detect_loudness(path), None, signals)
        signals.energy = self._degrade(
            "energy",
            lambda: self.detect_energy_peaks(
                path,
                rms_threshold=settings.energy_rms_threshold,
                max_results=settings.energy_max_results,
            ),
            [],
            signals,
        )
        if settings.detect_scene_changes:
            signals.scene_changes = self._degrade(
                "scene_changes",
                lambda: self.detect_scene_changes(
                    path,
                    settings.scene_threshold,
                    backend=settings.scene_backend,
                    analysis_fps=settings.scene_analysis_fps,
                ),
                [],
                signals,
            )

        return signals

    @staticmethod
    def _degrade(name: str, work: Callable[[], T], empty: T, signals: SignalSet) -> T:
        try:
            return work()
        except (EngineError, SignalError) as exc:
            logger.warning("Signal '%s' unavailable; continuing without it: %s", name, exc)
            signals.degraded.append(name)
            return empty
