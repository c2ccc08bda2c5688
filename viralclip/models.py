from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal

WindowType = Literal["hook", "energy_peak", "scene_change", "clip"]


class ErrorKind(str, Enum):
    OUTPUT_NOT_CREATED = "OutputNotCreated"
    ENGINE_ERROR = "EngineError"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class VideoMetadata:
    """Immutable snapshot of a single probe call."""

    duration_seconds: float
    width: int | None
    height: int | None
    has_audio: bool
    format_name: str | None


@dataclass(slots=True)
class SilenceInterval:
    start: float
    end: float

    @property
    def midpoint(self) -> float:
        return (self.start + self.end) / 2


@dataclass(slots=True)
class LoudnessSample:
    """Whole-file loudness aggregate."""

    mean_db: float
    max_db: float


@dataclass(slots=True)
class EnergyPeak:
    """RMS measurement above threshold.

    ``ordinal_index`` is the position of the measurement in the detector's
    report, not a timestamp.
    """

    ordinal_index: int
    rms: float


@dataclass(slots=True)
class SceneChange:
    timestamp_seconds: float


@dataclass(slots=True)
class SignalSet:
    """Signals gathered for one source; degraded detectors contribute empty values."""

    silence: list[SilenceInterval] = field(default_factory=list)
    loudness: LoudnessSample | None = None
    energy: list[EnergyPeak] = field(default_factory=list)
    scene_changes: list[SceneChange] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> SignalSet:
        loudness = payload.get("loudness")
        return cls(
            silence=[SilenceInterval(float(row["start"]), float(row["end"])) for row in payload.get("silence", [])],
            loudness=LoudnessSample(float(loudness["mean_db"]), float(loudness["max_db"])) if loudness else None,
            energy=[EnergyPeak(int(row["ordinal_index"]), float(row["rms"])) for row in payload.get("energy", [])],
            scene_changes=[SceneChange(float(row["timestamp_seconds"])) for row in payload.get("scene_changes", [])],
            degraded=[str(name) for name in payload.get("degraded", [])],
        )


@dataclass(slots=True)
class CandidateWindow:
    """Time range of the source considered for extraction, score in [0, 100]."""

    start: float
    end: float
    duration_seconds: float
    score: float
    reason: str
    window_type: WindowType = "clip"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> CandidateWindow:
        start = float(payload["start"])
        end = float(payload["end"])
        return cls(
            start=start,
            end=end,
            duration_seconds=float(payload.get("duration_seconds", end - start)),
            score=float(payload.get("score", 0.0)),
            reason=str(payload.get("reason", "")),
            window_type=payload.get("window_type", "clip"),
        )


@dataclass(slots=True)
class ExtractionJob:
    index: int
    source_path: str
    window: CandidateWindow
    output_path: str
    batch_index: int
    status: JobStatus = JobStatus.QUEUED


@dataclass(slots=True)
class ExtractionResult:
    index: int
    output_path: str
    start: float
    end: float
    duration_seconds: float
    size_bytes: int
    score: float
    reason: str
    window_type: WindowType = "clip"


@dataclass(slots=True)
class ExtractionFailure:
    index: int
    error_kind: ErrorKind
    message: str = ""


@dataclass(slots=True)
class ExtractionReport:
    """Partition of all jobs into succeeded and failed, each ordered by window index."""

    succeeded: list[ExtractionResult] = field(default_factory=list)
    failed: list[ExtractionFailure] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "succeeded": [asdict(result) for result in self.succeeded],
            "failed": [
                {"index": failure.index, "error_kind": failure.error_kind.value, "message": failure.message}
                for failure in self.failed
            ],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ExtractionReport:
        return cls(
            succeeded=[ExtractionResult(**row) for row in payload.get("succeeded", [])],
            failed=[
                ExtractionFailure(
                    index=int(row["index"]),
                    error_kind=ErrorKind(row["error_kind"]),
                    message=str(row.get("message", "")),
                )
                for row in payload.get("failed", [])
            ],
        )


@dataclass(slots=True)
class SourceVideo:
    local_path: str
    title: str
    duration_seconds: float | None = None
    uploader: str | None = None
    view_count: int | None = None
    url: str | None = None


@dataclass(slots=True)
class PipelineResult:
    source: SourceVideo
    metadata: VideoMetadata
    signals: SignalSet
    windows: list[CandidateWindow]
    used_fallback: bool
    report: ExtractionReport
    outputs: dict[str, str] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "source": asdict(self.source),
            "duration_seconds": self.metadata.duration_seconds,
            "signals": {
                "silence_count": len(self.signals.silence),
                "energy_peak_count": len(self.signals.energy),
                "scene_change_count": len(self.signals.scene_changes),
                "loudness": asdict(self.signals.loudness) if self.signals.loudness else None,
                "degraded": list(self.signals.degraded),
            },
            "window_count": len(self.windows),
            "used_fallback": self.used_fallback,
            "clip_count": len(self.report.succeeded),
            "failed_count": len(self.report.failed),
            "clips": [result.output_path for result in self.report.succeeded],
            "outputs": dict(self.outputs),
        }
