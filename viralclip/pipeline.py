from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, TypeVar

from viralclip.agents.pool import AgentPool
from viralclip.config import Settings
from viralclip.errors import (
    AgentFailed,
    EngineError,
    FetchError,
    InvalidUrlError,
    ProbeError,
    SignalError,
    SpawnRejected,
)
from viralclip.features.signals import SignalExtractor
from viralclip.ingest.source_resolver import SourceResolver
from viralclip.models import (
    CandidateWindow,
    ExtractionReport,
    PipelineResult,
    SignalSet,
    SourceVideo,
    VideoMetadata,
)
from viralclip.propose.exporter import export_clip_manifest, export_windows
from viralclip.propose.extraction import ExtractionOrchestrator
from viralclip.propose.transcode import Transcoder
from viralclip.scoring.highlight_score import fallback_window, rank_for_request, select_moments

logger = logging.getLogger(__name__)

T = TypeVar("T")
StageRunner = Callable[[int, int, str, Callable[[], Any]], Any]

TOTAL_STEPS = 4

# Errors re-raised with their own type when a stage fails inside an agent.
_AGENT_ERROR_TYPES: dict[str, type[Exception]] = {
    cls.__name__: cls
    for cls in (ProbeError, InvalidUrlError, FetchError, EngineError, SignalError, ValueError, FileNotFoundError)
}


@dataclass(slots=True)
class AnalysisOutcome:
    metadata: VideoMetadata
    signals: SignalSet
    windows: list[CandidateWindow]
    used_fallback: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": asdict(self.metadata),
            "signals": self.signals.to_dict(),
            "windows": [window.to_dict() for window in self.windows],
            "used_fallback": self.used_fallback,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> AnalysisOutcome:
        return cls(
            metadata=VideoMetadata(**payload["metadata"]),
            signals=SignalSet.from_dict(payload.get("signals", {})),
            windows=[CandidateWindow.from_dict(row) for row in payload.get("windows", [])],
            used_fallback=bool(payload.get("used_fallback", False)),
        )


def _run_directly(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    logger.info("[%d/%d] %s", step_index, total_steps, label)
    return work()


class Coordinator:
    """Sequences download, signal extraction, scoring and clip extraction for one source.

    Each stage runs in-process or, with ``use_agents``, inside a worker process
    managed by this coordinator's own AgentPool.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        extractor: SignalExtractor | None = None,
        orchestrator: ExtractionOrchestrator | None = None,
        resolver: SourceResolver | None = None,
        pool: AgentPool | None = None,
        stage_runner: StageRunner | None = None,
        config_path: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self.extractor = extractor or SignalExtractor(settings.engine)
        self.orchestrator = orchestrator or ExtractionOrchestrator(
            Transcoder(settings.transcode, settings.engine),
            batch_size=settings.pipeline.batch_size,
        )
        self.resolver = resolver or SourceResolver(settings.engine, settings.source)
        self.stage_runner = stage_runner or _run_directly
        self.config_path = config_path
        self._pool = pool
        self._sleep = sleep

    @property
    def pool(self) -> AgentPool:
        if self._pool is None:
            self._pool = AgentPool(self.settings.agents.max_concurrent, config_path=self.config_path)
        return self._pool

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown()

    def process(
        self,
        source: str,
        clip_count: int | None = None,
        *,
        clip_duration: float | None = None,
        vertical_crop: bool | None = None,
        use_agents: bool | None = None,
        output_dir: str | Path | None = None,
    ) -> PipelineResult:
        pipeline = self.settings.pipeline
        resolved_count = pipeline.clip_count if clip_count is None else clip_count
        resolved_duration = self.resolve_clip_duration(clip_duration)
        crop = pipeline.vertical_crop if vertical_crop is None else vertical_crop
        agents = pipeline.use_agents if use_agents is None else use_agents
        out_dir = Path(output_dir or pipeline.output_dir)

        if resolved_count < 1:
            raise ValueError("clip_count must be at least 1.")

        logger.info("Processing %s (%d clips requested, agents=%s)", source, resolved_count, agents)

        if agents:
            source_video = self.stage_runner(
                1,
                TOTAL_STEPS,
                "Resolve source",
                lambda: SourceVideo(
                    **self._run_in_agent("download", {"source": source, "work_dir": str(pipeline.work_dir)})
                ),
            )
            analysis = self.stage_runner(
                2,
                TOTAL_STEPS,
                "Analyze signals",
                lambda: AnalysisOutcome.from_dict(
                    self._run_in_agent(
                        "analyze",
                        {
                            "video_path": source_video.local_path,
                            "clip_count": resolved_count,
                            "clip_duration": resolved_duration,
                        },
                    )
                ),
            )
            report = self.stage_runner(
                3,
                TOTAL_STEPS,
                "Extract clips",
                lambda: ExtractionReport.from_dict(
                    self._run_in_agent(
                        "extract",
                        {
                            "video_path": source_video.local_path,
                            "windows": [window.to_dict() for window in analysis.windows],
                            "out_dir": str(out_dir),
                            "vertical_crop": crop,
                        },
                    )
                ),
            )
        else:
            source_video = self.stage_runner(1, TOTAL_STEPS, "Resolve source", lambda: self.download(source, pipeline.work_dir))
            analysis = self.stage_runner(
                2,
                TOTAL_STEPS,
                "Analyze signals",
                lambda: self.analyze(source_video.local_path, resolved_count, resolved_duration),
            )
            report = self.stage_runner(
                3,
                TOTAL_STEPS,
                "Extract clips",
                lambda: self.extract(source_video.local_path, analysis.windows, out_dir, vertical_crop=crop),
            )

        stem = Path(source_video.local_path).stem
        outputs = self.stage_runner(
            4,
            TOTAL_STEPS,
            "Export manifest",
            lambda: self._export(source_video, analysis.windows, report, out_dir, stem),
        )

        return PipelineResult(
            source=source_video,
            metadata=analysis.metadata,
            signals=analysis.signals,
            windows=analysis.windows,
            used_fallback=analysis.used_fallback,
            report=report,
            outputs=outputs,
        )

    def download(self, source: str, work_dir: str | Path) -> SourceVideo:
        return self.resolver.resolve(source, work_dir)

    def analyze(self, video_path: str, clip_count: int, clip_duration: float | None = None) -> AnalysisOutcome:
        """Probe, extract signals and rank windows; applies the whole-video fallback."""

        resolved_duration = self.resolve_clip_duration(clip_duration)
        metadata = self.extractor.probe(video_path)
        logger.info("Video duration: %.1fs", metadata.duration_seconds)

        signals = self.extractor.extract_all(video_path, self.settings.signals)
        ranked, used_fallback = self.score(metadata.duration_seconds, signals, clip_count, resolved_duration)
        return AnalysisOutcome(metadata=metadata, signals=signals, windows=ranked, used_fallback=used_fallback)

    def score(
        self,
        duration_seconds: float,
        signals: SignalSet,
        clip_count: int,
        clip_duration: float | None = None,
    ) -> tuple[list[CandidateWindow], bool]:
        resolved_duration = self.resolve_clip_duration(clip_duration)
        windows = select_moments(
            duration_seconds,
            signals.silence,
            signals.energy,
            resolved_duration,
            scene_changes=signals.scene_changes,
        )

        used_fallback = not windows
        if used_fallback:
            logger.info("No window scored above threshold; using the whole video")
            windows = [fallback_window(duration_seconds)]

        ranked = rank_for_request(windows, clip_count)
        logger.info("Selected %d clip windows", len(ranked))
        return ranked, used_fallback

    def extract(
        self,
        video_path: str,
        windows: list[CandidateWindow],
        out_dir: str | Path,
        *,
        vertical_crop: bool = False,
    ) -> ExtractionReport:
        return self.orchestrator.extract(video_path, windows, out_dir, vertical_crop=vertical_crop)

    def resolve_clip_duration(self, clip_duration: float | None) -> float:
        pipeline = self.settings.pipeline
        resolved = pipeline.max_clip_seconds if clip_duration is None else float(clip_duration)
        if not pipeline.min_clip_seconds <= resolved <= pipeline.max_clip_seconds:
            raise ValueError(
                f"clip_duration {resolved:g}s is outside the "
                f"{pipeline.min_clip_seconds:g}-{pipeline.max_clip_seconds:g}s band."
            )
        return resolved

    def _run_in_agent(self, stage: str, params: dict[str, Any]) -> dict[str, Any]:
        agents = self.settings.agents
        task_id = f"{stage}-{uuid.uuid4().hex[:8]}"

        task = None
        for attempt in range(max(agents.spawn_retries, 0) + 1):
            task = self.pool.spawn(stage, task_id, params)
            if task is not None:
                break
            if attempt < agents.spawn_retries:
                logger.info("Agent pool at capacity; retrying %s in %.1fs", task_id, agents.spawn_retry_delay_seconds)
                self._sleep(agents.spawn_retry_delay_seconds)
        if task is None:
            raise SpawnRejected(f"Agent pool at capacity; {stage} task {task_id} was not started.")

        response = self.pool.wait(task_id, timeout=agents.stage_timeout_seconds or None)
        if not response.ok:
            error_type = _AGENT_ERROR_TYPES.get(response.error_kind or "")
            message = response.error or f"{stage} agent failed"
            if error_type is not None:
                raise error_type(message)
            raise AgentFailed(message, error_kind=response.error_kind)
        return response.output or {}

    def _export(
        self,
        source_video: SourceVideo,
        windows: list[CandidateWindow],
        report: ExtractionReport,
        out_dir: Path,
        stem: str,
    ) -> dict[str, str]:
        exported = export_clip_manifest(report, out_dir, basename=f"{stem}_clips", source=asdict(source_video))
        windows_path = export_windows(windows, out_dir / f"{stem}_windows.json")
        return {"windows": str(windows_path), **{key: str(path) for key, path in exported.items()}}
