from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Sequence

from viralclip.errors import OutputNotCreated
from viralclip.models import (
    CandidateWindow,
    ErrorKind,
    ExtractionFailure,
    ExtractionJob,
    ExtractionReport,
    ExtractionResult,
    JobStatus,
)
from viralclip.propose.transcode import Transcoder

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 3

JobOutcome = ExtractionResult | ExtractionFailure


class ExtractionOrchestrator:
    """Runs transcode jobs in sequential batches, concurrently within a batch.

    The batch size is the only back-pressure: at most ``batch_size`` transcodes
    run at once. A failed job never aborts its batch or the remaining batches.
    """

    def __init__(
        self,
        transcoder: Transcoder | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1.")
        self.transcoder = transcoder or Transcoder()
        self.batch_size = batch_size
        self.progress_callback = progress_callback

    def extract(
        self,
        source_path: str | Path,
        windows: Sequence[CandidateWindow],
        out_dir: str | Path,
        *,
        vertical_crop: bool = False,
    ) -> ExtractionReport:
        output_dir = Path(out_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        jobs = self.plan_jobs(source_path, windows, output_dir)
        batches = [jobs[i : i + self.batch_size] for i in range(0, len(jobs), self.batch_size)]
        logger.info("Extracting %d clips in %d batches of up to %d", len(jobs), len(batches), self.batch_size)

        outcomes: dict[int, JobOutcome] = {}
        for batch in batches:
            with ThreadPoolExecutor(max_workers=len(batch)) as executor:
                futures = {
                    job.index: executor.submit(self._run_job, job, vertical_crop)
                    for job in batch
                }
                for index, future in futures.items():
                    outcomes[index] = future.result()

            if self.progress_callback is not None:
                self.progress_callback(len(outcomes), len(jobs))

        report = ExtractionReport()
        for index in sorted(outcomes):
            outcome = outcomes[index]
            if isinstance(outcome, ExtractionResult):
                report.succeeded.append(outcome)
            else:
                report.failed.append(outcome)

        logger.info("Extracted %d/%d clips", len(report.succeeded), len(jobs))
        return report

    def plan_jobs(
        self,
        source_path: str | Path,
        windows: Sequence[CandidateWindow],
        output_dir: Path,
    ) -> list[ExtractionJob]:
        stem = Path(source_path).stem
        return [
            ExtractionJob(
                index=index,
                source_path=str(source_path),
                window=window,
                output_path=str(output_dir / f"{stem}_clip_{index + 1}.mp4"),
                batch_index=index // self.batch_size,
            )
            for index, window in enumerate(windows)
        ]

    def _run_job(self, job: ExtractionJob, vertical_crop: bool) -> JobOutcome:
        window = job.window
        duration = round(window.end - window.start, 2)
        job.status = JobStatus.RUNNING
        logger.info("Extracting clip %d: %.2fs - %.2fs", job.index + 1, window.start, window.end)

        try:
            output = self.transcoder.transcode(
                job.source_path,
                window.start,
                duration,
                job.output_path,
                vertical_crop=vertical_crop,
            )
            size_bytes = output.stat().st_size
        except (OutputNotCreated, FileNotFoundError) as exc:
            job.status = JobStatus.FAILED
            logger.error("Clip %d failed: %s", job.index + 1, exc)
            return ExtractionFailure(index=job.index, error_kind=ErrorKind.OUTPUT_NOT_CREATED, message=str(exc))
        except Exception as exc:
            job.status = JobStatus.FAILED
            logger.error("Clip %d failed: %s", job.index + 1, exc)
            return ExtractionFailure(index=job.index, error_kind=ErrorKind.ENGINE_ERROR, message=str(exc))

        job.status = JobStatus.SUCCEEDED
        logger.info("Clip %d created: %s (%.2f MB)", job.index + 1, output, size_bytes / 1024 / 1024)
        return ExtractionResult(
            index=job.index,
            output_path=str(output),
            start=window.start,
            end=window.end,
            duration_seconds=duration,
            size_bytes=size_bytes,
            score=window.score,
            reason=window.reason,
            window_type=window.window_type,
        )
