from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from time import perf_counter
from typing import Callable, TypeVar

import typer

from viralclip.agents.contract import STAGE_TYPES
from viralclip.agents.pool import AgentPool
from viralclip.config import Settings, load_settings
from viralclip.errors import SpawnRejected
from viralclip.features.signals import SignalExtractor
from viralclip.logging_config import configure_logging
from viralclip.pipeline import Coordinator
from viralclip.propose.exporter import (
    export_clip_manifest,
    export_signals,
    export_windows,
    load_signals,
    load_windows,
)
from viralclip.propose.extraction import ExtractionOrchestrator
from viralclip.propose.transcode import Transcoder

app = typer.Typer(help="Turn a long-form video into short ranked clips.")
config_app = typer.Typer(help="Configuration commands.")
signals_app = typer.Typer(help="Signal extraction commands.")
agents_app = typer.Typer(help="Agent worker commands.")

app.add_typer(config_app, name="config")
app.add_typer(signals_app, name="signals")
app.add_typer(agents_app, name="agents")

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _run_with_progress(step_index: int, total_steps: int, label: str, work: Callable[[], T]) -> T:
    typer.echo(f"[{step_index}/{total_steps}] {label}...", err=True)
    started_at = perf_counter()
    try:
        result = work()
    except Exception:
        elapsed = perf_counter() - started_at
        typer.echo(f"[{step_index}/{total_steps}] {label} failed after {elapsed:.1f}s", err=True)
        raise
    elapsed = perf_counter() - started_at
    typer.echo(f"[{step_index}/{total_steps}] {label} done in {elapsed:.1f}s", err=True)
    return result


def _report_batch(done: int, total: int) -> None:
    typer.echo(f"  extracted {done}/{total} clips", err=True)


def _bootstrap(config_path: Path) -> Settings:
    settings = load_settings(config_path)
    configure_logging(settings.logging)
    logger.debug("Loaded runtime settings from %s", config_path)
    return settings


def _fail(exc: Exception) -> typer.Exit:
    logger.error("Command failed: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


@config_app.command("show")
def show_config(
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="VIRALCLIP_CONFIG",
        help="Path to YAML configuration file.",
    )
) -> None:
    """Print resolved runtime configuration."""

    settings = _bootstrap(config_path)
    typer.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@signals_app.command("probe")
def probe(
    video_path: str,
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="VIRALCLIP_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Probe a media file and print its metadata as JSON."""

    settings = _bootstrap(config_path)
    try:
        metadata = SignalExtractor(settings.engine).probe(video_path)
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc
    typer.echo(json.dumps(asdict(metadata), indent=2))


@signals_app.command("detect")
def detect(
    video_path: str,
    output_path: Path | None = typer.Option(None, "--output", "-o", help="Optional path for the signals JSON."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="VIRALCLIP_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Run silence, loudness, energy and scene-change detection on a media file."""

    settings = _bootstrap(config_path)
    extractor = SignalExtractor(settings.engine)
    try:
        metadata = _run_with_progress(1, 2, "Probe media", lambda: extractor.probe(video_path))
        signals = _run_with_progress(2, 2, "Detect signals", lambda: extractor.extract_all(video_path, settings.signals))
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    if output_path is not None:
        export_signals(signals, metadata.duration_seconds, output_path)
        logger.info("Signals written to %s", output_path)
    typer.echo(json.dumps({"duration_seconds": metadata.duration_seconds, **signals.to_dict()}, indent=2))


@app.command("score")
def score(
    signals_path: Path = typer.Argument(..., help="Signals JSON written by `signals detect --output`."),
    clip_count: int | None = typer.Option(None, help="Number of clips to keep (at most 10)."),
    clip_duration: float | None = typer.Option(None, help="Clip length in seconds; defaults to the configured maximum."),
    output_path: Path | None = typer.Option(None, "--output", "-o", help="Optional path for the windows JSON."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="VIRALCLIP_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Rank candidate windows from previously extracted signals."""

    settings = _bootstrap(config_path)
    try:
        duration_seconds, signals = load_signals(signals_path)
        coordinator = Coordinator(settings)
        windows, used_fallback = coordinator.score(
            duration_seconds,
            signals,
            clip_count if clip_count is not None else settings.pipeline.clip_count,
            clip_duration,
        )
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    if output_path is not None:
        export_windows(windows, output_path)
    typer.echo(
        json.dumps(
            {
                "used_fallback": used_fallback,
                "window_count": len(windows),
                "windows": [window.to_dict() for window in windows],
            },
            indent=2,
        )
    )


@app.command("extract")
def extract(
    video_path: str,
    windows_path: Path = typer.Argument(..., help="Windows JSON written by `score --output`."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for clips and manifest."),
    vertical_crop: bool | None = typer.Option(None, "--vertical-crop/--no-vertical-crop", help="Crop to 9:16."),
    batch_size: int | None = typer.Option(None, help="Concurrent transcodes per batch."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="VIRALCLIP_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Cut and transcode clips for previously ranked windows."""

    settings = _bootstrap(config_path)
    resolved_output_dir = output_dir or settings.pipeline.output_dir
    try:
        windows = load_windows(windows_path)
        orchestrator = ExtractionOrchestrator(
            Transcoder(settings.transcode, settings.engine),
            batch_size=batch_size or settings.pipeline.batch_size,
            progress_callback=_report_batch,
        )
        report = orchestrator.extract(
            video_path,
            windows,
            resolved_output_dir,
            vertical_crop=settings.pipeline.vertical_crop if vertical_crop is None else vertical_crop,
        )
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc

    exported = export_clip_manifest(report, resolved_output_dir, basename=f"{Path(video_path).stem}_clips")
    typer.echo(
        json.dumps(
            {
                "clip_count": len(report.succeeded),
                "failed_count": len(report.failed),
                **{key: str(path) for key, path in exported.items()},
            },
            indent=2,
        )
    )


@agents_app.command("run-stage")
def run_stage(
    stage: str = typer.Argument(..., help=f"Stage to run: {', '.join(STAGE_TYPES)}."),
    params: str = typer.Option("{}", "--params", "-p", help="Stage parameters as a JSON object."),
    task_id: str = typer.Option("cli", help="Task id reported in agent logs."),
    timeout: float | None = typer.Option(None, help="Kill the agent after this many seconds."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="VIRALCLIP_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Run a single pipeline stage inside an agent process and print its response."""

    settings = _bootstrap(config_path)
    pool = AgentPool(settings.agents.max_concurrent, config_path=str(config_path))
    try:
        parsed_params = json.loads(params)
        if not isinstance(parsed_params, dict):
            raise ValueError("--params must be a JSON object.")
        if pool.spawn(stage, task_id, parsed_params) is None:
            raise SpawnRejected(f"Agent pool at capacity; task {task_id} was not started.")
        response = pool.wait(task_id, timeout=timeout or settings.agents.stage_timeout_seconds or None)
    except json.JSONDecodeError as exc:
        raise _fail(ValueError(f"--params is not valid JSON: {exc}")) from exc
    except (RuntimeError, ValueError) as exc:
        raise _fail(exc) from exc
    finally:
        pool.shutdown()

    typer.echo(response.model_dump_json(indent=2))
    if not response.ok:
        raise typer.Exit(code=1)


@app.command("run")
def run_pipeline(
    source: str = typer.Argument(..., help="YouTube URL or local video path."),
    clip_count: int | None = typer.Option(None, help="Number of clips to produce (at most 10)."),
    clip_duration: float | None = typer.Option(None, help="Clip length in seconds; defaults to the configured maximum."),
    output_dir: Path | None = typer.Option(None, "--output-dir", "-o", help="Directory for clips and manifest."),
    vertical_crop: bool | None = typer.Option(None, "--vertical-crop/--no-vertical-crop", help="Crop to 9:16."),
    use_agents: bool | None = typer.Option(None, "--agents/--in-process", help="Run each stage in an agent process."),
    config_path: Path = typer.Option(
        Path("configs/default.yaml"),
        "--config",
        "-c",
        envvar="VIRALCLIP_CONFIG",
        help="Path to YAML configuration file.",
    ),
) -> None:
    """Run the complete pipeline: download, detect signals, score and extract clips."""

    settings = _bootstrap(config_path)
    coordinator = Coordinator(settings, stage_runner=_run_with_progress, config_path=str(config_path))
    coordinator.orchestrator.progress_callback = _report_batch

    try:
        result = coordinator.process(
            source,
            clip_count,
            clip_duration=clip_duration,
            vertical_crop=vertical_crop,
            use_agents=use_agents,
            output_dir=output_dir,
        )
    except (RuntimeError, ValueError) as exc:
        logger.error("Pipeline failed: %s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    finally:
        coordinator.close()

    typer.echo(json.dumps(result.summary(), indent=2))


if __name__ == "__main__":
    app()
