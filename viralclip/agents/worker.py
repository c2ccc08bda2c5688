from __future__ import annotations

import logging
import sys
from dataclasses import asdict
from typing import IO, Any, Callable

from pydantic import ValidationError

from viralclip.agents.contract import AgentRequest, AgentResponse
from viralclip.config import load_settings
from viralclip.logging_config import configure_logging
from viralclip.models import CandidateWindow
from viralclip.pipeline import Coordinator

logger = logging.getLogger(__name__)


def _download(coordinator: Coordinator, params: dict[str, Any]) -> dict[str, Any]:
    work_dir = params.get("work_dir") or coordinator.settings.pipeline.work_dir
    return asdict(coordinator.download(str(params["source"]), work_dir))


def _analyze(coordinator: Coordinator, params: dict[str, Any]) -> dict[str, Any]:
    clip_duration = params.get("clip_duration")
    outcome = coordinator.analyze(
        str(params["video_path"]),
        int(params.get("clip_count", coordinator.settings.pipeline.clip_count)),
        float(clip_duration) if clip_duration is not None else None,
    )
    return outcome.to_dict()


def _extract(coordinator: Coordinator, params: dict[str, Any]) -> dict[str, Any]:
    windows = [CandidateWindow.from_dict(row) for row in params.get("windows", [])]
    report = coordinator.extract(
        str(params["video_path"]),
        windows,
        params.get("out_dir") or coordinator.settings.pipeline.output_dir,
        vertical_crop=bool(params.get("vertical_crop", False)),
    )
    return report.to_dict()


STAGE_HANDLERS: dict[str, Callable[[Coordinator, dict[str, Any]], dict[str, Any]]] = {
    "download": _download,
    "analyze": _analyze,
    "extract": _extract,
}


def handle_request(request: AgentRequest) -> AgentResponse:
    settings = load_settings(request.config_path)
    configure_logging(settings.logging)
    logger.info("Running %s stage for task %s", request.stage, request.task_id)

    coordinator = Coordinator(settings, config_path=request.config_path)
    try:
        output = STAGE_HANDLERS[request.stage](coordinator, request.params)
    except (RuntimeError, ValueError, KeyError, OSError) as exc:
        logger.error("%s stage failed for task %s: %s", request.stage, request.task_id, exc)
        return AgentResponse.failure(exc)
    return AgentResponse.success(output)


def main(stdin: IO[str] | None = None, stdout: IO[str] | None = None) -> int:
    """Run one stage request read from stdin; the response is the last stdout line."""

    source = stdin or sys.stdin
    sink = stdout or sys.stdout
    try:
        request = AgentRequest.model_validate_json(source.read())
    except ValidationError as exc:
        response = AgentResponse(ok=False, error_kind="InvalidRequest", error=str(exc))
    else:
        response = handle_request(request)

    sink.write(response.model_dump_json() + "\n")
    sink.flush()
    return 0 if response.ok else 1


if __name__ == "__main__":
    sys.exit(main())
