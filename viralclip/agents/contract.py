from __future__ import annotations

import json
from typing import Any, Iterable, Literal

from pydantic import BaseModel, Field, ValidationError

StageType = Literal["download", "analyze", "extract"]
STAGE_TYPES: tuple[str, ...] = ("download", "analyze", "extract")


class AgentRequest(BaseModel):
    """Typed request written to a worker's stdin as a single JSON document."""

    stage: StageType
    task_id: str
    params: dict[str, Any] = Field(default_factory=dict)
    config_path: str | None = None


class AgentResponse(BaseModel):
    """Typed result written by a worker as the last line of its stdout."""

    ok: bool
    output: dict[str, Any] | None = None
    error_kind: str | None = None
    error: str | None = None

    @classmethod
    def success(cls, output: dict[str, Any]) -> AgentResponse:
        return cls(ok=True, output=output)

    @classmethod
    def failure(cls, exc: BaseException) -> AgentResponse:
        return cls(ok=False, error_kind=type(exc).__name__, error=str(exc))


def parse_response(stdout_lines: Iterable[str]) -> AgentResponse | None:
    """Return the last stdout line that parses as a response, if any."""

    for line in reversed(list(stdout_lines)):
        stripped = line.strip()
        if not stripped.startswith("{"):
            continue
        try:
            return AgentResponse.model_validate(json.loads(stripped))
        except (json.JSONDecodeError, ValidationError):
            continue
    return None
