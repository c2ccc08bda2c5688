"""Exception hierarchy for the clip pipeline.

Every error derives from RuntimeError so the CLI can report it as a clean
one-line failure.
"""

from __future__ import annotations


class ViralClipError(RuntimeError):
    """Base exception for viralclip."""


class EngineError(ViralClipError):
    """An external engine could not be launched or exited with a failure."""


class ProbeError(ViralClipError):
    """Media metadata could not be read; fatal to a processing run."""


class SignalError(ViralClipError):
    """A signal detector failed; callers degrade the signal to empty."""


class OutputNotCreated(ViralClipError):
    """The transcoder exited cleanly but produced no output file."""


class SpawnRejected(ViralClipError):
    """The agent pool is at capacity."""


class AgentFailed(ViralClipError):
    """An agent process exited without a successful response."""

    def __init__(self, message: str, error_kind: str | None = None) -> None:
        super().__init__(message)
        self.error_kind = error_kind


class AgentTimeout(AgentFailed):
    """An agent process exceeded its supervisor timeout and was killed."""


class SourceError(ViralClipError):
    """Base class for source resolution failures."""


class InvalidUrlError(SourceError):
    """The source URL is not supported."""


class FetchError(SourceError):
    """The source could not be fetched after all retries."""
