from __future__ import annotations

import json
import logging
import random
import re
import time
from pathlib import Path
from typing import Any, Callable

from viralclip.config import EngineSettings, SourceSettings
from viralclip.engine import run_engine, stderr_tail
from viralclip.errors import EngineError, FetchError, InvalidUrlError
from viralclip.ingest.probe import probe_media
from viralclip.models import SourceVideo

logger = logging.getLogger(__name__)

YOUTUBE_URL_PATTERNS = [
    r"^https?://(?:www\.|m\.)?youtube\.com/watch\?v=[\w-]+",
    r"^https?://(?:www\.)?youtube\.com/shorts/[\w-]+",
    r"^https?://youtu\.be/[\w-]+",
    r"^https?://(?:www\.)?youtube\.com/embed/[\w-]+",
]


def is_youtube_url(url: str) -> bool:
    return any(re.match(pattern, url) for pattern in YOUTUBE_URL_PATTERNS)


class SourceResolver:
    """Fetch a remote video into a local file with yt-dlp.

    Each attempt rotates the user agent; failed attempts are retried after a
    randomized delay. Existing local files resolve without network access.
    """

    def __init__(
        self,
        engine: EngineSettings | None = None,
        settings: SourceSettings | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.engine = engine or EngineSettings()
        self.settings = settings or SourceSettings()
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._agent_index = self._rng.randrange(len(self.settings.user_agents)) if self.settings.user_agents else 0

    def resolve(self, url: str, output_dir: str | Path) -> SourceVideo:
        local_path = Path(url).expanduser()
        if local_path.is_file():
            return self._resolve_local(local_path.resolve())

        if not is_youtube_url(url):
            raise InvalidUrlError(f"Unsupported source URL: {url}")

        info = self._with_retries("fetch info", lambda agent: self._fetch_info(url, agent))
        video_id = str(info.get("id") or "source")
        target_dir = Path(output_dir).expanduser().resolve()
        target_dir.mkdir(parents=True, exist_ok=True)

        downloaded = self._with_retries(
            "download",
            lambda agent: self._download(url, target_dir, video_id, agent),
        )

        return SourceVideo(
            local_path=str(downloaded),
            title=str(info.get("title") or video_id),
            duration_seconds=_optional_float(info.get("duration")),
            uploader=info.get("uploader"),
            view_count=_optional_int(info.get("view_count")),
            url=url,
        )

    def _resolve_local(self, path: Path) -> SourceVideo:
        metadata = probe_media(path, ffprobe_path=self.engine.ffprobe_path)
        return SourceVideo(
            local_path=str(path),
            title=path.stem,
            duration_seconds=metadata.duration_seconds,
        )

    def _with_retries(self, label: str, attempt: Callable[[str | None], Any]) -> Any:
        attempts = max(self.settings.max_retries, 1)
        last_error: Exception | None = None

        for attempt_number in range(1, attempts + 1):
            agent = self._next_user_agent()
            try:
                return attempt(agent)
            except (EngineError, FetchError) as exc:
                last_error = exc
                logger.warning("Source %s attempt %d/%d failed: %s", label, attempt_number, attempts, exc)
                if attempt_number < attempts:
                    self._sleep(self._rng.uniform(self.settings.min_delay_seconds, self.settings.max_delay_seconds))

        raise FetchError(f"Source {label} failed after {attempts} attempts: {last_error}") from last_error

    def _next_user_agent(self) -> str | None:
        agents = self.settings.user_agents
        if not agents:
            return None
        agent = agents[self._agent_index % len(agents)]
        self._agent_index += 1
        return agent

    def _fetch_info(self, url: str, user_agent: str | None) -> dict[str, Any]:
        command = [self.engine.ytdlp_path, "--dump-json", "--no-download", "--no-playlist"]
        if user_agent:
            command += ["--user-agent", user_agent]
        completed = run_engine([*command, url])

        if completed.returncode != 0:
            raise FetchError(f"yt-dlp could not read video info: {stderr_tail(completed.stderr)}")
        try:
            info = json.loads(completed.stdout)
        except json.JSONDecodeError as exc:
            raise FetchError("yt-dlp returned invalid JSON video info.") from exc
        if not isinstance(info, dict):
            raise FetchError("yt-dlp returned an unexpected video info document.")
        return info

    def _download(self, url: str, target_dir: Path, video_id: str, user_agent: str | None) -> Path:
        for partial in target_dir.glob(f"{video_id}.*.part"):
            partial.unlink(missing_ok=True)

        command = [
            self.engine.ytdlp_path,
            "-f",
            "bv*[ext=mp4]+ba[ext=m4a]/bv*+ba/b",
            "--merge-output-format",
            "mp4",
            "--no-playlist",
            "-o",
            str(target_dir / f"{video_id}.%(ext)s"),
        ]
        if user_agent:
            command += ["--user-agent", user_agent]
        completed = run_engine([*command, url])

        if completed.returncode != 0:
            raise FetchError(f"yt-dlp download failed: {stderr_tail(completed.stderr)}")

        candidates = sorted(
            (path for path in target_dir.glob(f"{video_id}.*") if path.suffix in {".mp4", ".mkv", ".webm"}),
            key=lambda path: path.stat().st_size,
            reverse=True,
        )
        if not candidates:
            raise FetchError(f"yt-dlp finished but no video file was written to {target_dir}")
        logger.info("Downloaded %s (%.1f MB)", candidates[0].name, candidates[0].stat().st_size / 1024 / 1024)
        return candidates[0]


def _optional_float(raw_value: Any) -> float | None:
    if raw_value in (None, ""):
        return None
    return float(raw_value)


def _optional_int(raw_value: Any) -> int | None:
    if raw_value in (None, ""):
        return None
    return int(raw_value)
