from __future__ import annotations

import json
import random
import subprocess
from pathlib import Path

import pytest

import viralclip.ingest.source_resolver as source_resolver
from viralclip.config import SourceSettings
from viralclip.errors import FetchError, InvalidUrlError
from viralclip.ingest.source_resolver import SourceResolver, is_youtube_url
from viralclip.models import VideoMetadata

VIDEO_URL = "https://www.youtube.com/watch?v=abc123XYZ"


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        (VIDEO_URL, True),
        ("https://youtu.be/abc123XYZ", True),
        ("https://www.youtube.com/shorts/abc123XYZ", True),
        ("https://www.youtube.com/embed/abc123XYZ", True),
        ("https://vimeo.com/12345", False),
        ("not a url", False),
    ],
)
def test_is_youtube_url(url: str, expected: bool) -> None:
    assert is_youtube_url(url) is expected


def _completed(command, returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=command, returncode=returncode, stdout=stdout, stderr=stderr)


class _FakeYtDlp:
    def __init__(self, info_failures: int = 0) -> None:
        self.info_failures = info_failures
        self.user_agents: list[str] = []

    def __call__(self, command, *, timeout_seconds=None):
        self.user_agents.append(command[command.index("--user-agent") + 1])
        if "--dump-json" in command:
            if self.info_failures:
                self.info_failures -= 1
                return _completed(command, returncode=1, stderr="HTTP Error 429: Too Many Requests")
            info = {"id": "abc123XYZ", "title": "Launch talk", "duration": 1800, "uploader": "Studio", "view_count": 42}
            return _completed(command, stdout=json.dumps(info))

        template = Path(command[command.index("-o") + 1])
        template.with_name("abc123XYZ.mp4").write_bytes(b"video")
        return _completed(command)


def test_resolve_downloads_with_rotating_agents_and_retries(tmp_path: Path, monkeypatch) -> None:
    fake = _FakeYtDlp(info_failures=2)
    delays: list[float] = []
    monkeypatch.setattr(source_resolver, "run_engine", fake)
    resolver = SourceResolver(
        settings=SourceSettings(user_agents=["ua-1", "ua-2"], max_retries=3, min_delay_seconds=1.0, max_delay_seconds=2.0),
        sleep=delays.append,
        rng=random.Random(7),
    )

    video = resolver.resolve(VIDEO_URL, tmp_path / "downloads")

    assert Path(video.local_path).name == "abc123XYZ.mp4"
    assert video.title == "Launch talk"
    assert video.duration_seconds == pytest.approx(1800.0)
    assert video.view_count == 42
    assert len(delays) == 2
    assert all(1.0 <= delay <= 2.0 for delay in delays)
    assert fake.user_agents[0] != fake.user_agents[1]


def test_resolve_gives_up_after_max_retries(tmp_path: Path, monkeypatch) -> None:
    fake = _FakeYtDlp(info_failures=5)
    monkeypatch.setattr(source_resolver, "run_engine", fake)
    resolver = SourceResolver(settings=SourceSettings(max_retries=2), sleep=lambda _: None)

    with pytest.raises(FetchError, match="failed after 2 attempts"):
        resolver.resolve(VIDEO_URL, tmp_path)


def test_resolve_rejects_unsupported_url(tmp_path: Path) -> None:
    with pytest.raises(InvalidUrlError, match="Unsupported source URL"):
        SourceResolver().resolve("https://vimeo.com/12345", tmp_path)


def test_resolve_local_file_skips_download(tmp_path: Path, monkeypatch) -> None:
    local = tmp_path / "lecture.mp4"
    local.write_bytes(b"video")
    monkeypatch.setattr(
        source_resolver,
        "probe_media",
        lambda path, ffprobe_path="ffprobe": VideoMetadata(95.0, 1280, 720, True, "mp4"),
    )

    video = SourceResolver().resolve(str(local), tmp_path / "downloads")

    assert video.local_path == str(local.resolve())
    assert video.title == "lecture"
    assert video.duration_seconds == pytest.approx(95.0)
    assert video.url is None
