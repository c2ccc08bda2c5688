from __future__ import annotations

import logging
from pathlib import Path

from viralclip.config import EngineSettings, TranscodeSettings
from viralclip.engine import run_engine, stderr_tail
from viralclip.errors import EngineError, OutputNotCreated

logger = logging.getLogger(__name__)


class Transcoder:
    """Cuts one clip out of a source with ffmpeg using a fixed output profile."""

    def __init__(
        self,
        settings: TranscodeSettings | None = None,
        engine: EngineSettings | None = None,
    ) -> None:
        self.settings = settings or TranscodeSettings()
        self.engine = engine or EngineSettings()

    def transcode(
        self,
        source_path: str | Path,
        start_seconds: float,
        duration_seconds: float,
        output_path: str | Path,
        *,
        vertical_crop: bool = False,
    ) -> Path:
        """Run ffmpeg once for the requested span.

        Raises EngineError on launch failure or non-zero exit, and OutputNotCreated
        when ffmpeg exits cleanly but the output file is missing.
        """

        output = Path(output_path)
        command = self.build_command(
            source_path=source_path,
            start_seconds=start_seconds,
            duration_seconds=duration_seconds,
            output_path=output,
            vertical_crop=vertical_crop,
        )
        completed = run_engine(command, timeout_seconds=self.settings.timeout_seconds or None)

        if completed.returncode != 0:
            raise EngineError(
                f"ffmpeg exited with code {completed.returncode}: {stderr_tail(completed.stderr, limit=200)}"
            )
        if not output.exists():
            raise OutputNotCreated(f"Output file not created: {output}")

        return output

    def build_command(
        self,
        *,
        source_path: str | Path,
        start_seconds: float,
        duration_seconds: float,
        output_path: str | Path,
        vertical_crop: bool = False,
    ) -> list[str]:
        settings = self.settings
        return [
            self.engine.ffmpeg_path,
            "-hide_banner",
            "-nostats",
            "-y",
            "-ss",
            f"{max(0.0, start_seconds):.2f}",
            "-t",
            f"{duration_seconds:.2f}",
            "-i",
            str(source_path),
            "-c:v",
            settings.video_codec,
            "-preset",
            settings.preset,
            "-crf",
            str(settings.crf),
            "-c:a",
            settings.audio_codec,
            "-b:a",
            settings.audio_bitrate,
            "-vf",
            self.build_video_filter(vertical_crop=vertical_crop),
            "-movflags",
            "+faststart",
            str(output_path),
        ]

    def build_video_filter(self, *, vertical_crop: bool = False) -> str:
        settings = self.settings
        if vertical_crop:
            return (
                "crop=trunc(ih*9/16/2)*2:ih,"
                f"scale={settings.vertical_width}:{settings.vertical_height},"
                f"fps={settings.fps}"
            )

        limit = settings.max_dimension
        return (
            f"scale='if(gt(iw,ih),min(iw,{limit}),-2)':'if(gt(iw,ih),-2,min(ih,{limit}))',"
            f"fps={settings.fps}"
        )
