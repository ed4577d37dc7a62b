"""FFmpeg text watermark overlay."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from mediarelay.shared.exceptions import WatermarkError

logger = logging.getLogger(__name__)


def drawtext_filter(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("'", "\\'").replace(":", "\\:")
    return (
        f"drawtext=text='{escaped}':fontsize=24:fontcolor=white@0.8:x=10:y=h-th-10"
        ":shadowcolor=black@0.5:shadowx=2:shadowy=2"
    )


class FFmpegWatermarker:
    """Burn a text watermark into the bottom-left corner of a video."""

    def __init__(self, *, text: str, ffmpeg_bin: str = "ffmpeg", timeout: int = 3600) -> None:
        self._text = text
        self._ffmpeg_bin = ffmpeg_bin
        self._timeout = timeout

    def build_command(self, input_path: str, output_path: str) -> list[str]:
        return [
            self._ffmpeg_bin,
            "-y",
            "-i",
            input_path,
            "-vf",
            drawtext_filter(self._text),
            "-c:a",
            "copy",
            "-movflags",
            "+faststart",
            output_path,
        ]

    async def apply(self, input_path: str, output_path: str) -> None:
        """Write a watermarked copy of ``input_path`` to ``output_path``.

        Raises:
            WatermarkError: If the input is missing, FFmpeg fails or times out.
        """
        if not os.path.isfile(input_path):
            raise WatermarkError(f"input file not found: {input_path}")
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)

        logger.info("watermarking %s → %s", input_path, output_path)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_command(input_path, output_path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise WatermarkError(f"FFmpeg binary not found: {self._ffmpeg_bin}") from exc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise WatermarkError(f"FFmpeg timed out after {self._timeout}s") from exc
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            err_msg = stderr.decode(errors="replace")[-500:] if stderr else "unknown error"
            raise WatermarkError(f"FFmpeg failed (rc={proc.returncode}): {err_msg}")
        if not os.path.isfile(output_path):
            raise WatermarkError(f"FFmpeg produced no output file: {output_path}")
