"""Transcoder interface and the ffmpeg-backed implementation.

The encoder binary is configuration (FFMPEG_BINARY), never hard-coded. The
subprocess is run with asyncio so the event loop keeps serving other
requests while a finalize call waits on it.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from vidstream.config import settings
from vidstream.errors import TranscodeError

logger = logging.getLogger(__name__)

# Keep the tail of stderr only; ffmpeg is chatty.
_STDERR_TAIL = 2000


class Transcoder(ABC):
    """Converts a video file into a WebM container."""

    @abstractmethod
    async def transcode(self, input_path: Path, output_path: Path) -> None:
        """Write a WebM rendition of `input_path` to `output_path`.

        Raises TranscodeError on any failure.
        """


class FFmpegTranscoder(Transcoder):
    def __init__(self, binary: str | None = None, timeout: float | None = None):
        self.binary = binary or settings.FFMPEG_BINARY
        self.timeout = timeout if timeout is not None else settings.TRANSCODE_TIMEOUT_SECONDS

    def build_command(self, input_path: Path, output_path: Path) -> list[str]:
        return [
            self.binary,
            "-hide_banner",
            "-y",
            "-i", str(input_path),
            "-c:v", "libvpx-vp9",
            "-c:a", "libopus",
            "-f", "webm",
            str(output_path),
        ]

    async def transcode(self, input_path: Path, output_path: Path) -> None:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(input_path, output_path)
        logger.info(f"Transcoding {input_path} -> {output_path}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise TranscodeError(f"Encoder not available ({self.binary}): {e}") from e

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise TranscodeError(f"Transcoding timed out after {self.timeout:g}s")

        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace")[-_STDERR_TAIL:].strip()
            logger.error(f"Encoder exited with {proc.returncode}: {tail}")
            raise TranscodeError(f"Encoder exited with code {proc.returncode}")

        if not output_path.is_file():
            raise TranscodeError("Encoder produced no output file")


transcoder = FFmpegTranscoder()
