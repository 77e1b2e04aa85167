"""
Derivative generation with ffmpeg.

ffmpeg works on paths, so each call writes the source into its own scratch
directory under ``SCRATCH_DIR`` and the directory is removed on every exit
path. All methods block; async callers run them with ``asyncio.to_thread``.
"""

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from clipit.config import (
    FFMPEG_TIMEOUT_SECONDS,
    SCRATCH_DIR,
    THUMBNAIL_OFFSET_SECONDS,
    THUMBNAIL_WIDTH,
)
from clipit.core.uploads.exceptions import TranscodeFailed, TranscodeTimeout
from clipit.core.uploads.models import (
    ALLOWED_OUTPUT_FORMATS,
    DerivedOutput,
    ProcessingParams,
    ReassembledArtifact,
    mime_type_for,
)
from clipit.core.utils.ffmpeg import ffmpeg_command, probe_duration, run_ffmpeg

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_FORMAT = "mp4"
GIF_FPS = 10
GIF_WIDTH = 320
# Keep the seek target this far inside the stream when clamping an offset
END_MARGIN_SECONDS = 0.1


def quality_to_crf(quality: int) -> int:
    """Map quality 0-100 (higher is better) onto the x264/vp9 CRF range 0-51."""
    return max(0, min(51, round(51 - quality / 2)))


def _fmt_seconds(value: float) -> str:
    return f"{value:.3f}"


class DerivativeGenerator:
    """Produces transcoded videos and still frames from reassembled uploads."""

    def __init__(
        self,
        scratch_dir: Path = SCRATCH_DIR,
        timeout: float = FFMPEG_TIMEOUT_SECONDS,
        thumbnail_width: int = THUMBNAIL_WIDTH,
    ):
        self.scratch_dir = Path(scratch_dir)
        self.timeout = timeout
        self.thumbnail_width = thumbnail_width

    @contextmanager
    def _scratch(self, label: str) -> Iterator[Path]:
        self.scratch_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix=f"clipit-{label}-", dir=self.scratch_dir) as tmp:
            yield Path(tmp)

    def _write_source(self, workdir: Path, artifact: ReassembledArtifact) -> Path:
        src = workdir / f"source.{artifact.file_extension}"
        src.write_bytes(artifact.data)
        return src

    def output_format_for(self, artifact: ReassembledArtifact, params: ProcessingParams) -> str:
        if params.output_format:
            return params.output_format
        if not params.reencodes:
            # Stream copy keeps the source container
            return artifact.file_extension
        if artifact.file_extension in ALLOWED_OUTPUT_FORMATS:
            return artifact.file_extension
        return DEFAULT_OUTPUT_FORMAT

    def build_transcode_command(
        self, src: Path, dst: Path, params: ProcessingParams, output_format: str
    ) -> List[str]:
        args: List[str] = []
        if params.trim is not None:
            args += ["-ss", _fmt_seconds(params.trim.start), "-t", _fmt_seconds(params.trim.duration)]
        args += ["-i", str(src)]

        if not params.reencodes:
            args += ["-c", "copy"]
        elif output_format == "gif":
            fps = params.fps or GIF_FPS
            scale = f"scale=-2:{params.resolution}" if params.resolution else f"scale={GIF_WIDTH}:-1"
            args += ["-vf", f"fps={fps:g},{scale}:flags=lanczos", "-an"]
        else:
            crf = quality_to_crf(params.quality) if params.quality is not None else None
            if output_format == "webm":
                args += ["-c:v", "libvpx-vp9", "-b:v", "0", "-crf", str(crf if crf is not None else 31)]
                args += ["-c:a", "libopus"]
            else:
                args += ["-c:v", "libx264", "-preset", "medium", "-crf", str(crf if crf is not None else 23)]
                args += ["-c:a", "aac", "-movflags", "+faststart"]
            if params.resolution:
                args += ["-vf", f"scale=-2:{params.resolution}"]
            if params.fps:
                args += ["-r", f"{params.fps:g}"]

        args.append(str(dst))
        return ffmpeg_command(*args)

    def transcode(
        self, artifact: ReassembledArtifact, params: ProcessingParams, label: str = "job"
    ) -> DerivedOutput:
        """
        Transcode (or cut) an artifact.

        Trim-only requests are a stream copy; anything else re-encodes.

        Raises:
            TranscodeFailed: ffmpeg failed, is missing, or wrote nothing.
            TranscodeTimeout: ffmpeg ran longer than the configured timeout.
        """
        output_format = self.output_format_for(artifact, params)

        with self._scratch(label) as workdir:
            src = self._write_source(workdir, artifact)
            dst = workdir / f"output.{output_format}"
            cmd = self.build_transcode_command(src, dst, params, output_format)
            logger.info("Transcoding %s (%d bytes) -> %s", label, artifact.size, output_format)
            run_ffmpeg(cmd, timeout=self.timeout)

            data = dst.read_bytes() if dst.exists() else b""
            if not data:
                raise TranscodeFailed("Transcoder produced no output", stage="transcoding")

        logger.info("Transcoded %s: %d -> %d bytes", label, artifact.size, len(data))
        return DerivedOutput(
            data=data,
            mime_type=mime_type_for(output_format, artifact.mime_type),
            extension=output_format,
        )

    def _clamp_offset(self, src: Path, at_offset: float) -> float:
        duration = probe_duration(str(src))
        if duration is None:
            return at_offset
        if at_offset >= duration:
            clamped = max(0.0, duration - END_MARGIN_SECONDS)
            logger.info("Thumbnail offset %.2fs beyond duration %.2fs, using %.2fs", at_offset, duration, clamped)
            return clamped
        return at_offset

    def _grab_frame(self, src: Path, dst: Path, offset: float) -> Optional[bytes]:
        cmd = ffmpeg_command(
            "-ss", _fmt_seconds(offset),
            "-i", str(src),
            "-vframes", "1",
            "-vf", f"scale={self.thumbnail_width}:-2",
            str(dst),
        )
        run_ffmpeg(cmd, timeout=self.timeout, stage="thumbnail")
        if dst.exists() and os.path.getsize(dst) > 0:
            return dst.read_bytes()
        return None

    def extract_still_frame(
        self,
        artifact: ReassembledArtifact,
        at_offset: float = THUMBNAIL_OFFSET_SECONDS,
        label: str = "job",
    ) -> DerivedOutput:
        """
        Render one JPEG frame at ``at_offset`` seconds.

        An offset past the end of the media is pulled back inside it; if
        ffmpeg still writes nothing or fails at that offset, the first frame
        is used.

        Raises:
            TranscodeFailed: No frame could be extracted at all.
        """
        with self._scratch(label) as workdir:
            src = self._write_source(workdir, artifact)
            dst = workdir / "thumbnail.jpg"

            offset = self._clamp_offset(src, max(0.0, at_offset))
            try:
                data = self._grab_frame(src, dst, offset)
            except TranscodeTimeout:
                raise
            except TranscodeFailed as exc:
                if offset <= 0:
                    raise
                logger.info("Frame grab at %.2fs failed for %s: %s", offset, label, exc.message)
                data = None
            if data is None and offset > 0:
                logger.info("No frame at %.2fs for %s, falling back to first frame", offset, label)
                data = self._grab_frame(src, dst, 0.0)

            if data is None:
                raise TranscodeFailed("Could not extract a still frame", stage="thumbnail")

        return DerivedOutput(data=data, mime_type="image/jpeg", extension="jpg")
