"""
FFmpeg utility functions with error handling and logging.

Every invocation runs with a hard timeout. Failures surface as
``TranscodeFailed`` carrying the tail of ffmpeg's stderr; a process killed
for running too long surfaces as ``TranscodeTimeout``.
"""

import logging
import re
import subprocess
from typing import Optional

from clipit.config import FFMPEG_BINARY, FFMPEG_TIMEOUT_SECONDS, FFPROBE_BINARY
from clipit.core.uploads.exceptions import TranscodeFailed, TranscodeTimeout

logger = logging.getLogger(__name__)

# Patterns for known benign warnings that should be filtered
BENIGN_WARNING_PATTERNS = [
    r"\[av1 @ .*\] Your platform doesn't suppport hardware accelerated AV1 decoding",
    r"\[av1 @ .*\] Failed to get pixel format",
    r"\[av1 @ .*\] Missing Sequence Header",
    r"\[.*\] .* does not support hardware acceleration",
    r"\[.*\] .* hardware acceleration disabled",
]


def filter_benign_warnings(stderr: str) -> tuple[str, list[str]]:
    """
    Filter out known benign warnings from FFmpeg stderr.

    Args:
        stderr: Raw stderr output from FFmpeg.

    Returns:
        Tuple of (filtered_stderr, filtered_warnings_list).
    """
    lines = stderr.split("\n")
    filtered_lines = []
    filtered_warnings = []

    for line in lines:
        is_benign = False
        for pattern in BENIGN_WARNING_PATTERNS:
            if re.search(pattern, line, re.IGNORECASE):
                is_benign = True
                filtered_warnings.append(line)
                break

        if not is_benign:
            filtered_lines.append(line)

    return "\n".join(filtered_lines), filtered_warnings


def _with_log_level(cmd: list[str], log_level: str) -> list[str]:
    if "-loglevel" in cmd:
        return cmd
    insert_pos = 1
    if len(cmd) > 1 and cmd[1] == "-y":
        insert_pos = 2
    return cmd[:insert_pos] + ["-loglevel", log_level] + cmd[insert_pos:]


def _as_text(output) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def run_ffmpeg(
    cmd: list[str],
    suppress_warnings: bool = True,
    log_level: str = "warning",
    timeout: Optional[float] = None,
    stage: str = "transcoding",
) -> subprocess.CompletedProcess:
    """
    Run an FFmpeg command.

    Args:
        cmd: FFmpeg command as list of arguments.
        suppress_warnings: If True, drop known benign warnings from stderr.
        log_level: FFmpeg log level inserted after the binary name.
        timeout: Seconds before the process is killed. Defaults to
            ``FFMPEG_TIMEOUT_SECONDS``.
        stage: Finalization stage reported on failure.

    Returns:
        CompletedProcess instance.

    Raises:
        TranscodeTimeout: If the process exceeds the timeout.
        TranscodeFailed: If the binary is missing or exits non-zero.
    """
    if suppress_warnings:
        cmd = _with_log_level(cmd, log_level)

    timeout = FFMPEG_TIMEOUT_SECONDS if timeout is None else timeout

    try:
        result = subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        logger.error("FFmpeg timed out after %ss: %s", timeout, " ".join(cmd[:4]))
        raise TranscodeTimeout(
            f"Processing exceeded {timeout:g} seconds",
            diagnostics=_as_text(e.stderr),
            stage=stage,
        ) from e
    except FileNotFoundError as e:
        logger.error("FFmpeg binary not found: %s", cmd[0])
        raise TranscodeFailed(
            f"Media tool not available: {cmd[0]}",
            stage=stage,
        ) from e
    except subprocess.CalledProcessError as e:
        stderr = _as_text(e.stderr)
        if suppress_warnings and stderr:
            stderr, warnings = filter_benign_warnings(stderr)
            if warnings:
                logger.debug(f"Filtered {len(warnings)} benign FFmpeg warnings")
        logger.error(f"FFmpeg failed (exit {e.returncode}): {stderr[-500:]}")
        raise TranscodeFailed(
            "Media processing failed",
            diagnostics=stderr,
            stage=stage,
        ) from e

    if suppress_warnings and result.stderr:
        filtered_stderr, warnings = filter_benign_warnings(result.stderr)
        if warnings:
            logger.debug(f"Filtered {len(warnings)} benign FFmpeg warnings")
        result.stderr = filtered_stderr

    return result


def probe_duration(path: str, timeout: float = 30) -> Optional[float]:
    """
    Return the container duration in seconds, or None when it cannot be read.
    """
    cmd = [
        FFPROBE_BINARY,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        path,
    ]
    try:
        result = subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (subprocess.SubprocessError, FileNotFoundError) as e:
        logger.warning("ffprobe could not read duration of %s: %s", path, e)
        return None

    try:
        duration = float(result.stdout.strip())
    except ValueError:
        return None
    return duration if duration > 0 else None


def ffmpeg_command(*args: str) -> list[str]:
    """Build an ffmpeg argv with overwrite enabled."""
    return [FFMPEG_BINARY, "-y", *args]
