"""
Core utility modules for FFmpeg operations.
"""

from clipit.core.utils.ffmpeg import (
    ffmpeg_command,
    filter_benign_warnings,
    probe_duration,
    run_ffmpeg,
)

__all__ = ["ffmpeg_command", "filter_benign_warnings", "probe_duration", "run_ffmpeg"]
