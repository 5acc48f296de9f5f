#!/usr/bin/python3

"""
Wraps the ffmpeg command-line tool, using ``-progress`` to report structured progress.

    builder = (
        FFmpegBuilder(stderr=StdioMode.PIPE)
        .option(Flag("nostdin"))
        .option(Flag("y"))
        .input(MediaFile("input.mkv"))
        .output(
            MediaFile("output.mp4")
            .option(Option("vcodec", "libx265"))
            .option(Option("crf", "28"))
        )
    )
    ffmpeg = await builder.run()
    async for event in ffmpeg.progress:
        print(event)
    result = await ffmpeg.process.wait_with_output()
"""

from .builder import (
    FFmpegBuilder,
    Flag,
    MediaFile,
    Option,
    Parameter,
    ProgressTransport,
    StdioMode,
)
from .errors import (
    FFmpegError,
    FieldParseError,
    LineParseError,
    ProgressParseError,
    SpawnError,
    StreamReadError,
)
from .models.progress import ProgressRecord, ProgressStatus
from .progress import ProgressEvent, ProgressParser, parse_progress
from .runner import CompletedFFmpeg, FFmpeg, FFmpegProcess, ProgressStream

__all__ = [
    "CompletedFFmpeg",
    "FFmpeg",
    "FFmpegBuilder",
    "FFmpegError",
    "FFmpegProcess",
    "FieldParseError",
    "Flag",
    "LineParseError",
    "MediaFile",
    "Option",
    "Parameter",
    "ProgressEvent",
    "ProgressParseError",
    "ProgressParser",
    "ProgressRecord",
    "ProgressStatus",
    "ProgressStream",
    "ProgressTransport",
    "SpawnError",
    "StdioMode",
    "StreamReadError",
    "parse_progress",
]
