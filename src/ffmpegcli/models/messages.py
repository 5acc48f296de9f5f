#!/usr/bin/python3

import msgspec

from ..errors import FFmpegError, FieldParseError, LineParseError
from .progress import ProgressRecord

class BaseMessage(msgspec.Struct, tag=True):
    pass

class ProcessStartedMessage(BaseMessage, tag="process-started"):
    pid: int
    command: list[str]

class ProgressMessage(BaseMessage, tag="progress"):
    progress: ProgressRecord

class ProgressErrorMessage(BaseMessage, tag="progress-error"):
    text: str
    line: str | None = None
    key: str | None = None
    value: str | None = None

    @classmethod
    def from_error(cls, error: FFmpegError) -> "ProgressErrorMessage":
        match error:
            case LineParseError():
                return cls(text=str(error), line=error.line)
            case FieldParseError():
                return cls(text=str(error), key=error.key, value=error.value)
        return cls(text=str(error))

class ProcessExitMessage(BaseMessage, tag="process-exit"):
    returncode: int
    """
    Exit code produced by ffmpeg.
    https://github.com/FFmpeg/FFmpeg/blob/a218cafe4d3be005ab0c61130f90db4d21afb5db/libavutil/error.c#L37-L107
    """

    stderr: str | None = None
    """ Captured error output, if it was requested. """
