#!/usr/bin/python3


class FFmpegError(Exception):
    """Base class for errors raised or reported by this package."""


class SpawnError(FFmpegError):
    """
    Exception indicating that the ffmpeg binary could not be launched at all (missing binary,
    insufficient permissions, etc.).  This is never retried.
    """

    def __init__(self, command: list[str], reason: str):
        super().__init__(f"Failed to launch '{command[0]}': {reason}")
        self.command = command
        self.reason = reason


class StreamReadError(FFmpegError):
    """
    Exception indicating that reading the progress stream failed.  The progress sequence ends
    once this is raised.
    """


class ProgressParseError(FFmpegError):
    """
    Base class for problems found while parsing progress output.

    Instances of this are yielded inline from the progress sequence instead of being raised, so
    the consumer can decide whether or not to abort.
    """

    def __eq__(self, other: object) -> bool:
        if type(self) is not type(other):
            return NotImplemented
        return vars(self) == vars(other) and self.args == other.args

    __hash__ = None  # type: ignore[assignment]


class LineParseError(ProgressParseError):
    """A line that isn't a ``key=value`` pair."""

    def __init__(self, line: str):
        super().__init__(f"Invalid key=value pair: {line!r}")
        self.line = line


class FieldParseError(ProgressParseError):
    """
    A recognized key whose value could not be converted to the expected type.

    This is also used for failures affecting the whole progress unit (an unknown terminator
    value, or the stream ending before a terminator was seen); in that case no record is
    produced for the unit.
    """

    def __init__(self, key: str, value: str | None, reason: str):
        super().__init__(f"Failed to parse {key}={value!r}: {reason}")
        self.key = key
        self.value = value
        self.reason = reason
