#!/usr/bin/python3

"""
Parser for ffmpeg's ``-progress`` output.

ffmpeg reports progress as a series of line-delimited key / value pairs with a "progress" key
marking the end of a given progress update:

    frame=10
    fps=25.0
    ...
    progress=continue

Pairs are accumulated until the terminator is seen, at which point they are finalized into an
immutable ProgressRecord.  Problems with individual lines or values are reported inline as
ProgressParseError instances so the consumer can decide whether or not to abort.
"""

import asyncio
import datetime
import enum
import re
from typing import Annotated, Any, AsyncIterator, Callable

import msgspec

from .errors import FieldParseError, LineParseError, ProgressParseError, StreamReadError
from .models.progress import ProgressRecord, ProgressStatus

ProgressEvent = ProgressRecord | ProgressParseError

TERMINATOR_KEY = "progress"

_STREAM_QUALITY_RE = re.compile(r"stream_(\d+)_(\d+)_q")
_TIMESTAMP_RE = re.compile(r"(-?)(\d+):(\d{1,2}):(\d{1,2}(?:\.\d+)?)")

_NonNegativeInt = Annotated[int, msgspec.Meta(ge=0)]


def _convert_to(type_: Any) -> Callable[[str], Any]:
    def _convert(value: str) -> Any:
        return msgspec.convert(value, type=type_, strict=False)

    return _convert


def _microseconds(value: str) -> datetime.timedelta:
    return datetime.timedelta(microseconds=msgspec.convert(value, type=int, strict=False))


def _timestamp(value: str) -> datetime.timedelta:
    match = _TIMESTAMP_RE.fullmatch(value)
    if not match:
        raise ValueError("expected a timestamp in [-]HH:MM:SS.ffffff form")
    sign, hours, minutes, seconds = match.groups()
    delta = datetime.timedelta(hours=int(hours), minutes=int(minutes), seconds=float(seconds))
    return -delta if sign else delta


def _speed(value: str) -> float:
    return msgspec.convert(value.removesuffix("x").rstrip(), type=float, strict=False)


# maps ffmpeg's key to the ProgressRecord field it populates
# out_time_ms is reported in microseconds, same as out_time_us (mislabeled upstream)
_FIELD_CONVERTERS: dict[str, tuple[str, Callable[[str], Any]]] = {
    "frame": ("frame", _convert_to(_NonNegativeInt)),
    "fps": ("fps", _convert_to(float)),
    "bitrate": ("bitrate", str),
    "total_size": ("total_size", _convert_to(_NonNegativeInt)),
    "out_time_us": ("out_time", _microseconds),
    "out_time_ms": ("out_time", _microseconds),
    "out_time": ("out_time", _timestamp),
    "dup_frames": ("dup_frames", _convert_to(_NonNegativeInt)),
    "drop_frames": ("drop_frames", _convert_to(_NonNegativeInt)),
    "speed": ("speed", _speed),
}


def split_line(line: str) -> tuple[str, str] | None:
    """
    Splits a ``key=value`` line.  Returns None if there's no separator.

    ffmpeg has been seen putting in stray spaces around the separator, so those are trimmed.
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    return key.rstrip(), value.lstrip()


class BuilderState(enum.Enum):
    # at least one pair has been seen since the last terminator
    ACCUMULATING = enum.auto()

    # nothing pending; either nothing was read yet or the last unit was finalized
    EMITTED = enum.auto()


class ProgressBuilder:
    """
    Mutable accumulator for a single progress unit.

    The builder moves to ACCUMULATING on the first pair of a unit and back to EMITTED once the
    unit is finalized or discarded; the pending fields are only ever non-empty while
    accumulating.
    """

    def __init__(self) -> None:
        self.state = BuilderState.EMITTED
        self._fields: dict[str, Any] = {}
        self._stream_quality: dict[str, float] = {}

    @property
    def pending(self) -> bool:
        return self.state == BuilderState.ACCUMULATING

    def touch(self) -> None:
        self.state = BuilderState.ACCUMULATING

    def set(self, field: str, value: Any) -> None:
        self.touch()
        self._fields[field] = value

    def unset(self, field: str) -> None:
        self.touch()
        self._fields.pop(field, None)

    def set_stream_quality(self, stream: str, value: float | None) -> None:
        self.touch()
        if value is None:
            self._stream_quality.pop(stream, None)
        else:
            self._stream_quality[stream] = value

    def finalize(self, status: ProgressStatus) -> ProgressRecord:
        record = ProgressRecord(
            **self._fields, stream_quality=dict(self._stream_quality), status=status
        )
        self.discard()
        return record

    def discard(self) -> None:
        self._fields.clear()
        self._stream_quality.clear()
        self.state = BuilderState.EMITTED


class ProgressParser:
    """
    Line-oriented parser for ffmpeg progress output.

    Each fed line produces at most one event: a finalized record or a parse error.  Once an
    "end" terminator is seen the parser is finished and must not be fed further.
    """

    def __init__(self) -> None:
        self.builder = ProgressBuilder()
        self.finished = False

    def feed(self, line: str | bytes) -> ProgressEvent | None:
        if self.finished:
            raise RuntimeError("progress output has already ended")
        if isinstance(line, bytes):
            line = line.decode("utf8", errors="replace")
        if not line.strip():
            return None

        pair = split_line(line)
        if pair is None:
            return LineParseError(line.rstrip("\r\n"))
        key, value = pair

        if key == TERMINATOR_KEY:
            return self._terminate(value)

        if key in _FIELD_CONVERTERS:
            field, converter = _FIELD_CONVERTERS[key]
            if value == "N/A":
                self.builder.unset(field)
                return None
            try:
                self.builder.set(field, converter(value))
            except (ValueError, OverflowError, msgspec.ValidationError) as exc:
                # timedelta raises OverflowError for timestamps beyond its range
                # the previous value for this field is not kept; a bad value means unknown
                self.builder.unset(field)
                return FieldParseError(key, value, str(exc))
            return None

        stream_match = _STREAM_QUALITY_RE.fullmatch(key)
        if stream_match:
            stream = "_".join(stream_match.groups())
            if value == "N/A":
                self.builder.set_stream_quality(stream, None)
                return None
            try:
                self.builder.set_stream_quality(stream, _convert_to(float)(value))
            except msgspec.ValidationError as exc:
                self.builder.set_stream_quality(stream, None)
                return FieldParseError(key, value, str(exc))
            return None

        # unknown keys are ignored so newer ffmpeg releases don't break parsing
        self.builder.touch()
        return None

    def close(self) -> ProgressEvent | None:
        """
        Marks the end of the input.  Returns an error if a unit was left without a terminator.
        """
        was_pending = self.builder.pending and not self.finished
        self.finished = True
        if was_pending:
            self.builder.discard()
            return FieldParseError(
                TERMINATOR_KEY, None, "stream ended before the progress terminator"
            )
        return None

    def _terminate(self, value: str) -> ProgressEvent:
        try:
            status = ProgressStatus(value)
        except ValueError:
            self.builder.discard()
            return FieldParseError(TERMINATOR_KEY, value, "unknown progress status")
        if status == ProgressStatus.END:
            self.finished = True
        return self.builder.finalize(status)


async def parse_progress(stream: asyncio.StreamReader | None) -> AsyncIterator[ProgressEvent]:
    """
    Yields progress records and inline parse errors from an open asyncio stream.

    The sequence ends when the stream is closed or right after the "progress=end" record.
    Read failures raise StreamReadError.
    """
    if stream is None:
        return
    parser = ProgressParser()
    while not parser.finished:
        try:
            raw_line = await stream.readline()
        except (OSError, ValueError) as exc:
            # ValueError is raised by readline() if a line exceeds the stream's buffer limit
            raise StreamReadError(f"Failed to read progress output: {exc}") from exc
        if not raw_line:
            event = parser.close()
            if event is not None:
                yield event
            return
        event = parser.feed(raw_line)
        if event is not None:
            yield event
