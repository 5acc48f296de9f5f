#!/usr/bin/python3

import datetime
import enum
import re
from typing import Annotated

import msgspec

_BITRATE_KBITS_RE = re.compile(r"^\s*([0-9.eE+-]+)\s*kbits/s\s*$")


class ProgressStatus(enum.StrEnum):
    """What ffmpeg is going to do after a progress update."""

    CONTINUE = "continue"

    # ffmpeg has finished processing; nothing is reported after this
    END = "end"


class ProgressRecord(msgspec.Struct, frozen=True, kw_only=True):
    """
    Structured representation of ffmpeg progress output.
    Available fields are listed under fftools/ffmpeg.c::print_report()

    Every field is optional, as ffmpeg doesn't document which keys are guaranteed to be present;
    keys reported as "N/A" are left as None.
    """

    frame: Annotated[int, msgspec.Meta(ge=0)] | None = None
    fps: float | None = None

    # represented as a numeric value with suffix "kbits/s"
    bitrate: str | None = None

    # output size in bytes, if output is non-null
    total_size: Annotated[int, msgspec.Meta(ge=0)] | None = None

    # output stream timestamp; this may be negative at the start of some encodes
    out_time: datetime.timedelta | None = None

    dup_frames: Annotated[int, msgspec.Meta(ge=0)] | None = None
    drop_frames: Annotated[int, msgspec.Meta(ge=0)] | None = None

    # realtime multiple; ffmpeg reports this with a trailing 'x' and as "N/A" if negative
    speed: float | None = None

    # encoder quality per output stream, keyed by "<file index>_<stream index>"
    stream_quality: dict[str, float] = msgspec.field(default_factory=dict)

    status: ProgressStatus = ProgressStatus.CONTINUE

    @property
    def bitrate_kbits(self) -> float | None:
        if not self.bitrate:
            return None
        match = _BITRATE_KBITS_RE.match(self.bitrate)
        if not match:
            return None
        try:
            return float(match.group(1))
        except ValueError:
            return None

    @property
    def is_end(self) -> bool:
        return self.status == ProgressStatus.END
