#!/usr/bin/python3

import datetime
import sys

import colorama.ansi
import msgspec

from .models import messages as msgtypes
from .models.progress import ProgressRecord


class BaseMessageHandler(msgspec.Struct):
    async def handle_message(self, msg: msgtypes.BaseMessage) -> None:
        raise NotImplementedError()


class JSONLMessageHandler(BaseMessageHandler, tag="jsonl"):
    # outputs messages as newline-delimited JSON
    # this is intended for applications that read this tool's standard output
    async def handle_message(self, msg: msgtypes.BaseMessage) -> None:
        print(msgspec.json.encode(msg).decode("utf8"), flush=True)


def _sizeof_fmt(num: int | float, suffix: str = "B") -> str:
    # https://stackoverflow.com/a/1094933
    for unit in ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi"):
        if abs(num) < 1024.0:
            return f"{num:3.2f}{unit}{suffix}"
        num /= 1024.0
    return f"{num:.2f}Yi{suffix}"


def _timestamp_fmt(delta: datetime.timedelta) -> str:
    # matches the HH:MM:SS.cc form ffmpeg uses in its own stats line
    sign = "-" if delta < datetime.timedelta(0) else ""
    centis = abs(delta) // datetime.timedelta(milliseconds=10)
    secs, centis = divmod(centis, 100)
    mins, secs = divmod(secs, 60)
    hours, mins = divmod(mins, 60)
    return f"{sign}{hours:02d}:{mins:02d}:{secs:02d}.{centis:02d}"


def format_progress(progress: ProgressRecord) -> str:
    """
    Renders a progress record similarly to ffmpeg's own stats line.  Missing values are shown as
    "N/A".
    """
    fields = {
        "frame": progress.frame,
        "fps": f"{progress.fps:.1f}" if progress.fps is not None else None,
        "size": _sizeof_fmt(progress.total_size) if progress.total_size is not None else None,
        "time": _timestamp_fmt(progress.out_time) if progress.out_time is not None else None,
        "bitrate": progress.bitrate,
        "speed": f"{progress.speed:.3g}x" if progress.speed is not None else None,
    }
    return " ".join(f"{k}={'N/A' if v is None else v}" for k, v in fields.items())


class StatsMessageHandler(BaseMessageHandler, tag="stats"):
    # outputs a single, continuously updated status line
    line_active: bool = False

    def _end_line(self) -> None:
        if self.line_active:
            print()
            self.line_active = False

    async def handle_message(self, msg: msgtypes.BaseMessage) -> None:
        match msg:
            case msgtypes.ProcessStartedMessage():
                print(f"Started ffmpeg (pid {msg.pid})")
            case msgtypes.ProgressMessage():
                print(
                    f"\r{colorama.ansi.clear_line()}{format_progress(msg.progress)}",
                    end="",
                    flush=True,
                )
                self.line_active = True
                if msg.progress.is_end:
                    self._end_line()
            case msgtypes.ProgressErrorMessage():
                self._end_line()
                print(
                    f"{colorama.Fore.YELLOW}{msg.text}{colorama.Style.RESET_ALL}", file=sys.stderr
                )
            case msgtypes.ProcessExitMessage():
                self._end_line()
                if msg.returncode != 0:
                    print(
                        f"{colorama.Fore.RED}ffmpeg exited with code {msg.returncode}"
                        f"{colorama.Style.RESET_ALL}",
                        file=sys.stderr,
                    )
                    if msg.stderr:
                        print(msg.stderr.rstrip(), file=sys.stderr)
            case _:
                pass


CLIMessageHandlers = JSONLMessageHandler | StatsMessageHandler
