#!/usr/bin/python3


import argparse
import asyncio
import contextlib
import pathlib
import sys
import typing
from types import ModuleType

import colorama
import msgspec

from .builder import (
    FFmpegBuilder,
    Flag,
    MediaFile,
    Option,
    Parameter,
    ProgressTransport,
    StdioMode,
)
from .errors import SpawnError, StreamReadError
from .models import messages
from .models.progress import ProgressRecord
from .output import BaseMessageHandler, CLIMessageHandlers
from .status import StatusManager, status_handler

wakepy: ModuleType | None = None
try:
    import wakepy
except ImportError:
    pass

colorama.just_fix_windows_console()


def build_command(args: argparse.Namespace) -> FFmpegBuilder:
    """
    Translates parsed command-line arguments into an invocation.
    """
    builder = FFmpegBuilder(
        ffmpeg_command=str(args.ffmpeg_path) if args.ffmpeg_path else "ffmpeg",
        stderr=StdioMode.PIPE,
        progress_transport=args.progress_transport,
    )

    # ffmpeg's own stats are redundant with our progress output, and the banner / info-level
    # logging would only fill up the captured error output
    builder.option(Flag("hide_banner")).option(Flag("nostats")).option(Flag("nostdin"))
    builder.option(Option("loglevel", "error"))
    builder.option(Flag("y" if args.overwrite else "n"))
    for option in args.global_options:
        builder.option(option)

    for url in args.inputs:
        input = MediaFile(url)
        for option in args.input_options:
            input.option(option)
        builder.input(input)

    output = MediaFile(args.output)
    for option in args.output_options:
        output.option(option)
    builder.output(output)
    return builder


async def _read_stderr(stream: asyncio.StreamReader | None) -> str | None:
    if stream is None:
        return None
    return (await stream.read()).decode("utf8", errors="replace")


async def run_ffmpeg(builder: FFmpegBuilder, handlers: list[BaseMessageHandler]) -> int:
    """
    Runs ffmpeg, dispatching status messages to the given handlers.  Returns ffmpeg's exit code.
    """
    status = StatusManager()
    status_task = asyncio.create_task(status_handler(handlers, status))
    try:
        ffmpeg = await builder.run()
        status.publish(
            messages.ProcessStartedMessage(pid=ffmpeg.process.pid, command=ffmpeg.process.command)
        )

        # error output has to be drained alongside progress, or ffmpeg may block writing to it
        stderr_task = asyncio.create_task(_read_stderr(ffmpeg.stderr))
        try:
            try:
                async for event in ffmpeg.progress:
                    if isinstance(event, ProgressRecord):
                        status.publish(messages.ProgressMessage(progress=event))
                    else:
                        status.publish(messages.ProgressErrorMessage.from_error(event))
            except StreamReadError as exc:
                # no more progress is available, but ffmpeg itself may still finish normally
                status.publish(messages.ProgressErrorMessage.from_error(exc))

            returncode = await ffmpeg.process.wait()
            stderr = await stderr_task
        finally:
            stderr_task.cancel()

        status.publish(messages.ProcessExitMessage(returncode=returncode, stderr=stderr))
        return returncode
    finally:
        status.close()
        await status_task


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Runs ffmpeg and reports its progress",
    )

    parser.add_argument("inputs", nargs="+", metavar="INPUT", help="Input file paths or URLs")
    parser.add_argument("-o", "--output", required=True, help="Output file path or URL")
    parser.add_argument(
        "-g",
        "--global-option",
        dest="global_options",
        type=Parameter.from_arg,
        action="append",
        default=[],
        metavar="KEY[=VALUE]",
        help="Global option passed to ffmpeg (e.g. 'threads=4'); may be repeated",
    )
    parser.add_argument(
        "--input-option",
        dest="input_options",
        type=Parameter.from_arg,
        action="append",
        default=[],
        metavar="KEY[=VALUE]",
        help="Option applied to every input (e.g. 'ss=10'); may be repeated",
    )
    parser.add_argument(
        "--output-option",
        dest="output_options",
        type=Parameter.from_arg,
        action="append",
        default=[],
        metavar="KEY[=VALUE]",
        help="Option applied to the output (e.g. 'c:v=libx265'); may be repeated",
    )
    parser.add_argument(
        "-y",
        "--overwrite",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Overwrite the output file if it exists",
    )
    parser.add_argument(
        "--ffmpeg-path",
        type=pathlib.Path,
        help="Path to ffmpeg binary, if there isn't one you want to use in your PATH",
    )
    parser.add_argument(
        "--progress-transport",
        type=ProgressTransport,
        choices=list(ProgressTransport),
        default=ProgressTransport.TCP,
        help="How ffmpeg sends progress back: a local TCP connection, or its standard output",
    )
    parser.add_argument(
        "--progress-style",
        type=str,
        choices=[
            handler.tag
            for handler in msgspec.inspect.multi_type_info(typing.get_args(CLIMessageHandlers))
            if isinstance(handler, msgspec.inspect.StructType)
        ],
        default="stats",
        help="Style to use for displaying progress results",
    )
    parser.add_argument(
        "--keep-awake",
        action=argparse.BooleanOptionalAction,
        help="Ensures the system stays awake while ffmpeg is running",
        default=False,
    )

    args = parser.parse_args()

    with contextlib.ExitStack() as context:
        if args.keep_awake:
            if not wakepy:
                raise ValueError(
                    "wakepy is not installed; install the 'keepawake' optional dependency set "
                    "or omit --keep-awake"
                )
            context.enter_context(wakepy.keep.running())

        handler = msgspec.convert({"type": args.progress_style}, CLIMessageHandlers)

        try:
            returncode = asyncio.run(run_ffmpeg(build_command(args), [handler]))
        except SpawnError as exc:
            sys.exit(f"error: {exc}")
    sys.exit(returncode)
