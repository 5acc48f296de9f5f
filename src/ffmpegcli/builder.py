#!/usr/bin/python3

import asyncio
import enum
from typing import TYPE_CHECKING, Self

import msgspec

if TYPE_CHECKING:
    from .runner import FFmpeg


class Parameter(msgspec.Struct, frozen=True):
    """
    A global or per-file option passed to ffmpeg.  The leading '-' is inserted automatically.
    """

    def to_args(self) -> list[str]:
        raise NotImplementedError()

    @staticmethod
    def from_arg(arg: str) -> "Parameter":
        """
        Parses a command-line style parameter: "y" becomes Flag("y") and "crf=28" becomes
        Option("crf", "28").  A leading '-' is tolerated.
        """
        name, sep, value = arg.removeprefix("-").partition("=")
        if sep:
            return Option(name, value)
        return Flag(name)


class Flag(Parameter, frozen=True, tag="flag"):
    # an option that takes no value, e.g. -autorotate is Flag("autorotate")
    name: str

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("flag name must not be empty")

    def to_args(self) -> list[str]:
        return [f"-{self.name}"]


class Option(Parameter, frozen=True, tag="option"):
    # an option that takes a value, e.g. -t 10 is Option("t", "10")
    key: str
    value: str

    def __post_init__(self) -> None:
        if not self.key:
            raise ValueError("option key must not be empty")

    def to_args(self) -> list[str]:
        return [f"-{self.key}", self.value]


Parameters = Flag | Option


class MediaFile(msgspec.Struct):
    """
    A file that ffmpeg operates on; whether it's an input or an output depends on how it is
    added to the builder.  As with ffmpeg itself, a plain path works as the url.
    """

    url: str
    options: list[Parameters] = msgspec.field(default_factory=list)

    def option(self, option: Parameter) -> Self:
        self.options.append(option)
        return self

    def to_args(self, is_input: bool) -> list[str]:
        args = [arg for option in self.options for arg in option.to_args()]
        if is_input:
            args.append("-i")
        args.append(self.url)
        return args


class StdioMode(enum.StrEnum):
    NULL = "null"
    PIPE = "pipe"
    INHERIT = "inherit"

    @property
    def subprocess_value(self) -> int | None:
        match self:
            case StdioMode.NULL:
                return asyncio.subprocess.DEVNULL
            case StdioMode.PIPE:
                return asyncio.subprocess.PIPE
        return None


class ProgressTransport(enum.StrEnum):
    # ffmpeg connects back to a local listener; leaves stdout available to the caller
    TCP = "tcp"

    # ffmpeg writes progress to its standard output
    PIPE = "pipe"


class FFmpegBuilder(msgspec.Struct, kw_only=True):
    """
    Describes a single ffmpeg invocation.

    Parameters are emitted in order: global options, then each input's options followed by
    "-i <url>", then each output's options followed by its url.
    """

    options: list[Parameters] = msgspec.field(default_factory=list)
    inputs: list[MediaFile] = msgspec.field(default_factory=list)
    outputs: list[MediaFile] = msgspec.field(default_factory=list)

    # the program that is run; usually just "ffmpeg" from PATH
    ffmpeg_command: str = "ffmpeg"

    stdin: StdioMode = StdioMode.NULL
    stdout: StdioMode = StdioMode.NULL
    stderr: StdioMode = StdioMode.NULL

    progress_transport: ProgressTransport = ProgressTransport.TCP

    def option(self, option: Parameter) -> Self:
        self.options.append(option)
        return self

    def input(self, input: MediaFile) -> Self:
        self.inputs.append(input)
        return self

    def output(self, output: MediaFile) -> Self:
        self.outputs.append(output)
        return self

    def with_stdin(self, mode: StdioMode) -> Self:
        self.stdin = mode
        return self

    def with_stdout(self, mode: StdioMode) -> Self:
        self.stdout = mode
        return self

    def with_stderr(self, mode: StdioMode) -> Self:
        self.stderr = mode
        return self

    def to_command(self) -> list[str]:
        """
        Returns the full argument vector, including the program.

        Note that this does not include the progress option; usually you want to use
        :meth:`run` instead of calling this directly.
        """
        command = [self.ffmpeg_command]
        for option in self.options:
            command += option.to_args()
        for input in self.inputs:
            command += input.to_args(is_input=True)
        for output in self.outputs:
            command += output.to_args(is_input=False)
        return command

    async def run(self) -> "FFmpeg":
        """
        Spawns ffmpeg with progress reporting enabled.

        Raises SpawnError if the program could not be launched.
        """
        from .runner import spawn

        return await spawn(self)
