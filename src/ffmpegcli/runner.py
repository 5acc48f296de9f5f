#!/usr/bin/python3

import asyncio
import contextlib
from typing import AsyncIterator, NamedTuple

from .builder import FFmpegBuilder, ProgressTransport, StdioMode
from .errors import SpawnError, StreamReadError
from .progress import ProgressEvent, parse_progress

# how long to keep waiting for ffmpeg's progress connection after the process has exited
# the accept callback may be scheduled after the exit notification even if ffmpeg connected
CONNECT_GRACE_SECS = 0.5


class CompletedFFmpeg(NamedTuple):
    returncode: int
    stdout: bytes | None
    stderr: bytes | None


class FFmpegProcess:
    """
    Handle to a running ffmpeg process.

    The exit status is only available from this handle; it is never inferred from progress
    output.  Standard output is only captured here if the caller asked for it to be piped and it
    isn't being used as the progress transport.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        command: list[str],
        stdout: asyncio.StreamReader | None,
        stderr: asyncio.StreamReader | None,
    ):
        self._process = process
        self.command = command
        self._stdout = stdout
        self._stderr = stderr

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    async def wait(self) -> int:
        return await self._process.wait()

    async def wait_with_output(self) -> CompletedFFmpeg:
        """
        Waits for the process to exit, returning its exit code and any remaining piped output.

        The stderr reader is shared with FFmpeg.stderr; don't read from both at the same time.
        """
        if self._process.stdin:
            self._process.stdin.close()
        stdout, stderr, returncode = await asyncio.gather(
            _read_all(self._stdout), _read_all(self._stderr), self._process.wait()
        )
        return CompletedFFmpeg(returncode, stdout, stderr)

    def terminate(self) -> None:
        self._process.terminate()

    def kill(self) -> None:
        self._process.kill()


async def _read_all(stream: asyncio.StreamReader | None) -> bytes | None:
    if stream is None:
        return None
    return await stream.read()


class ProgressStream:
    """
    Progress events reported by a running ffmpeg process.

    A reader task is started as soon as the process is spawned; it parses progress output into
    an unbounded queue whether or not anyone iterates this stream, so ffmpeg never blocks on
    its progress writes.  This can only be iterated once.  Closing the stream (or abandoning
    iteration) discards further events but has no effect on the process itself.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        reader: asyncio.StreamReader | None = None,
        server: asyncio.Server | None = None,
        connection: asyncio.Future | None = None,
    ):
        self._process = process
        self._reader = reader
        self._server = server
        self._connection = connection
        self._writer: asyncio.StreamWriter | None = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._consumed = False
        self._task = asyncio.create_task(self._read_progress())

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        if self._consumed:
            raise RuntimeError("progress stream can only be consumed once")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProgressEvent]:
        try:
            while True:
                item = await self._queue.get()
                if item is _END_OF_PROGRESS:
                    return
                if isinstance(item, StreamReadError):
                    raise item
                yield item
        finally:
            await self.aclose()

    def _publish(self, item: object) -> None:
        if not self._closed:
            self._queue.put_nowait(item)

    async def _read_progress(self) -> None:
        reader = None
        try:
            reader = await self._connect()
            async for event in parse_progress(reader):
                self._publish(event)
        except StreamReadError as exc:
            self._publish(exc)
        finally:
            self._queue.put_nowait(_END_OF_PROGRESS)

        if reader is not None:
            # ffmpeg has nothing more to report, but must not block writing to an unread pipe
            await _drain(reader)
        self._release()

    async def _connect(self) -> asyncio.StreamReader | None:
        if self._connection is None:
            return self._reader

        exited = asyncio.ensure_future(self._process.wait())
        try:
            await asyncio.wait({self._connection, exited}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            exited.cancel()

        if not self._connection.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._connection), CONNECT_GRACE_SECS)
            except TimeoutError:
                # ffmpeg exited without ever connecting back (e.g. it failed on startup)
                self._release()
                return None

        reader, self._writer = self._connection.result()
        # only one connection is expected; stop accepting new ones
        self._server.close()
        return reader

    def _release(self) -> None:
        if self._server is not None:
            self._server.close()
            self._server = None
        if self._connection is not None and not self._connection.done():
            self._connection.cancel()
        if self._writer is not None:
            self._writer.close()
            self._writer = None

    async def aclose(self) -> None:
        """
        Stops delivering events.  Remaining progress output is still read and discarded until
        ffmpeg closes it.
        """
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()


# marks the end of the queued events
_END_OF_PROGRESS = object()


async def _drain(stream: asyncio.StreamReader) -> None:
    # the stream is only drained after its parse result was delivered; failures here have no
    # one left to report to
    with contextlib.suppress(OSError):
        while await stream.read(65536):
            pass


class FFmpeg(NamedTuple):
    """
    A running instance of ffmpeg, as three independently owned handles.
    """

    process: FFmpegProcess
    progress: ProgressStream

    # only available if the builder's stderr was set to StdioMode.PIPE
    stderr: asyncio.StreamReader | None


async def _listen() -> tuple[asyncio.Server, asyncio.Future, str]:
    """
    Starts a local listener for ffmpeg to connect its progress output to.
    """
    connection: asyncio.Future = asyncio.get_running_loop().create_future()

    def _on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if connection.done():
            # only the first connection carries progress
            writer.close()
            return
        connection.set_result((reader, writer))

    server = await asyncio.start_server(_on_connect, "127.0.0.1", 0)
    host, port = server.sockets[0].getsockname()[:2]
    return server, connection, f"tcp://{host}:{port}"


async def spawn(builder: FFmpegBuilder) -> FFmpeg:
    use_pipe = builder.progress_transport == ProgressTransport.PIPE
    if use_pipe and builder.stdout == StdioMode.PIPE:
        raise ValueError("stdout can't be piped to the caller when it carries progress output")

    server = connection = None
    if use_pipe:
        progress_url = "pipe:1"
    else:
        server, connection, progress_url = await _listen()

    command = builder.to_command()
    command[1:1] = ["-progress", progress_url]

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=builder.stdin.subprocess_value,
            stdout=asyncio.subprocess.PIPE if use_pipe else builder.stdout.subprocess_value,
            stderr=builder.stderr.subprocess_value,
        )
    except OSError as exc:
        if server is not None:
            server.close()
        raise SpawnError(command, exc.strerror or str(exc)) from exc

    if use_pipe:
        progress = ProgressStream(process, reader=process.stdout)
        user_stdout = None
    else:
        progress = ProgressStream(process, server=server, connection=connection)
        user_stdout = process.stdout

    return FFmpeg(
        process=FFmpegProcess(process, command, user_stdout, process.stderr),
        progress=progress,
        stderr=process.stderr,
    )
