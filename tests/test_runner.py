#!/usr/bin/python3

import asyncio
import datetime
import pathlib

import pytest
from ffmpegcli.builder import FFmpegBuilder, MediaFile, ProgressTransport, StdioMode
from ffmpegcli.errors import LineParseError, SpawnError, StreamReadError
from ffmpegcli.models.progress import ProgressRecord, ProgressStatus
from ffmpegcli.runner import CompletedFFmpeg

EXPECTED_EVENTS = [
    LineParseError("bogus"),
    ProgressRecord(frame=1, fps=25.0),
    ProgressRecord(
        frame=2, out_time=datetime.timedelta(microseconds=80000), status=ProgressStatus.END
    ),
]


def _builder(program: str, transport: ProgressTransport, output: str = "out.mp4"):
    return (
        FFmpegBuilder(ffmpeg_command=program, progress_transport=transport)
        .with_stderr(StdioMode.PIPE)
        .input(MediaFile("in.mkv"))
        .output(MediaFile(output))
    )


@pytest.mark.parametrize("transport", list(ProgressTransport))
def test_run(fake_ffmpeg: str, transport: ProgressTransport):
    async def _run() -> tuple[list, CompletedFFmpeg, list[str]]:
        ffmpeg = await _builder(fake_ffmpeg, transport).run()
        events = [event async for event in ffmpeg.progress]
        return events, await ffmpeg.process.wait_with_output(), ffmpeg.process.command

    events, result, command = asyncio.run(_run())
    assert events == EXPECTED_EVENTS
    assert result.returncode == 0
    assert result.stdout is None
    assert result.stderr == b"encoder warning\n"
    assert command[1] == "-progress"
    assert command[-3:] == ["-i", "in.mkv", "out.mp4"]


def test_exit_status_is_separate_from_progress(fake_ffmpeg: str):
    async def _run() -> tuple[list, int]:
        ffmpeg = await _builder(fake_ffmpeg, ProgressTransport.TCP, output="3").run()
        events = [event async for event in ffmpeg.progress]
        return events, await ffmpeg.process.wait()

    events, returncode = asyncio.run(_run())
    assert events == EXPECTED_EVENTS
    assert returncode == 3


def test_stderr_handle(fake_ffmpeg: str):
    async def _run() -> tuple[bytes, int]:
        ffmpeg = await _builder(fake_ffmpeg, ProgressTransport.PIPE).run()
        assert ffmpeg.stderr is not None
        stderr, returncode = await asyncio.gather(ffmpeg.stderr.read(), ffmpeg.process.wait())
        return stderr, returncode

    # progress is never consumed here; that must not stop the process from finishing
    assert asyncio.run(_run()) == (b"encoder warning\n", 0)


@pytest.mark.parametrize("transport", list(ProgressTransport))
def test_abandoned_progress_leaves_process_running(fake_ffmpeg: str, transport):
    async def _run() -> tuple[ProgressRecord, int]:
        ffmpeg = await _builder(fake_ffmpeg, transport).run()
        async for event in ffmpeg.progress:
            if isinstance(event, ProgressRecord):
                break
        await ffmpeg.progress.aclose()
        return event, await ffmpeg.process.wait()

    event, returncode = asyncio.run(_run())
    assert event == ProgressRecord(frame=1, fps=25.0)
    assert returncode == 0


@pytest.mark.parametrize("transport", list(ProgressTransport))
def test_unread_progress_does_not_block_exit(
    fake_ffmpeg: str, transport: ProgressTransport, monkeypatch: pytest.MonkeyPatch
):
    # far more output than a pipe or socket buffer holds
    monkeypatch.setenv("FAKE_FFMPEG_UNITS", "20000")

    async def _run() -> tuple[int, list]:
        ffmpeg = await _builder(fake_ffmpeg, transport).run()
        returncode = await asyncio.wait_for(ffmpeg.process.wait(), 5)
        return returncode, [event async for event in ffmpeg.progress]

    returncode, events = asyncio.run(_run())
    assert returncode == 0
    assert len(events) == 20000 + len(EXPECTED_EVENTS)
    assert events[0] == ProgressRecord(frame=0)
    assert events[-3:] == EXPECTED_EVENTS


@pytest.mark.parametrize("transport", list(ProgressTransport))
def test_progress_read_error(
    fake_ffmpeg: str, transport: ProgressTransport, monkeypatch: pytest.MonkeyPatch
):
    monkeypatch.setenv("FAKE_FFMPEG_LONG_LINE", "1")

    async def _run() -> int:
        ffmpeg = await _builder(fake_ffmpeg, transport).run()
        with pytest.raises(StreamReadError):
            async for _ in ffmpeg.progress:
                pass
        return await asyncio.wait_for(ffmpeg.process.wait(), 5)

    assert asyncio.run(_run()) == 0


def test_progress_consumed_once(fake_ffmpeg: str):
    async def _run() -> None:
        ffmpeg = await _builder(fake_ffmpeg, ProgressTransport.PIPE).run()
        async for _ in ffmpeg.progress:
            pass
        try:
            with pytest.raises(RuntimeError):
                ffmpeg.progress.__aiter__()
        finally:
            await ffmpeg.process.wait()

    asyncio.run(_run())


def test_exit_without_progress_connection(failing_ffmpeg: str):
    async def _run() -> tuple[list, CompletedFFmpeg]:
        ffmpeg = await _builder(failing_ffmpeg, ProgressTransport.TCP).run()
        events = [event async for event in ffmpeg.progress]
        return events, await ffmpeg.process.wait_with_output()

    events, result = asyncio.run(_run())
    assert events == []
    assert result.returncode == 1
    assert result.stderr == b"no such codec\n"


def test_spawn_error(tmp_path: pathlib.Path):
    missing = str(tmp_path / "no-ffmpeg-here")
    for transport in ProgressTransport:
        with pytest.raises(SpawnError) as excinfo:
            asyncio.run(_builder(missing, transport).run())
        assert excinfo.value.command[0] == missing
