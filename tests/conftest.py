#!/usr/bin/python3

import pathlib
import shlex
import sys

import pytest

# stands in for ffmpeg: reports two progress units to the "-progress" destination, writes a
# line to stderr, and exits with the code given as the output url (0 if it isn't numeric)
# FAKE_FFMPEG_UNITS prepends that many extra units; FAKE_FFMPEG_LONG_LINE prepends a single
# line longer than a stream reader's default buffer
FAKE_FFMPEG_SOURCE = """\
import os
import socket
import sys

args = sys.argv[1:]
url = args[args.index("-progress") + 1]
payload = (
    b"frame=1\\nfps=25.0\\nbogus\\nprogress=continue\\n"
    b"frame=2\\nout_time_us=80000\\nprogress=end\\n"
)
extra_units = int(os.environ.get("FAKE_FFMPEG_UNITS", "0"))
payload = b"frame=0\\nprogress=continue\\n" * extra_units + payload
if os.environ.get("FAKE_FFMPEG_LONG_LINE"):
    payload = b"frame=" + b"1" * 200000 + b"\\n" + payload
if url == "pipe:1":
    sys.stdout.buffer.write(payload)
    sys.stdout.flush()
elif url.startswith("tcp://"):
    host, port = url.removeprefix("tcp://").rsplit(":", 1)
    with socket.create_connection((host, int(port))) as conn:
        conn.sendall(payload)
sys.stderr.write("encoder warning\\n")
sys.exit(int(args[-1]) if args[-1].isdigit() else 0)
"""


def _write_executable(path: pathlib.Path, text: str) -> pathlib.Path:
    path.write_text(text)
    path.chmod(0o755)
    return path


@pytest.fixture
def fake_ffmpeg(tmp_path: pathlib.Path) -> str:
    if sys.platform == "win32":
        pytest.skip("fake ffmpeg is a shell script")
    script = tmp_path / "fake_ffmpeg.py"
    script.write_text(FAKE_FFMPEG_SOURCE)
    wrapper = _write_executable(
        tmp_path / "ffmpeg",
        f'#!/bin/sh\nexec {shlex.quote(sys.executable)} {shlex.quote(str(script))} "$@"\n',
    )
    return str(wrapper)


@pytest.fixture
def failing_ffmpeg(tmp_path: pathlib.Path) -> str:
    # exits immediately without ever reporting progress
    if sys.platform == "win32":
        pytest.skip("fake ffmpeg is a shell script")
    script = _write_executable(
        tmp_path / "ffmpeg-fail", "#!/bin/sh\necho no such codec >&2\nexit 1\n"
    )
    return str(script)
