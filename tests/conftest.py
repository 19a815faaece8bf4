"""Shared test fixtures."""

import io
import json
import shutil
import subprocess
import threading
from pathlib import Path

import pytest

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def probe_output(duration: float = 60.0, video: bool = True, audio: bool = True) -> str:
    streams = []
    if video:
        streams.append({
            "codec_type": "video",
            "codec_name": "h264",
            "width": 1920,
            "height": 1080,
            "r_frame_rate": "30/1",
        })
    if audio:
        streams.append({
            "codec_type": "audio",
            "codec_name": "aac",
            "sample_rate": "44100",
            "channels": 2,
        })
    return json.dumps({
        "format": {"duration": str(duration), "format_name": "mov,mp4,m4a,3gp,3g2,mj2"},
        "streams": streams,
    })


class FakeProcess:
    """Stands in for subprocess.Popen with binary stdout/stderr pipes."""

    def __init__(self, stdout=b"", stderr=b"", returncode=0):
        self.stdout = io.BytesIO(stdout) if isinstance(stdout, bytes) else stdout
        self.stderr = io.BytesIO(stderr)
        self.returncode = None
        self.killed = False
        self._exit_code = returncode

    def poll(self):
        return self.returncode

    def wait(self, timeout=None):
        if self.returncode is None:
            self.returncode = -9 if self.killed else self._exit_code
        return self.returncode

    def kill(self):
        self.killed = True


class EndlessStdout:
    """A pipe that never reaches EOF, like a long ffmpeg encode."""

    def __init__(self, fill: bytes = b"\x00"):
        self.fill = fill
        self.closed = False
        self.reads = 0

    def read1(self, n: int = -1) -> bytes:
        self.reads += 1
        return self.fill * n

    def close(self) -> None:
        self.closed = True


class StalledStdout:
    """A pipe that produces nothing until ``release`` is called (EOF after)."""

    def __init__(self):
        self.released = threading.Event()
        self.closed = False

    def read1(self, n: int = -1) -> bytes:
        self.released.wait()
        return b""

    def release(self) -> None:
        self.released.set()

    def close(self) -> None:
        self.closed = True


class StalledProcess(FakeProcess):
    """An ffmpeg that never writes; killing it closes its stdout."""

    def __init__(self):
        super().__init__(stdout=StalledStdout())

    def kill(self):
        super().kill()
        self.stdout.release()


class FakeRunner:
    """ToolRunner that records command lines instead of launching tools.

    ``run`` results are consumed in order; a callable result is called with
    the argument list first (handy for writing the output file).
    """

    def __init__(self, missing=()):
        self.missing = set(missing)
        self.calls: list[list[str]] = []
        self.spawned: list[list[str]] = []
        self.results: list = []
        self.processes: list = []

    def which(self, name):
        return None if name in self.missing else f"/usr/bin/{name}"

    def run(self, args):
        self.calls.append(list(args))
        result = self.results.pop(0)
        if callable(result):
            result = result(args)
        return result

    def spawn(self, args):
        self.spawned.append(list(args))
        return self.processes.pop(0)


def completed(args=None, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args or [], returncode, stdout, stderr)


def writes_output(content: bytes = b"encoded", returncode: int = 0, stderr: str = ""):
    """A run() result that writes ``content`` to the command's last argument."""
    def _run(args):
        Path(args[-1]).write_bytes(content)
        return completed(args, returncode=returncode, stderr=stderr)
    return _run


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def source_file(tmp_path: Path) -> Path:
    src = tmp_path / "source.mp4"
    src.write_bytes(b"\x00\x00\x00\x18ftypmp42 original media bytes")
    return src


# ---------------------------------------------------------------------------
# Real ffmpeg (integration tests are skipped when it is not installed)
# ---------------------------------------------------------------------------

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


def generate_test_video(output: Path) -> None:
    """Write a ~10 s clip: 440 Hz tone over blue, silence over black, 880 Hz over red."""
    audio_filter = (
        "sine=f=440:d=4[a0];"
        "anullsrc=r=44100:cl=stereo:d=2[s0];"
        "sine=f=880:d=4[a1];"
        "[a0][s0][a1]concat=n=3:v=0:a=1[aout]"
    )
    video_filter = (
        "color=c=blue:s=320x240:d=4:r=30[v0];"
        "color=c=black:s=320x240:d=2:r=30[v1];"
        "color=c=red:s=320x240:d=4:r=30[v2];"
        "[v0][v1][v2]concat=n=3:v=1:a=0[vout]"
    )
    cmd = [
        "ffmpeg", "-y", "-v", "error",
        "-filter_complex", audio_filter + ";" + video_filter,
        "-map", "[vout]",
        "-map", "[aout]",
        "-c:v", "libx264",
        "-c:a", "aac",
        "-shortest",
        str(output),
    ]
    subprocess.run(cmd, check=True)


@pytest.fixture(scope="session")
def synthetic_video(tmp_path_factory) -> Path:
    if shutil.which("ffmpeg") is None:
        pytest.skip("ffmpeg not installed")
    out = tmp_path_factory.mktemp("media") / "synthetic.mp4"
    generate_test_video(out)
    return out
