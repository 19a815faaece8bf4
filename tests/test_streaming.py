"""Tests for the streaming preview encoder."""

import gc
import shutil
import subprocess
import threading
import time
from pathlib import Path

import pytest

from conftest import EndlessStdout, FakeProcess, FakeRunner, StalledProcess
from cutlist.errors import EncodeFailedError, ToolNotFoundError
from cutlist.ffutil import SubprocessRunner
from cutlist.models import StreamingSegment
from cutlist.streaming import (
    CHUNK_SIZE,
    ChunkChannel,
    EncoderState,
    StreamingEncoder,
    encode_segment_streaming,
    stream_segments,
)


def _segment(start=0.0, end=2.0, path="clip.mp4"):
    return StreamingSegment(media_path=Path(path), start_time=start, end_time=end)


class ShellRunner(SubprocessRunner):
    """Spawns a shell snippet in place of ffmpeg."""

    def __init__(self, script: str):
        self.script = script
        self.spawned: list[subprocess.Popen] = []

    def which(self, name):
        return "/bin/" + name

    def spawn(self, args):
        proc = super().spawn(["sh", "-c", self.script])
        self.spawned.append(proc)
        return proc


requires_sh = pytest.mark.skipif(
    any(shutil.which(tool) is None for tool in ("sh", "head", "tr")),
    reason="needs sh, head and tr",
)


def _consume_in_thread(stream):
    """Drain ``stream`` on a helper thread; returns (thread, chunks, errors)."""
    chunks: list[bytes] = []
    errors: list[BaseException] = []

    def consume():
        try:
            chunks.extend(stream)
        except Exception as exc:
            errors.append(exc)

    t = threading.Thread(target=consume, daemon=True)
    t.start()
    return t, chunks, errors


def _wait_for_state(encoder, state, timeout=2.0):
    deadline = time.monotonic() + timeout
    while encoder.state is not state and time.monotonic() < deadline:
        time.sleep(0.01)
    return encoder.state


class TestChunkChannel:
    def test_send_blocks_until_received(self):
        channel = ChunkChannel(capacity=1)
        assert channel.send(b"a") is True

        delivered = threading.Event()

        def producer():
            channel.send(b"b")
            delivered.set()

        t = threading.Thread(target=producer)
        t.start()
        assert not delivered.wait(0.2)  # queue full: producer is blocked
        assert channel.receive() == b"a"
        assert delivered.wait(2.0)
        assert channel.receive() == b"b"
        t.join()

    def test_send_after_detach_returns_false(self):
        channel = ChunkChannel(capacity=1)
        channel.send(b"a")
        channel.detach()
        assert channel.send(b"b") is False


class TestSingleSegment:
    def test_chunks_delivered_in_order(self):
        payload = bytes(range(256)) * 1024  # 256 KiB
        runner = FakeRunner()
        runner.processes.append(FakeProcess(stdout=payload))

        stream = encode_segment_streaming(Path("clip.mp4"), 1.0, 3.0, runner=runner)
        chunks = list(stream)

        assert b"".join(chunks) == payload
        assert all(len(c) <= CHUNK_SIZE for c in chunks)
        assert stream.encoder.state is EncoderState.COMPLETED
        assert stream.encoder.chunks_sent == len(chunks)

    def test_command_targets_stdout(self):
        runner = FakeRunner()
        runner.processes.append(FakeProcess(stdout=b"x"))

        list(encode_segment_streaming(Path("clip.mp4"), 1.0, 3.0, width=640, runner=runner))

        cmd = runner.spawned[0]
        assert cmd[-1] == "pipe:1"
        assert cmd[cmd.index("-ss") + 1] == "1.0"
        assert cmd[cmd.index("-t") + 1] == "2.0"
        assert cmd[cmd.index("-vf") + 1] == "scale='min(640,iw)':-2"

    def test_non_zero_exit_fails_with_stderr(self):
        runner = FakeRunner()
        runner.processes.append(
            FakeProcess(stdout=b"partial", stderr=b"Invalid argument", returncode=1)
        )

        stream = encode_segment_streaming(Path("clip.mp4"), 0.0, 1.0, runner=runner)
        assert next(stream) == b"partial"
        with pytest.raises(EncodeFailedError, match="Invalid argument"):
            next(stream)
        assert stream.encoder.state is EncoderState.FAILED

    @requires_sh
    def test_heavy_stderr_does_not_stall_stdout(self):
        runner = ShellRunner("head -c 200000 /dev/zero >&2; printf done")
        stream = encode_segment_streaming(Path("clip.mp4"), 0.0, 1.0, runner=runner)

        t, chunks, errors = _consume_in_thread(stream)
        t.join(10.0)

        assert not t.is_alive()
        assert errors == []
        assert b"".join(chunks) == b"done"
        assert stream.encoder.state is EncoderState.COMPLETED

    @requires_sh
    def test_heavy_stderr_reported_on_failure(self):
        runner = ShellRunner(
            "head -c 200000 /dev/zero | tr '\\0' x >&2; echo 'Invalid data found' >&2; exit 3"
        )
        stream = encode_segment_streaming(Path("clip.mp4"), 0.0, 1.0, runner=runner)

        t, chunks, errors = _consume_in_thread(stream)
        t.join(10.0)

        assert not t.is_alive()
        assert chunks == []
        assert len(errors) == 1
        assert isinstance(errors[0], EncodeFailedError)
        assert errors[0].returncode == 3
        assert "Invalid data found" in str(errors[0])
        assert stream.encoder.state is EncoderState.FAILED

    def test_invalid_duration(self):
        with pytest.raises(ValueError, match="Invalid duration"):
            encode_segment_streaming(Path("clip.mp4"), 5.0, 5.0, runner=FakeRunner())

    def test_tool_missing(self):
        runner = FakeRunner(missing={"ffmpeg"})
        with pytest.raises(ToolNotFoundError):
            encode_segment_streaming(Path("clip.mp4"), 0.0, 1.0, runner=runner)

    def test_cannot_start_twice(self):
        runner = FakeRunner()
        runner.processes.append(FakeProcess(stdout=b""))
        encoder = StreamingEncoder([_segment()], runner=runner)
        list(encoder.start())
        with pytest.raises(RuntimeError, match="already started"):
            encoder.start()


class TestCancellation:
    def test_close_kills_process(self):
        stdout = EndlessStdout()
        process = FakeProcess(stdout=stdout)
        runner = FakeRunner()
        runner.processes.append(process)

        stream = encode_segment_streaming(Path("clip.mp4"), 0.0, 60.0, runner=runner)
        assert len(next(stream)) == CHUNK_SIZE
        stream.close()

        assert stream.encoder.state is EncoderState.CANCELLED
        assert process.killed
        assert process.returncode is not None
        assert stdout.closed
        assert stream.encoder.error is None

    def test_context_manager_exit_cancels(self):
        process = FakeProcess(stdout=EndlessStdout())
        runner = FakeRunner()
        runner.processes.append(process)

        with encode_segment_streaming(Path("clip.mp4"), 0.0, 60.0, runner=runner) as stream:
            next(stream)

        assert stream.encoder.state is EncoderState.CANCELLED
        assert process.killed

    def test_iteration_after_close_stops(self):
        runner = FakeRunner()
        runner.processes.append(FakeProcess(stdout=EndlessStdout()))
        stream = encode_segment_streaming(Path("clip.mp4"), 0.0, 60.0, runner=runner)
        next(stream)
        stream.close()
        assert list(stream) == []

    @pytest.mark.skipif(shutil.which("cat") is None, reason="needs cat")
    def test_real_process_is_reaped(self):
        runner = ShellRunner("exec cat /dev/zero")

        stream = encode_segment_streaming(Path("clip.mp4"), 0.0, 60.0, runner=runner)
        for _, chunk in zip(range(3), stream):
            assert chunk
        stream.close()

        assert stream.encoder.state is EncoderState.CANCELLED
        assert runner.spawned[0].poll() is not None

    def test_close_while_encoder_produces_nothing(self):
        process = StalledProcess()
        runner = FakeRunner()
        runner.processes.append(process)

        stream = encode_segment_streaming(Path("clip.mp4"), 0.0, 60.0, runner=runner)
        assert _wait_for_state(stream.encoder, EncoderState.STREAMING) is EncoderState.STREAMING

        closer = threading.Thread(target=stream.close, daemon=True)
        closer.start()
        closer.join(2.0)

        assert not closer.is_alive()
        assert process.killed
        assert process.returncode is not None
        assert stream.encoder.state is EncoderState.CANCELLED
        assert stream.encoder.error is None

    @pytest.mark.skipif(shutil.which("sleep") is None, reason="needs sleep")
    def test_close_kills_silent_real_process(self):
        runner = ShellRunner("exec sleep 30")

        stream = encode_segment_streaming(Path("clip.mp4"), 0.0, 60.0, runner=runner)
        assert _wait_for_state(stream.encoder, EncoderState.STREAMING) is EncoderState.STREAMING

        started = time.monotonic()
        stream.close()

        assert time.monotonic() - started < 5.0
        assert runner.spawned[0].poll() is not None
        assert stream.encoder.state is EncoderState.CANCELLED

    def test_dropped_stream_cancels_encoder(self):
        process = FakeProcess(stdout=EndlessStdout())
        runner = FakeRunner()
        runner.processes.append(process)

        stream = encode_segment_streaming(Path("clip.mp4"), 0.0, 60.0, runner=runner)
        next(stream)
        encoder = stream.encoder
        del stream
        gc.collect()
        encoder.join(2.0)

        assert encoder.state is EncoderState.CANCELLED
        assert process.killed


class TestMultiSegment:
    def test_segments_run_in_caller_order(self):
        runner = FakeRunner()
        runner.processes.extend([
            FakeProcess(stdout=b"first"),
            FakeProcess(stdout=b"second"),
        ])
        segments = [_segment(10.0, 12.0, "b.mp4"), _segment(0.0, 1.0, "a.mp4")]

        data = b"".join(stream_segments(segments, runner=runner))

        assert data == b"firstsecond"
        assert [cmd[cmd.index("-i") + 1] for cmd in runner.spawned] == ["b.mp4", "a.mp4"]

    def test_failure_aborts_remaining(self):
        runner = FakeRunner()
        runner.processes.extend([
            FakeProcess(stdout=b"one", stderr=b"bad", returncode=1),
            FakeProcess(stdout=b"two"),
        ])
        stream = stream_segments([_segment(), _segment()], runner=runner)

        assert next(stream) == b"one"
        with pytest.raises(EncodeFailedError):
            next(stream)
        assert len(runner.spawned) == 1

    def test_cancel_aborts_remaining(self):
        first = FakeProcess(stdout=EndlessStdout())
        runner = FakeRunner()
        runner.processes.extend([first, FakeProcess(stdout=b"never")])

        stream = stream_segments([_segment(), _segment()], runner=runner)
        next(stream)
        stream.close()

        assert first.killed
        assert len(runner.spawned) == 1
        assert stream.encoder.state is EncoderState.CANCELLED

    def test_empty_sequence(self):
        with pytest.raises(ValueError, match="No segments"):
            stream_segments([], runner=FakeRunner())
