"""Live preview encoding: fragmented MP4 streamed straight off ffmpeg's stdout.

A :class:`StreamingEncoder` owns one worker thread, and that thread owns the
ffmpeg child process. Encoded bytes travel to the consumer over a bounded
:class:`ChunkChannel`, so a slow consumer stalls the encoder instead of
buffering without limit. Closing the consumer side is the only way to cancel:
ffmpeg is killed at once and the worker reaps it.

Typical use::

    with encode_segment_streaming(path, 12.0, 20.0) as stream:
        for chunk in stream:
            player.feed(chunk)
"""

import logging
import queue
import threading
import weakref
from dataclasses import replace
from enum import Enum
from pathlib import Path

from cutlist import ffutil
from cutlist.errors import EncodeFailedError
from cutlist.manifest import PreviewConfig
from cutlist.models import StreamingSegment

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

# How often (seconds) a blocked producer re-checks whether the consumer left.
_POLL_INTERVAL = 0.05

# Only the tail of ffmpeg's diagnostics is kept for error reporting.
_STDERR_TAIL = 64 * 1024


class EncoderState(str, Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ChunkChannel:
    """Bounded single-producer/single-consumer queue of byte chunks.

    ``None`` is the end-of-stream sentinel.
    """

    def __init__(self, capacity: int = 4) -> None:
        self._queue: queue.Queue = queue.Queue(maxsize=max(capacity, 1))
        self._detached = threading.Event()

    @property
    def detached(self) -> bool:
        return self._detached.is_set()

    def send(self, item: bytes | None) -> bool:
        """Block until the consumer takes ``item``; False once it has detached."""
        while not self._detached.is_set():
            try:
                self._queue.put(item, timeout=_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        return False

    def receive(self) -> bytes | None:
        return self._queue.get()

    def detach(self) -> None:
        self._detached.set()


class PreviewStream:
    """Consumer end of a streaming encode: iterate for chunks, close to cancel.

    Iteration stops after the last chunk of a successful encode and raises
    :class:`EncodeFailedError` (or whatever stopped the worker) on failure.
    A stream that is garbage collected without being closed cancels the
    encode as if it had been closed.
    """

    def __init__(self, encoder: "StreamingEncoder") -> None:
        self._encoder = encoder
        self._finished = False
        self._finalizer = weakref.finalize(self, encoder.cancel)

    @property
    def encoder(self) -> "StreamingEncoder":
        return self._encoder

    def __iter__(self):
        return self

    def __next__(self) -> bytes:
        if self._finished:
            raise StopIteration
        chunk = self._encoder.channel.receive()
        if chunk is None:
            self._finished = True
            self._finalizer.detach()
            self._encoder.join()
            if self._encoder.error is not None:
                raise self._encoder.error
            raise StopIteration
        return chunk

    def close(self) -> None:
        """Detach from the encoder; a running ffmpeg is killed and reaped."""
        if self._finished:
            return
        self._finished = True
        self._finalizer()
        self._encoder.join()

    def __enter__(self) -> "PreviewStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class StreamingEncoder:
    """Encodes one or more segments back to back into a single byte stream.

    Segments run strictly in the order given; a failure or cancellation on
    one segment skips the rest.
    """

    def __init__(
        self,
        segments: list[StreamingSegment],
        config: PreviewConfig | None = None,
        runner: ffutil.ToolRunner | None = None,
    ) -> None:
        if not segments:
            raise ValueError("No segments provided")
        for seg in segments:
            if seg.end_time <= seg.start_time:
                raise ValueError(
                    f"Invalid duration for segment {seg.start_time}-{seg.end_time} "
                    f"of {seg.media_path}"
                )

        self.segments = list(segments)
        self.config = config or PreviewConfig()
        self.runner = ffutil.default_runner(runner)
        self.channel = ChunkChannel(self.config.channel_capacity)
        self.state = EncoderState.IDLE
        self.error: BaseException | None = None
        self.chunks_sent = 0
        self._thread: threading.Thread | None = None
        self._process = None
        self._process_lock = threading.Lock()

    def start(self) -> PreviewStream:
        if self.state is not EncoderState.IDLE:
            raise RuntimeError(f"encoder already started (state={self.state.value})")
        ffutil.check_ffmpeg(self.runner)

        self.state = EncoderState.SPAWNING
        self._thread = threading.Thread(
            target=self._run, name="cutlist-stream-encoder", daemon=True
        )
        self._thread.start()
        return PreviewStream(self)

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def cancel(self) -> None:
        """Detach the consumer and kill the running ffmpeg, if any.

        Safe to call from any thread, any number of times. The worker
        reaps the killed process and finishes in ``CANCELLED``.
        """
        self.channel.detach()
        with self._process_lock:
            process = self._process
            if process is not None and process.poll() is None:
                logger.info("Killing ffmpeg (pid %s) for a detached consumer",
                            getattr(process, "pid", "?"))
                process.kill()

    # -- worker -------------------------------------------------------------

    def _run(self) -> None:
        total = len(self.segments)
        try:
            for i, seg in enumerate(self.segments, 1):
                if self.channel.detached:
                    self.state = EncoderState.CANCELLED
                    logger.warning("Consumer detached before segment %d/%d", i, total)
                    return
                logger.info(
                    "Encoding segment %d/%d: %ss to %ss of %s",
                    i, total, seg.start_time, seg.end_time, seg.media_path,
                )
                if not self._encode_segment(seg):
                    logger.warning("Consumer detached; stopping at segment %d/%d", i, total)
                    return
                logger.info("Segment %d/%d completed", i, total)
            self.state = EncoderState.COMPLETED
            logger.info("Streaming complete, sent %d chunks", self.chunks_sent)
        except Exception as exc:
            self.error = exc
            self.state = EncoderState.FAILED
            logger.warning("Streaming encode failed: %s", exc)
        finally:
            self.channel.send(None)

    def _encode_segment(self, seg: StreamingSegment) -> bool:
        """Stream one segment. Returns False if the consumer detached."""
        self.state = EncoderState.SPAWNING
        cmd = ffutil.build_stream_command(
            Path(seg.media_path), seg.start_time, seg.duration, self.config
        )
        process = self.runner.spawn(cmd)
        with self._process_lock:
            self._process = process
            if self.channel.detached:
                process.kill()
        self.state = EncoderState.STREAMING

        stderr = bytearray()
        drainer = None
        if process.stderr is not None:
            drainer = threading.Thread(
                target=_drain, args=(process.stderr, stderr),
                name="cutlist-stderr-drain", daemon=True,
            )
            drainer.start()

        detached = False
        returncode = None
        try:
            while True:
                chunk = process.stdout.read1(CHUNK_SIZE)
                if not chunk:
                    break
                if not self.channel.send(chunk):
                    detached = True
                    break
                self.chunks_sent += 1
                if self.chunks_sent % 10 == 0:
                    logger.debug("Streamed %d chunks...", self.chunks_sent)

            # A kill from cancel() shows up here as an early EOF.
            detached = detached or self.channel.detached
            if not detached:
                returncode = process.wait()
        finally:
            with self._process_lock:
                self._process = None
            if process.poll() is None:
                process.kill()
                process.wait()
            if drainer is not None:
                drainer.join()
            process.stdout.close()
            if process.stderr:
                process.stderr.close()

        if detached:
            self.state = EncoderState.CANCELLED
            return False
        if returncode != 0:
            raise EncodeFailedError(returncode, bytes(stderr).decode(errors="replace"))
        return True


def _drain(pipe, buffer: bytearray) -> None:
    """Read ``pipe`` to EOF so ffmpeg never blocks on a full stderr pipe."""
    while True:
        block = pipe.read1(CHUNK_SIZE)
        if not block:
            return
        buffer.extend(block)
        if len(buffer) > _STDERR_TAIL:
            del buffer[:-_STDERR_TAIL]


def stream_segments(
    segments: list[StreamingSegment],
    width: int | None = None,
    config: PreviewConfig | None = None,
    runner: ffutil.ToolRunner | None = None,
) -> PreviewStream:
    """Start streaming ``segments`` end to end and return the consumer stream."""
    config = config or PreviewConfig()
    if width is not None:
        config = replace(config, width=width)
    return StreamingEncoder(segments, config=config, runner=runner).start()


def encode_segment_streaming(
    media_path: Path,
    start_time: float,
    end_time: float,
    width: int | None = None,
    config: PreviewConfig | None = None,
    runner: ffutil.ToolRunner | None = None,
) -> PreviewStream:
    segment = StreamingSegment(
        media_path=Path(media_path), start_time=start_time, end_time=end_time
    )
    return stream_segments([segment], width=width, config=config, runner=runner)
