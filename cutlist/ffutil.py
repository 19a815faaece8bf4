"""FFmpeg/ffprobe subprocess helpers."""

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Protocol

from cutlist.errors import (
    EncodeFailedError,
    OutputWriteError,
    ProbeFailedError,
    ToolNotFoundError,
)
from cutlist.filtergraph import TimelineGraph, build_filter_complex
from cutlist.manifest import ExportConfig, PreviewConfig
from cutlist.models import Probe, TimeRange

logger = logging.getLogger(__name__)


class ToolRunner(Protocol):
    """Launches the external media tools.

    Swapped for a fake in tests so command lines can be asserted without
    spawning processes.
    """

    def which(self, name: str) -> str | None: ...

    def run(self, args: list[str]) -> subprocess.CompletedProcess: ...

    def spawn(self, args: list[str]) -> subprocess.Popen: ...


class SubprocessRunner:
    """Default ToolRunner backed by :mod:`subprocess`."""

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def run(self, args: list[str]) -> subprocess.CompletedProcess:
        logger.debug("Running: %s", " ".join(args))
        try:
            return subprocess.run(
                args, capture_output=True, text=True, errors="replace"
            )
        except FileNotFoundError as exc:
            raise ToolNotFoundError(f"{args[0]} not found on PATH") from exc

    def spawn(self, args: list[str]) -> subprocess.Popen:
        logger.debug("Spawning: %s", " ".join(args))
        try:
            return subprocess.Popen(
                args, stdout=subprocess.PIPE, stderr=subprocess.PIPE
            )
        except FileNotFoundError as exc:
            raise ToolNotFoundError(f"{args[0]} not found on PATH") from exc


def default_runner(runner: ToolRunner | None = None) -> ToolRunner:
    return runner if runner is not None else SubprocessRunner()


def ffmpeg_exists(runner: ToolRunner | None = None) -> bool:
    runner = default_runner(runner)
    return all(runner.which(cmd) is not None for cmd in ("ffmpeg", "ffprobe"))


def check_ffmpeg(runner: ToolRunner | None = None) -> None:
    """Raise ToolNotFoundError if ffmpeg/ffprobe are not on PATH."""
    runner = default_runner(runner)
    for cmd in ("ffmpeg", "ffprobe"):
        if runner.which(cmd) is None:
            raise ToolNotFoundError(f"{cmd} not found on PATH")


# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------

def parse_frame_rate(value: str | None, default: float = 30.0) -> float:
    """Parse ffprobe's ``"N/D"`` rate string, e.g. ``"30000/1001"``."""
    if not value:
        return default
    num, _, den = value.partition("/")
    try:
        n = float(num)
        d = float(den) if den else 1.0
    except ValueError:
        return default
    if d <= 0:
        return default
    return n / d


def parse_probe(data: dict, source: str = "<input>") -> Probe:
    """Build a Probe from ffprobe's ``-show_format -show_streams`` JSON."""
    fmt = data.get("format") or {}
    try:
        duration = float(fmt["duration"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ProbeFailedError(f"No usable duration reported for {source}") from exc

    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

    if audio is None:
        raise ProbeFailedError(f"No audio stream found in {source}")

    width = height = 0
    fps = 0.0
    v_codec = "none"
    if video is not None:
        width = int(video.get("width") or 0)
        height = int(video.get("height") or 0)
        if width and height:
            fps = parse_frame_rate(video.get("r_frame_rate"))
            v_codec = video.get("codec_name") or "h264"
        else:
            # cover art or a bogus stream: treat as audio-only
            width = height = 0

    try:
        audio_rate = int(audio.get("sample_rate") or 48000)
    except ValueError:
        audio_rate = 48000

    return Probe(
        duration=max(duration, 0.0),
        width=width,
        height=height,
        fps=fps,
        audio_rate=audio_rate,
        audio_channels=int(audio.get("channels") or 2),
        v_codec=v_codec,
        a_codec=audio.get("codec_name") or "aac",
        container=fmt.get("format_name") or "",
    )


def probe(input_path: Path, runner: ToolRunner | None = None) -> Probe:
    """Extract media metadata via ffprobe."""
    runner = default_runner(runner)
    cmd = [
        "ffprobe",
        "-v", "error",
        "-print_format", "json",
        "-show_streams",
        "-show_format",
        str(input_path),
    ]
    result = runner.run(cmd)
    if result.returncode != 0:
        raise ProbeFailedError(
            f"ffprobe failed on {input_path} (rc={result.returncode}): "
            f"{(result.stderr or '').strip()}"
        )

    try:
        data = json.loads(result.stdout)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ProbeFailedError(f"Invalid ffprobe JSON for {input_path}") from exc

    return parse_probe(data, source=str(input_path))


# ---------------------------------------------------------------------------
# Command builders
# ---------------------------------------------------------------------------

def temp_output_path(output_path: Path) -> Path:
    """Sibling ``<stem>.tmp.<ext>`` used for atomic writes."""
    output_path = Path(output_path)
    ext = output_path.suffix or ".mp4"
    stem = output_path.stem or "out"
    return output_path.with_name(f"{stem}.tmp{ext}")


def _export_codec_args(config: ExportConfig) -> list[str]:
    return [
        "-c:v", config.video_codec,
        "-preset", config.preset,
        "-crf", str(config.crf),
        "-pix_fmt", config.pixel_format,
        "-c:a", config.audio_codec,
        "-b:a", config.audio_bitrate,
        "-movflags", config.movflags,
    ]


def build_export_command(
    input_path: Path,
    filter_complex: str,
    output_path: Path,
    config: ExportConfig | None = None,
) -> list[str]:
    config = config or ExportConfig()
    return [
        "ffmpeg",
        "-v", "error",
        "-i", str(input_path),
        "-filter_complex", filter_complex,
        "-map", "[outv]",
        "-map", "[outa]",
        *_export_codec_args(config),
        "-y",
        str(output_path),
    ]


def build_timeline_command(
    graph: TimelineGraph,
    output_path: Path,
    config: ExportConfig | None = None,
) -> list[str]:
    config = config or ExportConfig()
    cmd = ["ffmpeg", "-v", "error"]
    for path in graph.inputs:
        cmd += ["-i", str(path)]
    cmd += [
        "-filter_complex", graph.program,
        "-map", "[outv]",
        "-map", "[outa]",
        *_export_codec_args(config),
        "-y",
        str(output_path),
    ]
    return cmd


def build_stream_command(
    input_path: Path,
    start: float,
    duration: float,
    config: PreviewConfig | None = None,
) -> list[str]:
    """Fragmented MP4 to stdout, playable before the encode finishes."""
    config = config or PreviewConfig()
    cmd = [
        "ffmpeg",
        "-v", "error",
        "-ss", str(start),
        "-t", str(duration),
        "-i", str(input_path),
    ]
    if config.width:
        cmd += ["-vf", f"scale='min({config.width},iw)':-2"]
    cmd += [
        "-c:v", "libx264",
        "-preset", config.preset,
        "-tune", config.tune,
        "-crf", str(config.crf),
        "-g", str(config.keyframe_interval),
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", config.audio_bitrate,
        "-movflags", "frag_keyframe+empty_moov+default_base_moof",
        "-frag_duration", str(config.fragment_duration_us),
        "-f", "mp4",
        "pipe:1",
    ]
    return cmd


def build_proxy_command(input_path: Path, output_path: Path, max_width: int) -> list[str]:
    return [
        "ffmpeg",
        "-v", "error",
        "-i", str(input_path),
        "-vf", f"scale='min({max_width},iw)':-2",
        "-c:v", "libx264",
        "-preset", "ultrafast",
        "-crf", "28",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", "96k",
        "-movflags", "+faststart",
        "-y",
        str(output_path),
    ]


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def encode_atomically(
    build_cmd: Callable[[Path], list[str]],
    output_path: Path,
    runner: ToolRunner | None = None,
) -> Path:
    """Encode to a temporary sibling of ``output_path``, then rename over it.

    ``output_path`` is never left half-written: on failure the temporary file
    is removed and any previous file at ``output_path`` is untouched.
    """
    runner = default_runner(runner)
    output_path = Path(output_path)
    tmp = temp_output_path(output_path)
    cmd = build_cmd(tmp)

    result = runner.run(cmd)
    if result.returncode != 0:
        tmp.unlink(missing_ok=True)
        logger.warning("ffmpeg exited with status %s writing %s", result.returncode, tmp)
        raise EncodeFailedError(result.returncode, result.stderr or "")

    try:
        tmp.replace(output_path)
    except OSError as exc:
        tmp.unlink(missing_ok=True)
        raise OutputWriteError(f"failed to move {tmp} into place at {output_path}") from exc
    return output_path


def concat_segments(
    input_path: Path,
    segments: list[TimeRange],
    output_path: Path,
    config: ExportConfig | None = None,
    runner: ToolRunner | None = None,
) -> Path:
    """Concatenate keep-segments using a single ffmpeg filter_complex call.

    Uses trim/atrim + concat filters so no intermediate files are needed and
    the approach works regardless of the input codec/container.
    """
    filter_complex = build_filter_complex(segments)
    return encode_atomically(
        lambda tmp: build_export_command(input_path, filter_complex, tmp, config),
        output_path,
        runner,
    )
