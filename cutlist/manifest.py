"""JSON manifest schema — the contract between CLI/API and engine."""

import json
from dataclasses import dataclass, field
from pathlib import Path

from cutlist.models import TimeRange, as_range


@dataclass
class ExportConfig:
    """Encoder settings for a finished export (H.264/AAC MP4)."""

    video_codec: str = "libx264"
    preset: str = "medium"
    crf: int = 20
    pixel_format: str = "yuv420p"
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"
    movflags: str = "+faststart"


@dataclass
class PreviewConfig:
    """Encoder settings for the live fragmented-MP4 preview stream."""

    width: int | None = 960
    preset: str = "ultrafast"
    tune: str = "zerolatency"
    crf: int = 26
    keyframe_interval: int = 15
    audio_bitrate: str = "128k"
    fragment_duration_us: int = 500_000
    channel_capacity: int = 4


@dataclass
class Manifest:
    """Top-level editing manifest."""

    input: Path
    output: Path
    version: str = "1"
    cuts: list[TimeRange] = field(default_factory=list)
    export: ExportConfig = field(default_factory=ExportConfig)
    preview: PreviewConfig = field(default_factory=PreviewConfig)


def parse_cut(value) -> TimeRange:
    """Accept ``[start, end]`` or ``{"start": s, "end": e}``."""
    try:
        if isinstance(value, dict):
            return TimeRange(start=float(value["start"]), end=float(value["end"]))
        return as_range(value)
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid cut range: {value!r}") from exc


def load_manifest(path: str | Path) -> Manifest:
    """Load and validate a manifest from a JSON file."""
    path = Path(path)
    data = json.loads(path.read_text())

    if "input" not in data or "output" not in data:
        raise ValueError("Manifest must contain 'input' and 'output' fields")

    cuts = [parse_cut(c) for c in data.get("cuts", [])]
    export = ExportConfig(**data["export"]) if "export" in data else ExportConfig()
    preview = PreviewConfig(**data["preview"]) if "preview" in data else PreviewConfig()

    return Manifest(
        version=data.get("version", "1"),
        input=Path(data["input"]),
        output=Path(data["output"]),
        cuts=cuts,
        export=export,
        preview=preview,
    )
