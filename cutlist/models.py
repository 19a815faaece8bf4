"""Shared data types used across cutlist."""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class TimeRange:
    """A start/end time pair in seconds."""

    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


def as_range(value: "TimeRange | tuple[float, float] | list[float]") -> TimeRange:
    """Coerce a ``(start, end)`` pair or an existing TimeRange."""
    if isinstance(value, TimeRange):
        return value
    start, end = value
    return TimeRange(start=float(start), end=float(end))


@dataclass(frozen=True)
class Probe:
    """Metadata extracted from a media file via ffprobe.

    ``width == height == 0`` marks audio-only media.
    """

    duration: float
    width: int
    height: int
    fps: float
    audio_rate: int
    audio_channels: int
    v_codec: str
    a_codec: str
    container: str

    @property
    def is_audio_only(self) -> bool:
        return self.width == 0 and self.height == 0


@dataclass(frozen=True)
class TimelineClip:
    """A slice of a source file placed at ``offset`` on a composed timeline."""

    media_path: Path
    start_time: float
    end_time: float
    offset: float = 0.0

    def __post_init__(self) -> None:
        if self.end_time <= self.start_time:
            raise ValueError(
                f"clip end ({self.end_time}) must be after its start ({self.start_time})"
            )

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class StreamingSegment:
    """One entry of a streamed preview sequence, played in list order."""

    media_path: Path
    start_time: float
    end_time: float
    timeline_offset: float = 0.0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time
