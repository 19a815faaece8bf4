"""filter_complex builders for trim + concat edits."""

from dataclasses import dataclass
from pathlib import Path

from cutlist.models import TimeRange, TimelineClip


@dataclass
class TimelineGraph:
    """Inputs and filter program for a multi-source composition.

    ``inputs[k]`` is passed to ffmpeg as the k-th ``-i`` argument.
    """

    inputs: list[Path]
    program: str


def _trim_pair(
    index: int,
    source: int,
    start: float,
    end: float,
    scale_width: int | None = None,
) -> list[str]:
    video = f"[{source}:v]trim=start={start}:end={end}"
    if scale_width:
        video += f",scale={scale_width}:-2"
    video += f",setpts=PTS-STARTPTS[v{index}]"
    audio = (
        f"[{source}:a]atrim=start={start}:end={end},asetpts=PTS-STARTPTS,"
        f"aresample=async=1:first_pts=0[a{index}]"
    )
    return [video, audio]


def _concat(n: int) -> str:
    v_labels = "".join(f"[v{i}]" for i in range(n))
    a_labels = "".join(f"[a{i}]" for i in range(n))
    return f"{v_labels}{a_labels}concat=n={n}:v=1:a=1[outv][outa]"


def build_filter_complex(segments: list[TimeRange]) -> str:
    """Trim each kept segment of input 0 and concatenate them in order.

    Produces exactly two output pads, ``[outv]`` and ``[outa]``. Segments are
    used as given: ordering and merging are the caller's job.
    """
    if not segments:
        raise ValueError("build_filter_complex called with empty segment list")

    filter_parts: list[str] = []
    for i, seg in enumerate(segments):
        filter_parts.extend(_trim_pair(i, 0, seg.start, seg.end))
    filter_parts.append(_concat(len(segments)))
    return ";".join(filter_parts)


def build_timeline_filter(
    clips: list[TimelineClip], width: int | None = None
) -> TimelineGraph:
    """Compose clips from one or more sources into a single program.

    Clips are played back by ``offset``, not by list position. Each distinct
    source file becomes one ffmpeg input. When ``width`` is given every clip
    is scaled to it (height follows the aspect ratio) so concat sees
    matching frame sizes.
    """
    if not clips:
        raise ValueError("build_timeline_filter called with empty clip list")

    ordered = sorted(clips, key=lambda c: c.offset)

    inputs: list[Path] = []
    input_index: dict[Path, int] = {}
    filter_parts: list[str] = []
    for i, clip in enumerate(ordered):
        path = Path(clip.media_path)
        if path not in input_index:
            input_index[path] = len(inputs)
            inputs.append(path)
        filter_parts.extend(
            _trim_pair(i, input_index[path], clip.start_time, clip.end_time, width)
        )
    filter_parts.append(_concat(len(ordered)))

    return TimelineGraph(inputs=inputs, program=";".join(filter_parts))
