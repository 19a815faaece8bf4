"""Timeline editor. Renders clips from several sources into one file."""

import logging
from pathlib import Path

from cutlist import ffutil
from cutlist.filtergraph import build_timeline_filter
from cutlist.manifest import ExportConfig
from cutlist.models import TimelineClip

logger = logging.getLogger(__name__)


def render_timeline(
    clips: list[TimelineClip],
    output_path: Path,
    width: int | None = None,
    config: ExportConfig | None = None,
    runner: ffutil.ToolRunner | None = None,
) -> Path:
    """Concatenate ``clips`` in timeline-offset order into ``output_path``."""
    if not clips:
        raise ValueError("render_timeline called with no clips")

    ffutil.check_ffmpeg(runner)
    graph = build_timeline_filter(clips, width=width)
    logger.info(
        "Rendering %d clip(s) from %d source(s) to %s",
        len(clips), len(graph.inputs), output_path,
    )
    return ffutil.encode_atomically(
        lambda tmp: ffutil.build_timeline_command(graph, tmp, config),
        output_path,
        runner,
    )
