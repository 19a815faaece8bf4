"""Orchestrator — runs the export defined by a Manifest."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from cutlist import ffutil
from cutlist.editors.cut import export_with_cuts
from cutlist.manifest import Manifest
from cutlist.models import TimeRange

logger = logging.getLogger(__name__)


@dataclass
class EngineResult:
    output_path: Path
    copied: bool = False
    ranges_removed: int = 0
    duration_original: float = 0.0
    duration_final: float = 0.0
    removed: list[TimeRange] = field(default_factory=list)


def process(
    manifest: Manifest,
    on_progress: Callable[[str, float], None] | None = None,
    runner: ffutil.ToolRunner | None = None,
) -> EngineResult:
    """Execute the export described by ``manifest``.

    Args:
        manifest: Validated editing manifest.
        on_progress: Optional callback(stage_name, fraction_complete).
        runner: Tool launcher; defaults to real subprocesses.
    """

    def _progress(stage: str, frac: float) -> None:
        logger.debug("[%3.0f%%] %s", frac * 100, stage)
        if on_progress:
            on_progress(stage, frac)

    _progress("Checking for ffmpeg", 0.0)
    ffutil.check_ffmpeg(runner)

    n_cuts = len(manifest.cuts)
    if n_cuts:
        _progress(f"Encoding — removing {n_cuts} range(s)", 0.05)
    else:
        _progress("Copying source", 0.05)
    result = export_with_cuts(
        manifest.input,
        manifest.output,
        manifest.cuts,
        config=manifest.export,
        runner=runner,
    )

    _progress("Verifying result", 0.90)
    final_probe = ffutil.probe(manifest.output, runner)

    duration_original = result.source_duration
    if duration_original is None:
        # straight copy: the output is the source
        duration_original = final_probe.duration

    _progress("Done", 1.0)
    return EngineResult(
        output_path=manifest.output,
        copied=result.copied,
        ranges_removed=len(result.removed),
        duration_original=duration_original,
        duration_final=final_probe.duration,
        removed=result.removed,
    )
