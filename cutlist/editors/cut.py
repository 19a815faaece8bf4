"""Cut editor — exports a copy of a file with time ranges removed."""

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from cutlist import ffutil
from cutlist.errors import AllContentCutError, OutputWriteError
from cutlist.intervals import kept_segments, normalize_cuts
from cutlist.manifest import ExportConfig
from cutlist.models import TimeRange

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    output_path: Path
    copied: bool = False
    source_duration: float | None = None
    removed: list[TimeRange] = field(default_factory=list)
    kept: list[TimeRange] = field(default_factory=list)


def _copy(input_path: Path, output_path: Path) -> None:
    """Copy through a temporary sibling so a failed copy never truncates
    an existing ``output_path``."""
    tmp = ffutil.temp_output_path(output_path)
    try:
        shutil.copyfile(input_path, tmp)
        tmp.replace(output_path)
    except OSError as exc:
        tmp.unlink(missing_ok=True)
        raise OutputWriteError(f"failed to copy {input_path} -> {output_path}") from exc


def export_with_cuts(
    input_path: Path,
    output_path: Path,
    cuts: Iterable[TimeRange | tuple[float, float]],
    config: ExportConfig | None = None,
    runner: ffutil.ToolRunner | None = None,
) -> ExportResult:
    """Write ``output_path`` as ``input_path`` with ``cuts`` removed.

    With nothing (valid) to cut the source is copied byte for byte. Otherwise
    the kept segments are re-encoded to H.264/AAC through a trim/concat
    filter graph, written to a temporary sibling and renamed into place.

    Raises:
        ToolNotFoundError: ffmpeg/ffprobe missing.
        ProbeFailedError: the source could not be inspected.
        AllContentCutError: the cuts cover the whole source.
        EncodeFailedError: ffmpeg exited non-zero.
        OutputWriteError: the copy or final rename failed.
    """
    input_path = Path(input_path)
    output_path = Path(output_path)
    cuts = list(cuts)

    ffutil.check_ffmpeg(runner)

    if not cuts:
        logger.info("No cuts requested; copying %s -> %s", input_path, output_path)
        _copy(input_path, output_path)
        return ExportResult(output_path=output_path, copied=True)

    probe = ffutil.probe(input_path, runner)
    duration = probe.duration

    normalized = normalize_cuts(cuts, duration)
    if not normalized:
        logger.info("All %d cuts were degenerate; copying source unchanged", len(cuts))
        _copy(input_path, output_path)
        return ExportResult(output_path=output_path, copied=True, source_duration=duration)

    kept = kept_segments(normalized, duration)
    if not kept:
        raise AllContentCutError("All content would be cut out (no kept segments)")

    logger.info(
        "Exporting %s: removing %d range(s), keeping %d segment(s)",
        input_path, len(normalized), len(kept),
    )
    ffutil.concat_segments(input_path, kept, output_path, config=config, runner=runner)
    logger.info("Export complete: %s", output_path)

    return ExportResult(
        output_path=output_path,
        source_duration=duration,
        removed=normalized,
        kept=kept,
    )
