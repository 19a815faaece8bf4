"""Preview proxy: a small H.264/AAC copy that any player can handle."""

import tempfile
from pathlib import Path

from cutlist import ffutil


def make_preview_proxy(
    input_path: Path,
    output_dir: Path | None = None,
    max_width: int = 960,
    runner: ffutil.ToolRunner | None = None,
) -> Path:
    """Write ``<output_dir>/<stem>_proxy.mp4``, downscaled to ``max_width``.

    Sources narrower than ``max_width`` keep their size.
    """
    input_path = Path(input_path)
    ffutil.check_ffmpeg(runner)

    out_dir = Path(output_dir) if output_dir else Path(tempfile.gettempdir())
    output_path = out_dir / f"{input_path.stem}_proxy.mp4"

    return ffutil.encode_atomically(
        lambda tmp: ffutil.build_proxy_command(input_path, tmp, max_width),
        output_path,
        runner,
    )
