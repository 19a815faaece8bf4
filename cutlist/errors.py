"""Error types raised by cutlist operations."""


class CutlistError(Exception):
    """Base error for cutlist operations."""


class ToolNotFoundError(CutlistError, RuntimeError):
    """Raised when ffmpeg or ffprobe cannot be launched."""


class ProbeFailedError(CutlistError):
    """Raised when ffprobe runs but its output is unusable."""


class AllContentCutError(CutlistError, ValueError):
    """Raised when the requested cuts leave nothing to export."""


class EncodeFailedError(CutlistError):
    """Raised when ffmpeg exits with a non-zero status."""

    def __init__(self, returncode: int | None, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        message = f"ffmpeg failed (status {returncode})"
        if stderr:
            message += f": {stderr.strip()[-500:]}"
        super().__init__(message)


class OutputWriteError(CutlistError, OSError):
    """Raised when the output file cannot be copied or moved into place."""
