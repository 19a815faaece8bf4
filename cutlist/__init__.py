"""cutlist: remove time ranges from media files via ffmpeg."""

__version__ = "0.1.0"
