"""Video export job service: overlay clips, podcast renders and GIF loops via ffmpeg."""

__version__ = "0.1.0"
