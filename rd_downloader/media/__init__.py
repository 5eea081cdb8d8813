"""
Media Processing Layer.

This package is responsible for all local file work: streaming downloads to
disk, tracking their progress and fetching subtitles for video files.
"""

from .downloader import Downloader
from .progress import ProgressTracker
from .subtitles import SubtitleFetcher

__all__ = ["Downloader", "ProgressTracker", "SubtitleFetcher"]
