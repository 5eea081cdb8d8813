"""
Utilities for handling file paths, magnet links and media file types.
"""

import os
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from pathvalidate import sanitize_filename

VIDEO_EXTENSIONS = frozenset(
    {".mp4", ".mkv", ".avi", ".mov", ".wmv", ".flv", ".webm", ".m4v", ".ts", ".m2ts"}
)


def extract_name_from_magnet(magnet: str) -> Optional[str]:
    """
    Returns the URL-decoded display name (`dn=`) of a magnet link, if present.
    """
    if not magnet.startswith("magnet:?"):
        return None
    query = urlsplit(magnet).query
    names = parse_qs(query).get("dn")
    if names and names[0].strip():
        return names[0].strip()
    return None


def is_video_file(path: str) -> bool:
    return os.path.splitext(path)[1].lower() in VIDEO_EXTENSIONS


def destination_path(library_path: Path, filename: str) -> Path:
    """Builds a safe output path for `filename` inside the library directory."""
    name = sanitize_filename(os.path.basename(filename), platform="universal")
    if not name:
        name = "download"
    return Path(library_path) / name


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)
