"""
Data Models Layer.

This package contains Pydantic models that define the core data structures
used throughout the application, such as configuration and download jobs.
"""

from .config import AppConfig
from .job import (
    FATAL_REMOTE_STATUSES,
    PHASE_ORDER,
    PLACEHOLDER_NAME,
    RESUMABLE_PHASES,
    Job,
    JobSnapshot,
    Phase,
    RemoteStatus,
    TorrentFile,
    TorrentInfo,
    UnrestrictedLink,
)

__all__ = [
    "FATAL_REMOTE_STATUSES",
    "PHASE_ORDER",
    "PLACEHOLDER_NAME",
    "RESUMABLE_PHASES",
    "AppConfig",
    "Job",
    "JobSnapshot",
    "Phase",
    "RemoteStatus",
    "TorrentFile",
    "TorrentInfo",
    "UnrestrictedLink",
]
