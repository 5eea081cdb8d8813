"""
Pydantic models for download jobs and the Real-Debrid objects they are built from.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

PLACEHOLDER_NAME = "Processing..."


class Phase(str, Enum):
    """Lifecycle stage of a download job."""

    PENDING = "pending"
    AWAITING_SELECTION = "awaiting_selection"
    PROCESSING = "processing"
    DOWNLOADING = "downloading"
    SUBTITLES = "subtitles"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES

    @property
    def rank(self) -> int:
        """Position in the forward-only lifecycle. ERROR ranks last."""
        return PHASE_ORDER.index(self)


PHASE_ORDER = [
    Phase.PENDING,
    Phase.AWAITING_SELECTION,
    Phase.PROCESSING,
    Phase.DOWNLOADING,
    Phase.SUBTITLES,
    Phase.COMPLETE,
    Phase.ERROR,
]
TERMINAL_PHASES = frozenset({Phase.COMPLETE, Phase.ERROR})

# Phases that can be picked up again after a restart without user input.
RESUMABLE_PHASES = (Phase.PENDING, Phase.PROCESSING, Phase.DOWNLOADING)


class RemoteStatus:
    """Torrent status strings reported by Real-Debrid."""

    MAGNET_ERROR = "magnet_error"
    MAGNET_CONVERSION = "magnet_conversion"
    WAITING_FILES_SELECTION = "waiting_files_selection"
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    ERROR = "error"
    VIRUS = "virus"
    COMPRESSING = "compressing"
    UPLOADING = "uploading"
    DEAD = "dead"


FATAL_REMOTE_STATUSES = frozenset(
    {
        RemoteStatus.MAGNET_ERROR,
        RemoteStatus.ERROR,
        RemoteStatus.VIRUS,
        RemoteStatus.DEAD,
    }
)


class TorrentFile(BaseModel):
    """A file inside a torrent, as listed by Real-Debrid."""

    id: int
    path: str = ""
    bytes: int = 0
    selected: int = 0

    @property
    def is_selected(self) -> bool:
        return self.selected == 1


class TorrentInfo(BaseModel):
    """Subset of the `/torrents/info/{id}` payload the job state machine uses."""

    id: str = ""
    filename: str = ""
    bytes: int = 0
    progress: float = 0.0
    status: str = ""
    files: list[TorrentFile] = Field(default_factory=list)
    links: list[str] = Field(default_factory=list)


class UnrestrictedLink(BaseModel):
    """A resource link resolved into a direct download URL."""

    filename: str
    filesize: int = 0
    download: str
    mime_type: str = Field(default="", alias="mimeType")

    class Config:
        """Pydantic model configuration."""

        populate_by_name = True


class JobSnapshot(BaseModel):
    """Immutable copy of a job's state, safe to hand to any number of readers."""

    id: Optional[int]
    external_id: str
    name: str
    phase: Phase
    progress: float
    total_bytes: int
    downloaded_bytes: int
    available_files: tuple[TorrentFile, ...]
    selected_file_ids: tuple[int, ...]
    resource_links: tuple[str, ...]
    local_paths: tuple[str, ...]
    fetch_subtitles: bool
    subtitle_outcome: str
    error_detail: str
    created_at: datetime
    updated_at: datetime

    class Config:
        """Pydantic model configuration."""

        frozen = True


class Job(BaseModel):
    """
    A user-submitted download and its lifecycle state.

    The repository owns the durable record. While a worker processes a job it
    holds the only working copy and publishes snapshots of it.
    """

    id: Optional[int] = None
    external_id: str = ""
    name: str = PLACEHOLDER_NAME
    phase: Phase = Phase.PENDING
    progress: float = 0.0
    total_bytes: int = 0
    downloaded_bytes: int = 0
    available_files: list[TorrentFile] = Field(default_factory=list)
    selected_file_ids: list[int] = Field(default_factory=list)
    resource_links: list[str] = Field(default_factory=list)
    local_paths: list[str] = Field(default_factory=list)
    fetch_subtitles: bool = True
    subtitle_outcome: str = ""
    error_detail: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True

    def snapshot(self) -> JobSnapshot:
        """Returns a frozen copy of the current state."""
        return JobSnapshot(**self.model_dump())

    def touch(self) -> None:
        self.updated_at = datetime.now()
