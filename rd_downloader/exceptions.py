"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class RdDownloaderError(Exception):
    """Base exception for all application-specific errors."""


class ConfigurationError(RdDownloaderError):
    """Raised for issues related to configuration loading or validation."""


class SubmissionError(RdDownloaderError):
    """Raised when Real-Debrid rejects a magnet link or torrent file."""


class RemoteApiError(RdDownloaderError):
    """Raised when the Real-Debrid API answers with an error status."""

    def __init__(self, status: int, message: str = ""):
        self.status = status
        self.message = message
        super().__init__(f"API error (status {status}): {message}")

    @property
    def is_client_error(self) -> bool:
        """True for 4xx answers other than 429, which say nothing about service health."""
        return 400 <= self.status < 500 and self.status != 429


class PollError(RdDownloaderError):
    """Raised when a status poll fails transiently. Polling continues."""


class RemoteFatalStatus(RdDownloaderError):
    """Raised when Real-Debrid reports a torrent status that can never recover."""

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Torrent error: {status}")


class JobTimeoutError(RdDownloaderError):
    """Raised when a polling phase exceeds its deadline."""


class TransferError(RdDownloaderError):
    """Raised when a single file transfer fails."""


class SubtitleError(RdDownloaderError):
    """Raised when fetching subtitles for a single video file fails."""


class PersistenceError(RdDownloaderError):
    """Raised when the job repository cannot read or write a record."""


class JobNotFoundError(RdDownloaderError):
    """Raised when a job id does not exist in the repository."""


class InvalidJobStateError(RdDownloaderError):
    """Raised when an operation is not allowed in the job's current phase."""
