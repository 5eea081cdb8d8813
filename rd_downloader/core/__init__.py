"""
Core Application Logic.

This package contains the job state machine, the worker pool that runs it,
the event hub that publishes job updates, and the service used to submit
and manage jobs.
"""

from .download_manager import DownloadManager
from .download_service import DownloadService
from .event_hub import EventHub
from .job_processor import JobProcessor

__all__ = ["DownloadManager", "DownloadService", "EventHub", "JobProcessor"]
