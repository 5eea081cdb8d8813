"""
Storage Layer.

This package handles all data persistence: the configuration file and the
job database that lets unfinished downloads resume after a restart.
"""

from .config_manager import ConfigManager
from .repository import JobRepository

__all__ = ["ConfigManager", "JobRepository"]
