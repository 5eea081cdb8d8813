"""
rd-downloader: fetches torrents through Real-Debrid and tracks each download
from submission to the files on disk.
"""

__version__ = "1.0.0"
