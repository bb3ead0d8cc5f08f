"""Database models for mediabot."""

from .settings import AppSettings
from .library_log import LibraryLog

__all__ = ["AppSettings", "LibraryLog"]
