"""File system scanner service."""

import hashlib
import logging
from dataclasses import dataclass, asdict
from pathlib import Path

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass
class MediaFile:
    """A media file found on disk, not yet processed."""

    id: str
    path: str
    name: str
    directory: str
    status: str = "pending"

    def to_dict(self) -> dict:
        return asdict(self)


def file_id(path: str) -> str:
    """Stable identifier for a file path."""
    return hashlib.sha1(path.encode("utf-8")).hexdigest()[:16]


class ScannerService:
    """Service for scanning the file system for media files."""

    def __init__(self, extensions=None):
        self.extensions = {
            e.lower().lstrip(".") for e in (extensions or settings.media_extensions)
        }

    def is_media_file(self, path: Path) -> bool:
        """Check if a file has a media container extension."""
        return path.suffix.lower().lstrip(".") in self.extensions

    def scan_folder(self, folder_path: str) -> list[MediaFile]:
        """Recursively collect media files under ``folder_path``."""
        files = []
        folder = Path(folder_path)

        if not folder.is_dir():
            logger.debug(f"scan_folder: path is not a directory: {folder_path}")
            return files

        logger.debug(f"scan_folder: walking {folder_path}")
        for item in sorted(folder.rglob("*")):
            if item.is_file() and self.is_media_file(item):
                files.append(
                    MediaFile(
                        id=file_id(str(item)),
                        path=str(item),
                        name=item.name,
                        directory=str(item.parent),
                    )
                )

        logger.info(f"scan_folder: found {len(files)} media files in {folder_path}")
        return files
