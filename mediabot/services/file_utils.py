"""Shared file utility functions and constants."""

import logging
import re
import shutil
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Language codes for subtitle/companion file detection
LANGUAGE_CODES = [
    "en", "eng", "es", "spa", "fr", "fra", "de", "deu",
    "ja", "jpn", "pt", "por", "it", "ita", "ko", "kor", "zh", "zho",
]

INVALID_FILENAME_CHARS = '<>:"/\\|?*'
CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
SEASON_FOLDER = re.compile(r"^Season\s+(\d+)$", re.IGNORECASE)
BACKUP_SUFFIX = ".backup"


def sanitize_filename(name: str) -> str:
    """Remove invalid characters from a filename.

    Applying it twice gives the same result as applying it once.
    """
    for char in INVALID_FILENAME_CHARS:
        name = name.replace(char, "")
    name = CONTROL_CHARS.sub(" ", name)
    name = " ".join(name.split())
    return name.strip(" .")


def parse_season_folder(name: str) -> Optional[int]:
    """Return the season number of a 'Season N' folder name, else None."""
    match = SEASON_FOLDER.match(name.strip())
    return int(match.group(1)) if match else None


def is_release_folder(name: str) -> bool:
    """Per-episode download folders look like 'Show.S01E01.1080p-GROUP'."""
    return "S0" in name and "E0" in name


def is_relevant_file(path: Path) -> bool:
    """Files whose presence keeps a release folder from being cleaned up."""
    name = path.name
    if name.startswith("."):
        return False
    if path.suffix.lower() == ".nfo":
        return False
    if "screen" in name.lower():
        return False
    return True


def has_relevant_files(directory: Path) -> bool:
    return any(is_relevant_file(p) for p in directory.rglob("*") if p.is_file())


def companion_files(source: Path, extensions: set) -> list[tuple[Path, str]]:
    """Find files next to ``source`` that share its stem.

    Returns (path, suffix) pairs where suffix is what follows the stem,
    e.g. ".en.srt".
    """
    found = []
    source_dir = source.parent
    stem = source.stem

    for ext in sorted(extensions):
        candidate = source_dir / f"{stem}{ext}"
        if candidate.exists():
            found.append((candidate, ext))

        for lang in LANGUAGE_CODES:
            candidate = source_dir / f"{stem}.{lang}{ext}"
            if candidate.exists():
                found.append((candidate, f".{lang}{ext}"))

    return found


def move_accompanying_files(
    source: Path,
    dest: Path,
    extensions: set,
    sidecar_suffix: str = "",
) -> list[tuple[str, str]]:
    """Move accompanying files (subtitles, nfo, images, staged metadata) along with the main file.

    Returns the (old, new) path pairs that were moved. Companions whose
    target already exists are left in place.
    """
    moved = []
    pairs = [
        (path, dest.parent / f"{dest.stem}{suffix}")
        for path, suffix in companion_files(source, extensions)
    ]
    if sidecar_suffix:
        sidecar = source.parent / f"{source.name}{sidecar_suffix}"
        if sidecar.exists():
            pairs.append((sidecar, dest.parent / f"{dest.name}{sidecar_suffix}"))

    for old, new in pairs:
        if new.exists():
            logger.warning(f"Not moving companion {old.name}: {new} already exists")
            continue
        shutil.move(str(old), str(new))
        moved.append((str(old), str(new)))

    return moved
