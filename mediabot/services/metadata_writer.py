"""Container metadata writing through ffmpeg, with sidecar staging.

Metadata is first staged to ``<file>.metadata.json`` and only then written
into the container. The write remuxes into a temp file next to the original
and replaces the original only when ffmpeg exits cleanly, so a failed or
cancelled write never touches the source file.
"""

import asyncio
import json
import logging
import os
import re
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional

from ..config import settings
from .errors import MediaBotError, OperationCancelled, SourceMissing, SubprocessFailure

logger = logging.getLogger(__name__)

TEMP_FILE_PATTERN = re.compile(r"\.tmp\.\d+\.[^.]+$")
VERSION_PATTERN = re.compile(r"ffmpeg version (\S+)")

TV_MEDIA_TYPE = "10"
MOVIE_MEDIA_TYPE = "9"


@dataclass
class StagedMetadata:
    """Contents of a ``.metadata.json`` sidecar."""

    timestamp: str
    source: str
    confidence: float
    media_type: str
    metadata: dict = field(default_factory=dict)
    applied: bool = False
    applied_timestamp: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            "timestamp": self.timestamp,
            "source": self.source,
            "confidence": self.confidence,
            "mediaType": self.media_type,
            "metadata": self.metadata,
            "applied": self.applied,
        }
        if self.applied_timestamp:
            data["appliedTimestamp"] = self.applied_timestamp
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "StagedMetadata":
        return cls(
            timestamp=data.get("timestamp", ""),
            source=data.get("source", settings.encoder_tag),
            confidence=data.get("confidence", 0.5),
            media_type=data.get("mediaType", "unknown"),
            metadata=data.get("metadata") or {},
            applied=bool(data.get("applied", False)),
            applied_timestamp=data.get("appliedTimestamp"),
        )

    def to_record(self) -> dict:
        """Rebuild a metadata record from the staged tags."""
        tags = self.metadata
        if tags.get("media_type") == TV_MEDIA_TYPE:
            media_type = "tv"
            title = tags.get("show") or tags.get("series")
            episode_title = tags.get("episode")
        elif tags.get("media_type") == MOVIE_MEDIA_TYPE:
            media_type = "movie"
            title = tags.get("movie") or tags.get("title")
            episode_title = None
        else:
            media_type = "unknown"
            title = tags.get("title")
            episode_title = None

        return {
            "media_type": media_type,
            "title": title,
            "year": _int_tag(tags.get("year") or tags.get("date")),
            "season": _int_tag(tags.get("season_number")),
            "episode": _int_tag(tags.get("episode_sort")),
            "episode_title": episode_title,
            "overview": tags.get("description"),
            "source": "staged",
            "external_id": None,
            "confidence": self.confidence,
        }


def _int_tag(value) -> Optional[int]:
    """Leading integer of a tag value, so '2021-05-01' gives 2021."""
    if value is None:
        return None
    match = re.match(r"\s*(\d+)", str(value))
    return int(match.group(1)) if match else None


@dataclass
class WriteResult:
    """Outcome of writing metadata into one file."""

    success: bool
    path: str
    error: Optional[str] = None
    error_kind: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "path": self.path,
            "error": self.error,
            "error_kind": self.error_kind,
            "skipped": self.skipped,
        }


def sanitize_metadata_value(value) -> str:
    """Make a tag value safe to pass as a single ``-metadata key=value`` argument."""
    if value is None:
        return ""
    text = str(value)
    text = text.replace('"', "'")
    text = re.sub(r"[\r\n]+", " ", text)
    text = text.replace("&", "and")
    text = re.sub(r"[<>|]", "", text)
    return text.strip()


def build_metadata_map(record: dict) -> dict:
    """Map a resolved metadata record onto container tag names."""
    tags = {}
    title = record.get("title")
    year = record.get("year")
    overview = record.get("overview")
    media_type = record.get("media_type")

    if title:
        tags["title"] = title
    if year:
        tags["date"] = str(year)
        tags["year"] = str(year)
    if overview:
        tags["comment"] = overview
        tags["description"] = overview
        tags["synopsis"] = overview

    if media_type == "tv":
        if title:
            tags["show"] = title
            tags["series"] = title
        if record.get("season") is not None:
            tags["season_number"] = str(record["season"])
            tags["season"] = str(record["season"])
        if record.get("episode") is not None:
            tags["episode_id"] = str(record["episode"])
            tags["episode_sort"] = str(record["episode"])
            tags["track"] = str(record["episode"])
        if record.get("episode_title"):
            tags["title"] = record["episode_title"]
            tags["episode"] = record["episode_title"]
        tags["media_type"] = TV_MEDIA_TYPE
        tags["genre"] = "TV Show"
    elif media_type == "movie":
        tags["media_type"] = MOVIE_MEDIA_TYPE
        tags["genre"] = "Movie"
        if title:
            tags["movie"] = title

    source = record.get("source")
    if source:
        tags["encoder"] = f"{settings.encoder_tag} via {source}"
        tags["comment"] = f"{tags.get('comment', '')} [Source: {source}]".strip()

    confidence = record.get("confidence")
    if confidence:
        tags["comment"] = f"{tags.get('comment', '')} [Confidence: {confidence * 100:.1f}%]".strip()

    return tags


# Normalized field -> tag names that may carry it, first non-empty wins
CONTAINER_FIELDS = {
    "title": ("title",),
    "date": ("date", "year"),
    "genre": ("genre",),
    "comment": ("comment", "description"),
    "show": ("show", "series"),
    "season": ("season", "season_number"),
    "episode": ("episode", "episode_id", "track"),
    "episode_title": ("episode_title",),
    "movie": ("movie",),
    "encoder": ("encoder",),
    "media_type": ("media_type",),
}


def parse_container_info(data: dict) -> dict:
    """Normalize ``ffprobe -show_format -show_streams`` JSON.

    ``tags`` holds the container tags with lowercased keys, ready to be
    written back as they were.
    """
    fmt = data.get("format") or {}
    tags = {
        str(key).lower(): str(value).strip()
        for key, value in (fmt.get("tags") or {}).items()
        if value is not None and str(value).strip()
    }

    result = {"tags": tags}
    for name, keys in CONTAINER_FIELDS.items():
        result[name] = next((tags[k] for k in keys if k in tags), None)

    result["duration"] = fmt.get("duration")
    result["size"] = fmt.get("size")
    result["bit_rate"] = fmt.get("bit_rate")
    result["format_name"] = fmt.get("format_name")

    streams = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
    if video:
        result["video_codec"] = video.get("codec_name")
        result["width"] = video.get("width")
        result["height"] = video.get("height")
    if audio:
        result["audio_codec"] = audio.get("codec_name")
        result["audio_channels"] = audio.get("channels")
    return result


class MetadataWriterService:
    """Stages and writes container metadata using ffmpeg."""

    def __init__(
        self,
        ffmpeg_path: Optional[str] = None,
        sidecar_suffix: Optional[str] = None,
        ffprobe_path: Optional[str] = None,
    ):
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path
        self.sidecar_suffix = sidecar_suffix or settings.sidecar_suffix

    def sidecar_path(self, path: str) -> Path:
        source = Path(path)
        return source.with_name(f"{source.name}{self.sidecar_suffix}")

    # ── Staging ─────────────────────────────────────────────────────

    def stage(self, path: str, metadata_map: dict, confidence: Optional[float] = None) -> StagedMetadata:
        """Write the sidecar for ``path``. Re-staging overwrites."""
        staged = StagedMetadata(
            timestamp=datetime.utcnow().isoformat(),
            source=metadata_map.get("encoder") or settings.encoder_tag,
            confidence=confidence if confidence is not None else 0.5,
            media_type=metadata_map.get("media_type") or "unknown",
            metadata=dict(metadata_map),
        )
        self._save(path, staged)
        logger.info(f"Metadata staged for: {Path(path).name}")
        return staged

    def check_staged(self, path: str) -> Optional[StagedMetadata]:
        sidecar = self.sidecar_path(path)
        if not sidecar.exists():
            return None
        try:
            return StagedMetadata.from_dict(json.loads(sidecar.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Unreadable sidecar {sidecar}: {e}")
            return None

    def _save(self, path: str, staged: StagedMetadata):
        sidecar = self.sidecar_path(path)
        sidecar.write_text(json.dumps(staged.to_dict(), indent=2), encoding="utf-8")

    async def apply_staged(self, path: str, cancel_token=None) -> WriteResult:
        """Write the staged tags into the container and mark the sidecar applied."""
        staged = self.check_staged(path)
        if staged is None:
            return WriteResult(False, path, error="No staged metadata", error_kind="not_staged")

        logger.info(f"Applying staged metadata to: {Path(path).name}")
        try:
            await self.write(path, staged.metadata, cancel_token)
            staged.applied = True
            staged.applied_timestamp = datetime.utcnow().isoformat()
            self._save(path, staged)
        except MediaBotError as e:
            logger.error(f"Failed to apply staged metadata to {path}: {e.message}")
            return WriteResult(False, path, error=e.message, error_kind=e.kind)
        except OSError as e:
            logger.error(f"Failed to apply staged metadata to {path}: {e}", exc_info=True)
            return WriteResult(False, path, error=str(e), error_kind="os_error")

        return WriteResult(True, path)

    async def write_record(self, path: str, record: dict, cancel_token=None) -> WriteResult:
        """Stage tags built from a metadata record, then apply them."""
        try:
            self.stage(path, build_metadata_map(record), record.get("confidence"))
        except OSError as e:
            logger.error(f"Failed to stage metadata for {path}: {e}")
            return WriteResult(False, path, error=str(e), error_kind="os_error")
        return await self.apply_staged(path, cancel_token)

    async def fetch_and_write(
        self,
        path: str,
        fetch: Callable[[str], Awaitable[Optional[dict]]],
        cancel_token=None,
    ) -> WriteResult:
        """Write metadata, calling ``fetch`` only when nothing is staged.

        Applied sidecars are skipped, unapplied ones are applied as-is.
        ``fetch`` returns a metadata record or None when nothing was found.
        """
        staged = self.check_staged(path)
        if staged is not None and staged.applied:
            logger.info(f"Metadata already applied to {Path(path).name}, skipping")
            return WriteResult(True, path, skipped=True)
        if staged is not None:
            return await self.apply_staged(path, cancel_token)

        try:
            record = await fetch(path)
        except MediaBotError as e:
            return WriteResult(False, path, error=e.message, error_kind=e.kind)
        if not record:
            return WriteResult(False, path, error="No metadata found", error_kind="no_match")
        return await self.write_record(path, record, cancel_token)

    async def fetch_and_write_batch(
        self,
        paths: list[str],
        fetch: Callable[[str], Awaitable[Optional[dict]]],
        cancel_token=None,
    ) -> list[WriteResult]:
        results = []
        for path in paths:
            if cancel_token is not None and cancel_token.cancelled:
                results.append(WriteResult(False, path, error="Operation cancelled", error_kind="cancelled"))
                continue
            results.append(await self.fetch_and_write(path, fetch, cancel_token))
        return results

    # ── Transcoder ──────────────────────────────────────────────────

    def build_args(self, source: Path, temp: Path, metadata_map: dict) -> list[str]:
        args = [
            self.ffmpeg_path,
            "-i", str(source),
            "-map_metadata", "0",
            "-c", "copy",
            "-avoid_negative_ts", "make_zero",
            "-y",
        ]
        for key, value in metadata_map.items():
            clean = sanitize_metadata_value(value)
            if clean:
                args.extend(["-metadata", f"{key}={clean}"])
        args.append(str(temp))
        return args

    async def _run(self, args: list[str], cancel_token=None) -> tuple[int, str]:
        """Run a subprocess to completion; killed if ``cancel_token`` fires first."""
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SubprocessFailure(f"Failed to start {args[0]}: {e}") from e

        communicate = asyncio.ensure_future(process.communicate())
        waiters = {communicate}
        cancel_wait = None
        if cancel_token is not None:
            cancel_wait = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            if communicate not in done:
                raise OperationCancelled("Metadata write cancelled")
            _, stderr = communicate.result()
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()
            if process.returncode is None:
                process.kill()
                await communicate

        return process.returncode, (stderr or b"").decode(errors="replace")

    async def write(self, path: str, metadata_map: dict, cancel_token=None) -> str:
        """Rewrite the container tags of ``path`` in place.

        Raises SubprocessFailure or OperationCancelled; the temp file is
        removed on every exit path.
        """
        source = Path(path)
        if not source.exists():
            raise SourceMissing(f"Source file does not exist: {path}")

        temp = source.with_name(f"{source.stem}.tmp.{int(time.time() * 1000)}{source.suffix}")
        args = self.build_args(source, temp, metadata_map)
        logger.debug(f"Running: {' '.join(args)}")

        try:
            exit_code, stderr = await self._run(args, cancel_token)
            if exit_code != 0:
                raise SubprocessFailure(
                    f"ffmpeg exited with code {exit_code}",
                    exit_code=exit_code,
                    stderr=stderr[-1000:],
                )
            os.replace(temp, source)
            logger.info(f"Metadata written to {source.name}")
        finally:
            if temp.exists():
                temp.unlink()

        return str(source)

    async def read_metadata(self, path: str, timeout: float = 30.0) -> Optional[dict]:
        """Probe the container tags of ``path``. Returns None when ffprobe can't read it."""
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffprobe_path,
                "-v", "quiet",
                "-print_format", "json",
                "-show_format",
                "-show_streams",
                str(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"ffprobe not available: {e}")
            return None

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"ffprobe timed out reading {Path(path).name}")
            return None

        if process.returncode != 0:
            logger.warning(f"ffprobe exited with code {process.returncode} for {Path(path).name}")
            return None
        try:
            return parse_container_info(json.loads(stdout.decode(errors="replace")))
        except json.JSONDecodeError as e:
            logger.warning(f"Unreadable ffprobe output for {Path(path).name}: {e}")
            return None

    async def check_transcoder(self, timeout: float = 5.0) -> dict:
        """Report whether ffmpeg can be run and which version it is."""
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path, "-version",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"ffmpeg not available: {e}")
            return {
                "available": False,
                "error": "FFmpeg not installed or not in PATH",
                "platform": sys.platform,
            }

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return {
                "available": False,
                "error": "FFmpeg check timed out",
                "platform": sys.platform,
            }

        output = (stdout + stderr).decode(errors="replace")
        version = VERSION_PATTERN.search(output)
        if process.returncode == 0 or version:
            return {
                "available": True,
                "version": version.group(1) if version else "unknown",
                "platform": sys.platform,
            }
        return {
            "available": False,
            "error": f"FFmpeg exited with code {process.returncode}",
            "platform": sys.platform,
        }

    def cleanup_temp_files(self, directory: str) -> list[str]:
        """Remove temp files left behind by interrupted writes."""
        removed = []
        for path in Path(directory).iterdir():
            if path.is_file() and TEMP_FILE_PATTERN.search(path.name):
                path.unlink()
                removed.append(str(path))
                logger.info(f"Removed stale temp file {path.name}")
        return removed
