from __future__ import annotations

import dataclasses
import stat
import sys
from pathlib import Path
from typing import Optional

import pytest

from mediabot.config import settings
from mediabot.services.parser import MediaKind
from mediabot.services.providers import EpisodeDetails, MatchCandidate, MetadataProvider


class FakeProvider(MetadataProvider):
    """In-memory provider that records every call."""

    def __init__(
        self,
        provider_id: str = "tmdb",
        results: Optional[list] = None,
        episodes: Optional[dict] = None,
        has_key: bool = True,
        error: Optional[Exception] = None,
    ) -> None:
        self.provider_id = provider_id
        self.results = results or []
        self.episodes = episodes or {}
        self.has_key = has_key
        self.error = error
        self.searches: list = []
        self.episode_calls: list = []
        self.closed = False

    @property
    def has_credentials(self) -> bool:
        return self.has_key

    async def search(self, query, kind, year=None):
        self.searches.append((query, kind, year))
        if self.error is not None:
            raise self.error
        return [dataclasses.replace(m) for m in self.results]

    async def get_episode(self, external_id, season, episode):
        self.episode_calls.append((external_id, season, episode))
        return self.episodes.get((external_id, season, episode))

    async def close(self):
        self.closed = True


def make_match(
    external_id: str,
    title: str,
    confidence: float,
    kind: MediaKind = MediaKind.TV,
    provider_id: str = "tmdb",
    year: Optional[int] = None,
) -> MatchCandidate:
    return MatchCandidate(
        provider_id=provider_id,
        external_id=external_id,
        title=title,
        kind=kind,
        confidence=confidence,
        year=year,
    )


def make_episode(season: int, episode: int, title: str) -> EpisodeDetails:
    return EpisodeDetails(season=season, episode=episode, title=title, overview=f"About {title}")


@pytest.fixture
def no_delay(monkeypatch):
    monkeypatch.setattr(settings, "provider_delay_seconds", 0.0)


@pytest.fixture
def write_script(tmp_path):
    """Write an executable shell script standing in for ffmpeg."""
    if sys.platform == "win32":
        pytest.skip("shell scripts are POSIX only")

    scripts = tmp_path / "bin"
    scripts.mkdir()

    def _write(name: str, body: str) -> str:
        path = scripts / name
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _write


# Appends a marker to a copy of the input, written to the last argument
FFMPEG_OK = 'for last; do :; done\n{ cat "$2"; echo tagged; } > "$last"'
FFMPEG_FAIL = 'echo "broken input" >&2\nexit 1'
FFMPEG_HANG = 'for last; do :; done\necho partial > "$last"\nexec sleep 30'
FFMPEG_VERSION = 'echo "ffmpeg version 6.1-test Copyright (c) the FFmpeg developers"'


def tmp_files(directory: Path) -> list:
    return [p.name for p in directory.iterdir() if ".tmp." in p.name]


def touch(path: Path, content: str = "data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path
