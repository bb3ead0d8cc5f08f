"""Metadata provider interface and match scoring."""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from typing import Optional

from .parser import MediaKind


@dataclass
class MatchCandidate:
    """A provider search result scored against the parsed title."""

    provider_id: str
    external_id: str
    title: str
    kind: MediaKind
    confidence: float = 0.0
    year: Optional[int] = None
    overview: Optional[str] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    episode_title: Optional[str] = None
    episode_overview: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


@dataclass
class EpisodeDetails:
    """Episode-specific data fetched once a series is chosen."""

    season: int
    episode: int
    title: Optional[str] = None
    overview: Optional[str] = None
    air_date: Optional[str] = None


class MetadataProvider(ABC):
    """Uniform search interface over an external metadata source."""

    provider_id: str = ""

    @property
    @abstractmethod
    def has_credentials(self) -> bool:
        ...

    @abstractmethod
    async def search(
        self, query: str, kind: MediaKind, year: Optional[int] = None
    ) -> list[MatchCandidate]:
        """Search titles of the given kind. Results carry confidence scores."""

    @abstractmethod
    async def get_episode(
        self, external_id: str, season: int, episode: int
    ) -> Optional[EpisodeDetails]:
        """Fetch a single episode, or None when the provider has no such episode."""

    async def test_api_key(self) -> dict:
        """Check the configured credentials against the provider."""
        return {"success": False, "error": "Not supported"}

    async def close(self):
        """Release network resources."""


def year_from_date(value: Optional[str]) -> Optional[int]:
    """Extract the year from an ISO-ish date string."""
    if not value:
        return None
    try:
        return int(str(value)[:4])
    except (ValueError, TypeError):
        return None


def _squash(title: str) -> str:
    return re.sub(r"[^a-z0-9]", "", title.lower())


def levenshtein_distance(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def string_similarity(a: str, b: str) -> float:
    """Normalized edit-distance similarity in [0, 1]."""
    longer = a if len(a) >= len(b) else b
    if not longer:
        return 1.0
    return (len(longer) - levenshtein_distance(a, b)) / len(longer)


def calculate_confidence(
    query_title: str,
    found_title: str,
    query_year: Optional[int] = None,
    found_year: Optional[int] = None,
) -> float:
    """Score a provider result against the title/year parsed from a filename.

    Base 0.5, plus 0.4 for an exact normalized title, 0.3 for a substring match
    or 0.3 x edit-distance similarity otherwise, plus 0.1 for the same year.
    """
    confidence = 0.5

    original = _squash(query_title or "")
    found = _squash(found_title or "")

    if original and original == found:
        confidence += 0.4
    elif original and found and (original in found or found in original):
        confidence += 0.3
    else:
        confidence += string_similarity(original, found) * 0.3

    if query_year and found_year and query_year == found_year:
        confidence += 0.1

    return min(1.0, round(confidence, 4))
