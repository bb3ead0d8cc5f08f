"""Filename parsing and confidence scoring."""

import logging
import re
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Optional

from ..config import settings

logger = logging.getLogger(__name__)


class MediaKind(str, Enum):
    MOVIE = "movie"
    TV = "tv"
    UNKNOWN = "unknown"


@dataclass
class ParsedCandidate:
    """One interpretation of a filename."""

    kind: MediaKind
    title: str
    source_filename: str
    confidence: float = 0.0
    year: Optional[int] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    episode_title_guess: Optional[str] = None
    pattern: Optional[str] = None

    def __post_init__(self):
        self.confidence = min(max(float(self.confidence), 0.0), 1.0)
        # A TV interpretation without both numbers is not usable as TV
        if self.kind == MediaKind.TV and (self.season is None or self.episode is None):
            self.kind = MediaKind.UNKNOWN

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


@dataclass(frozen=True)
class PatternRule:
    """A single filename pattern with its fixed base confidence.

    ``groups`` names the meaning of each capture group in order; recognised
    names are title, year, season, episode and subtitle.
    """

    name: str
    kind: MediaKind
    regex: re.Pattern
    base_confidence: float
    groups: tuple = field(default_factory=tuple)


_YEAR = r"((?:19|20)\d{2})(?!\d)"
_QUALITY_ANCHOR = r"(?:\d{3,4}p|BluRay|WEB-?DL|WEBRip|HDTV)"

# TV rules come first so they win confidence ties.
PATTERN_RULES = [
    PatternRule(
        "formatted", MediaKind.TV,
        re.compile(r"^(.+?)\s*-\s*S(\d+)E(\d+)\s*-\s*(.+)", re.IGNORECASE),
        0.95, ("title", "season", "episode", "subtitle"),
    ),
    PatternRule(
        "year_episode_title", MediaKind.TV,
        re.compile(rf"^(.+?)\.{_YEAR}\.S(\d+)E(\d+)\.(.+?)\.{_QUALITY_ANCHOR}", re.IGNORECASE),
        0.90, ("title", "year", "season", "episode", "subtitle"),
    ),
    PatternRule(
        "episode_title", MediaKind.TV,
        re.compile(rf"^(.+?)\.S(\d+)E(\d+)\.(.+?)\.{_QUALITY_ANCHOR}", re.IGNORECASE),
        0.85, ("title", "season", "episode", "subtitle"),
    ),
    PatternRule(
        "season_episode", MediaKind.TV,
        re.compile(r"^(.*?)[\s._\-\[(]*S(\d+)E(\d+)", re.IGNORECASE),
        0.75, ("title", "season", "episode"),
    ),
    PatternRule(
        "cross", MediaKind.TV,
        re.compile(r"^(.+?)[\s._\-]+(\d{1,2})x(\d{2,3})(?!\d)", re.IGNORECASE),
        0.75, ("title", "season", "episode"),
    ),
    PatternRule(
        "season_episode_words", MediaKind.TV,
        re.compile(r"^(.+?)[\s._\-]+Season[\s._\-]*(\d+)[\s._\-]*Episode[\s._\-]*(\d+)", re.IGNORECASE),
        0.75, ("title", "season", "episode"),
    ),
    PatternRule(
        "movie_subtitle", MediaKind.MOVIE,
        re.compile(rf"^(.+?)\s*\({_YEAR}\)\s*-\s*(.+)"),
        0.80, ("title", "year", "subtitle"),
    ),
    PatternRule(
        "movie_dotted_year", MediaKind.MOVIE,
        re.compile(rf"^(.+?)\.{_YEAR}\."),
        0.60, ("title", "year"),
    ),
    PatternRule(
        "movie_paren_year", MediaKind.MOVIE,
        re.compile(rf"^(.+?)\s*\({_YEAR}\)"),
        0.60, ("title", "year"),
    ),
    PatternRule(
        "movie_dotted_year_end", MediaKind.MOVIE,
        re.compile(rf"^(.+?)\.{_YEAR}$"),
        0.60, ("title", "year"),
    ),
    PatternRule(
        "movie_spaced_year", MediaKind.MOVIE,
        re.compile(rf"^(.+?)\s+{_YEAR}"),
        0.60, ("title", "year"),
    ),
]

# Movie interpretations of names carrying an episode token are penalised.
CROSS_TYPE_PENALTY = 0.3
EPISODE_TOKEN = re.compile(r"S\d+E\d+", re.IGNORECASE)

TEMPLATE_LITERALS = ("{n}", "{s", "{t}")

QUALITY_TAGS = re.compile(
    r"(?<![A-Za-z0-9])(?:2160p|1080p|720p|480p|4K|BluRay|BRRip|BDRip|WEBRip|WEB-DL|DVDRip|HDTV"
    r"|x264|x265|H\.?264|H\.?265|HEVC|HDR|10bit|DDP?5\.1|AAC|AMZN)(?![A-Za-z0-9])",
    re.IGNORECASE,
)
RELEASE_PARENS = re.compile(
    r"\((?=[^)]*(?:\d{3,4}p|x26[45]|HEVC|WEB|BluRay|HDTV|DDP|AAC|(?:19|20)\d{2}))[^)]*\)",
    re.IGNORECASE,
)
EPISODE_TOKENS = [
    re.compile(r"\bS\d{1,2}E\d{1,3}\b", re.IGNORECASE),
    re.compile(r"\bSeason\s*\d{1,2}\s*Episode\s*\d{1,3}\b", re.IGNORECASE),
    re.compile(r"\bEp\s*\d{1,3}\b", re.IGNORECASE),
    re.compile(r"\bEpisode\s*\d{1,3}\b", re.IGNORECASE),
]
RELEASE_GROUP_SUFFIX = re.compile(r"\s*-[A-Z0-9]{2,}$")
TRAILING_YEAR = re.compile(r"^(.+?)[\s._\-(]+((?:19|20)\d{2})\)?[\s._\-]*$")


def clean_title(title: str) -> str:
    """Strip release artifacts from a raw title fragment."""
    cleaned = re.sub(r"\[[^\]]*\]", " ", title)
    cleaned = RELEASE_PARENS.sub(" ", cleaned)
    cleaned = QUALITY_TAGS.sub(" ", cleaned)
    cleaned = re.sub(r"[._]", " ", cleaned)
    for pattern in EPISODE_TOKENS:
        cleaned = pattern.sub(" ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    cleaned = RELEASE_GROUP_SUFFIX.sub("", cleaned)
    cleaned = cleaned.strip(" -")
    return re.sub(r"\s+", " ", cleaned).strip()


def normalize_title(name: str) -> str:
    """Normalize a title for comparison and grouping."""
    normalized = name.lower()
    normalized = normalized.replace("&", "and")
    normalized = re.sub(r"[^a-z0-9\s]", "", normalized)
    normalized = re.sub(r"\s+", " ", normalized)
    return normalized.strip()


def confidence_band(confidence: float) -> str:
    """Bucket a confidence score using the configured thresholds."""
    if confidence >= settings.confidence_high:
        return "high"
    if confidence >= settings.confidence_medium:
        return "medium"
    return "low"


class ParserService:
    """Turns filenames into typed, scored interpretations."""

    def __init__(self, rules: Optional[list] = None):
        self.rules = rules if rules is not None else PATTERN_RULES

    def candidates(self, stem: str, filename: str) -> list[ParsedCandidate]:
        """Return one candidate per matching rule, in rule order."""
        has_episode_token = bool(EPISODE_TOKEN.search(stem))
        found = []

        for rule in self.rules:
            match = rule.regex.search(stem)
            if not match:
                continue

            values = dict(zip(rule.groups, match.groups()))
            confidence = rule.base_confidence
            if rule.kind == MediaKind.MOVIE and has_episode_token:
                confidence *= CROSS_TYPE_PENALTY

            candidate = self._build(rule, values, confidence, filename)
            logger.debug(
                f"Pattern '{rule.name}' matched '{stem}' "
                f"(kind={candidate.kind.value}, confidence={candidate.confidence:.2f})"
            )
            found.append(candidate)

        return found

    def _build(self, rule: PatternRule, values: dict, confidence: float, filename: str) -> ParsedCandidate:
        raw_title = values.get("title") or ""
        year = int(values["year"]) if values.get("year") else None

        # "Show.2019.S01E01" style names carry the year at the end of the title
        if year is None:
            trailing = TRAILING_YEAR.match(raw_title)
            if trailing:
                raw_title, year = trailing.group(1), int(trailing.group(2))

        title = clean_title(raw_title)

        subtitle = values.get("subtitle")
        subtitle = clean_title(subtitle) if subtitle else None

        return ParsedCandidate(
            kind=rule.kind,
            title=title or "Unknown",
            source_filename=filename,
            confidence=confidence,
            year=year,
            season=int(values["season"]) if values.get("season") else None,
            episode=int(values["episode"]) if values.get("episode") else None,
            episode_title_guess=subtitle or None,
            pattern=rule.name,
        )

    def parse(self, filename: str, full_path: Optional[str] = None) -> ParsedCandidate:
        """Parse a filename, always returning exactly one selected candidate."""
        stem = Path(filename).stem

        # Unsubstituted template names carry no information; use the folder instead
        if any(literal in stem for literal in TEMPLATE_LITERALS):
            if full_path:
                parent = Path(full_path).parent.name
                if parent:
                    logger.info(f"Template filename '{filename}', parsing parent folder '{parent}'")
                    return self.parse(f"{parent}.mkv")
            return ParsedCandidate(
                kind=MediaKind.UNKNOWN, title="Unknown", source_filename=filename
            )

        found = self.candidates(stem, filename)
        if found:
            # max() keeps the first of equal scores, so declaration order breaks ties
            best = max(found, key=lambda c: c.confidence)
            logger.debug(f"Selected '{best.pattern}' for '{filename}' out of {len(found)} candidates")
            return best

        logger.debug(f"No pattern matched '{filename}', falling back to unknown")
        return ParsedCandidate(
            kind=MediaKind.UNKNOWN,
            title=clean_title(stem),
            source_filename=filename,
            confidence=0.0,
        )
