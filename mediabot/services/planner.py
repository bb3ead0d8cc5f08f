"""Target path planning for rename operations."""

import logging
import re
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

from ..config import settings
from .file_utils import is_release_folder, parse_season_folder, sanitize_filename
from .parser import MediaKind, ParsedCandidate
from .providers import MatchCandidate

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{([^{}]*)\}")
UNKNOWN_TEMPLATE = "{n}"

# Confidence assigned when no provider match is used
PARSED_TITLE_CONFIDENCE = 0.8
PARSED_KIND_CONFIDENCE = 0.6
PARSED_UNKNOWN_CONFIDENCE = 0.3


@dataclass(frozen=True)
class RenameOperation:
    """A planned move of one media file. Immutable once planned."""

    id: str
    old_path: str
    new_path: str
    needs_directory_creation: bool = False
    season_folder: Optional[str] = None
    series_folder: Optional[str] = None
    metadata: Optional[dict] = None
    cleanup_source: bool = False
    parent_folder_change: Optional[dict] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RenameOperation":
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in fields})


def render_template(template: str, values: dict) -> str:
    """Substitute ``{name}`` placeholders. Unknown or empty ones stay literal."""
    def replace(match: re.Match) -> str:
        value = values.get(match.group(1))
        if value is None or value == "":
            return match.group(0)
        return str(value)

    return PLACEHOLDER.sub(replace, template)


def build_metadata_record(
    parsed: ParsedCandidate, match: Optional[MatchCandidate] = None
) -> dict:
    """Merge parsed filename data with the chosen provider match."""
    if match is not None:
        if match.kind == MediaKind.TV:
            overview = match.episode_overview or match.overview
        else:
            overview = match.overview
        return {
            "media_type": match.kind.value,
            "title": match.title,
            "year": match.year or parsed.year,
            "season": parsed.season,
            "episode": parsed.episode,
            "episode_title": match.episode_title or parsed.episode_title_guess,
            "overview": overview,
            "source": match.provider_id,
            "external_id": match.external_id,
            "confidence": match.confidence,
        }

    if parsed.episode_title_guess:
        confidence = PARSED_TITLE_CONFIDENCE
    elif parsed.kind != MediaKind.UNKNOWN:
        confidence = PARSED_KIND_CONFIDENCE
    else:
        confidence = PARSED_UNKNOWN_CONFIDENCE

    return {
        "media_type": parsed.kind.value,
        "title": parsed.title,
        "year": parsed.year,
        "season": parsed.season,
        "episode": parsed.episode,
        "episode_title": parsed.episode_title_guess,
        "overview": None,
        "source": "filename",
        "external_id": None,
        "confidence": confidence,
    }


def template_values(record: dict) -> dict:
    """Placeholder values for a metadata record."""
    title = sanitize_filename(record.get("title") or "")
    values = {"n": title, "y": record.get("year")}

    if record.get("media_type") == MediaKind.TV.value:
        season = record.get("season")
        episode = record.get("episode")
        values.update({
            "s": season,
            "e": episode,
            "s00e00": f"S{(season or 0):02d}E{(episode or 0):02d}",
            "t": sanitize_filename(record.get("episode_title") or "")
            or (f"Episode {episode}" if episode else ""),
        })
    else:
        values["t"] = title

    return values


class PathPlannerService:
    """Computes the canonical location of a media file."""

    def __init__(
        self,
        template: Optional[str] = None,
        season_folder_format: Optional[str] = None,
        movie_template: Optional[str] = None,
    ):
        self.template = template or settings.default_template
        self.movie_template = movie_template or settings.movie_template
        self.season_folder_format = season_folder_format or settings.season_folder_format

    def template_for(self, media_type: Optional[str]) -> str:
        if media_type == MediaKind.TV.value:
            return self.template
        if media_type == MediaKind.MOVIE.value:
            return self.movie_template
        return UNKNOWN_TEMPLATE

    def render_filename(self, record: dict, extension: str, template: Optional[str] = None) -> list[str]:
        """Render the template into sanitized path segments, the last one being the filename."""
        template = template or self.template_for(record.get("media_type"))
        rendered = render_template(template, template_values(record))
        segments = [sanitize_filename(part) for part in rendered.split("/")]
        segments = [part for part in segments if part]
        if not segments:
            segments = [sanitize_filename(record.get("title") or "") or "Unknown"]
        segments[-1] = segments[-1] + extension
        return segments

    def season_folder_name(self, season: int) -> str:
        return self.season_folder_format.format(season=season)

    def plan(
        self,
        file_id: str,
        path: str,
        record: dict,
        template: Optional[str] = None,
    ) -> RenameOperation:
        source = Path(path)
        current_dir = source.parent
        segments = self.render_filename(record, source.suffix, template)
        filename, subdirs = segments[-1], segments[:-1]

        season_folder = None
        series_folder = None
        change_kind = None
        base = current_dir

        if record.get("media_type") == MediaKind.TV.value:
            season = record.get("season")
            if season is None:
                season = 1
            season_folder = self.season_folder_name(season)
            series_folder = sanitize_filename(record.get("title") or "") or "Unknown Show"
            current_season = parse_season_folder(current_dir.name)

            if not subdirs and current_season == season:
                # Already filed under the right season
                folders = []
            else:
                folders = subdirs or [series_folder, season_folder]
                if is_release_folder(current_dir.name):
                    base = current_dir.parent
                    change_kind = "cleanup"
                elif current_season is not None:
                    base = current_dir.parent
                    change_kind = "structural"
        else:
            folders = subdirs

        # Don't nest the series folder inside itself
        if folders and base.name == folders[0]:
            folders = folders[1:]

        target_dir = base.joinpath(*folders)
        if target_dir != current_dir and change_kind is None:
            change_kind = "structural"

        parent_folder_change = None
        if target_dir != current_dir:
            parent_folder_change = {
                "kind": change_kind,
                "from": str(current_dir),
                "to": str(target_dir),
            }

        new_path = target_dir / filename
        logger.debug(f"Planned {source} -> {new_path}")

        return RenameOperation(
            id=file_id,
            old_path=str(source),
            new_path=str(new_path),
            needs_directory_creation=target_dir != current_dir,
            season_folder=season_folder,
            series_folder=series_folder,
            metadata=record,
            cleanup_source=change_kind == "cleanup",
            parent_folder_change=parent_folder_change,
        )
