"""Series-level match confirmation for batches of TV episodes.

Episodes of the same show are grouped so that the user picks the series once.
Picking a series re-fetches the episode data for every file in the group.
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Optional

from ..config import settings
from .parser import MediaKind, ParsedCandidate, normalize_title
from .providers import MatchCandidate
from .resolver import ResolverResult, ResolverService

logger = logging.getLogger(__name__)

PENDING = "pending"
RESOLVED = "resolved"
SKIPPED = "skipped"


@dataclass
class SeriesGroup:
    """Files believed to belong to one series, awaiting a single decision."""

    key: str
    display_title: str
    file_ids: list = field(default_factory=list)
    matches: list = field(default_factory=list)
    status: str = PENDING
    selected: Optional[MatchCandidate] = None

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "display_title": self.display_title,
            "file_ids": list(self.file_ids),
            "matches": [m.to_dict() for m in self.matches],
            "status": self.status,
            "selected": self.selected.to_dict() if self.selected else None,
        }


class GroupNotPending(Exception):
    """Raised when resolving or skipping a group that was already decided."""


class DisambiguationCoordinator:
    """Queue of series groups with resolve/skip transitions."""

    def __init__(self, resolver: ResolverService, delay: Optional[float] = None):
        self.resolver = resolver
        self.delay = settings.provider_delay_seconds if delay is None else delay
        self.groups: dict[str, SeriesGroup] = {}
        self.candidates: dict[str, ParsedCandidate] = {}
        self.selections: dict[str, Optional[MatchCandidate]] = {}
        self._group_of: dict[str, str] = {}

    def add(self, file_id: str, candidate: ParsedCandidate, result: ResolverResult):
        """Register one resolved file. TV files with matches join their series group."""
        self.candidates[file_id] = candidate

        if candidate.kind != MediaKind.TV or not result.success:
            self.selections[file_id] = result.best_match if result.success else None
            return

        key = normalize_title(candidate.title)
        group = self.groups.get(key)
        if group is None:
            group = SeriesGroup(key=key, display_title=candidate.title)
            self.groups[key] = group

        if group.status != PENDING:
            # Late arrival for an already decided series
            self.selections[file_id] = result.best_match
            return

        group.file_ids.append(file_id)
        self._group_of[file_id] = key
        self.selections[file_id] = result.best_match

        known = {(m.provider_id, m.external_id) for m in group.matches}
        for match in result.matches:
            if (match.provider_id, match.external_id) not in known:
                group.matches.append(match)
                known.add((match.provider_id, match.external_id))
        group.matches.sort(key=lambda m: m.confidence, reverse=True)

    def pending_groups(self) -> list[SeriesGroup]:
        return [g for g in self.groups.values() if g.status == PENDING]

    def next_group(self) -> Optional[SeriesGroup]:
        """First undecided group in insertion order, or None when done."""
        for group in self.groups.values():
            if group.status == PENDING:
                return group
        return None

    def _pending(self, key: str) -> SeriesGroup:
        group = self.groups.get(key)
        if group is None:
            raise KeyError(key)
        if group.status != PENDING:
            raise GroupNotPending(f"Group '{key}' is already {group.status}")
        return group

    async def resolve(self, key: str, match: MatchCandidate) -> SeriesGroup:
        """Confirm ``match`` as the series for every file in the group."""
        group = self._pending(key)
        provider = self.resolver.get_provider(match.provider_id)

        for index, file_id in enumerate(group.file_ids):
            candidate = self.candidates[file_id]
            if index > 0 and self.delay > 0:
                await asyncio.sleep(self.delay)

            per_file = dataclasses.replace(
                match, episode_title=None, episode_overview=None, season=None, episode=None
            )
            if candidate.season is not None and candidate.episode is not None:
                await self.resolver.attach_episode(
                    provider, per_file, candidate.season, candidate.episode
                )
            self.selections[file_id] = per_file

        group.status = RESOLVED
        group.selected = match
        logger.info(
            f"Series group '{group.display_title}' resolved to "
            f"{match.provider_id}:{match.external_id} '{match.title}' ({len(group.file_ids)} files)"
        )
        return group

    def skip(self, key: str) -> SeriesGroup:
        """Drop provider data for the group; its files fall back to parsed data."""
        group = self._pending(key)
        for file_id in group.file_ids:
            self.selections[file_id] = None
        group.status = SKIPPED
        logger.info(f"Series group '{group.display_title}' skipped")
        return group

    async def auto_resolve(self, threshold: Optional[float] = None) -> list[SeriesGroup]:
        """Resolve groups that have exactly one match at or above ``threshold``."""
        threshold = settings.confidence_high if threshold is None else threshold
        resolved = []
        for group in self.pending_groups():
            strong = [m for m in group.matches if m.confidence >= threshold]
            if len(strong) == 1:
                resolved.append(await self.resolve(group.key, strong[0]))
        return resolved

    def selection(self, file_id: str) -> Optional[MatchCandidate]:
        """Chosen match for a file, or None to use parsed data."""
        return self.selections.get(file_id)

    def group_for(self, file_id: str) -> Optional[SeriesGroup]:
        key = self._group_of.get(file_id)
        return self.groups.get(key) if key else None
