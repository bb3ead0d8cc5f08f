"""Metadata lookup against the configured providers."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from ..config import settings
from .cancellation import is_cancelled
from .errors import MediaBotError, ResolverNetworkError, ResolverNoMatch, ResolverUnavailable
from .parser import MediaKind, ParsedCandidate
from .providers import MatchCandidate, MetadataProvider
from .tmdb import TMDBService
from .tvdb import TVDBService

logger = logging.getLogger(__name__)


@dataclass
class ResolverResult:
    """Outcome of looking up one parsed filename."""

    success: bool
    matches: list = field(default_factory=list)
    best_match: Optional[MatchCandidate] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    provider_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "matches": [m.to_dict() for m in self.matches],
            "best_match": self.best_match.to_dict() if self.best_match else None,
            "error": self.error,
            "error_kind": self.error_kind,
            "provider_id": self.provider_id,
        }


def build_providers(
    api_keys: dict, transport: Optional[httpx.AsyncBaseTransport] = None
) -> dict[str, MetadataProvider]:
    """Create one client per known provider from a provider -> key map."""
    return {
        "tmdb": TMDBService(api_key=api_keys.get("tmdb", ""), transport=transport),
        "tvdb": TVDBService(api_key=api_keys.get("tvdb", ""), transport=transport),
    }


class ResolverService:
    """Looks parsed candidates up, trying the primary provider first."""

    def __init__(
        self,
        providers: dict[str, MetadataProvider],
        primary: Optional[str] = None,
        delay: Optional[float] = None,
    ):
        self.providers = providers
        self.primary = primary or settings.default_provider
        self.delay = settings.provider_delay_seconds if delay is None else delay

    def provider_order(self) -> list[MetadataProvider]:
        """Primary provider, then the others that have credentials."""
        ordered = []
        primary = self.providers.get(self.primary)
        if primary is not None:
            ordered.append(primary)
        for provider_id, provider in self.providers.items():
            if provider is primary:
                continue
            if provider.has_credentials:
                ordered.append(provider)
        return ordered

    def get_provider(self, provider_id: str) -> MetadataProvider:
        provider = self.providers.get(provider_id)
        if provider is None:
            raise ResolverUnavailable(f"Unknown provider '{provider_id}'")
        return provider

    async def close(self):
        for provider in self.providers.values():
            await provider.close()

    async def lookup(
        self, provider: MetadataProvider, candidate: ParsedCandidate
    ) -> list[MatchCandidate]:
        """Search a single provider. Raises on missing key, transport error or no results."""
        if not provider.has_credentials:
            raise ResolverUnavailable(f"No API key configured for {provider.provider_id}")

        kind = MediaKind.TV if candidate.kind == MediaKind.TV else MediaKind.MOVIE
        matches = await provider.search(candidate.title, kind, candidate.year)
        if not matches:
            raise ResolverNoMatch(f"No results found for '{candidate.title}'")

        # Stable sort keeps provider ranking among equal scores
        matches.sort(key=lambda m: m.confidence, reverse=True)

        if kind == MediaKind.TV and candidate.season is not None and candidate.episode is not None:
            for match in matches[: settings.max_episode_lookups]:
                if self.delay > 0:
                    await asyncio.sleep(self.delay)
                await self.attach_episode(provider, match, candidate.season, candidate.episode)

        return matches

    async def attach_episode(
        self, provider: MetadataProvider, match: MatchCandidate, season: int, episode: int
    ) -> MatchCandidate:
        """Fill in episode title and overview for a series match."""
        match.season = season
        match.episode = episode
        try:
            details = await provider.get_episode(match.external_id, season, episode)
        except ResolverNetworkError as e:
            logger.warning(
                f"Episode lookup S{season:02d}E{episode:02d} failed for "
                f"{provider.provider_id}:{match.external_id}: {e.message}"
            )
            return match
        if details:
            match.episode_title = details.title
            match.episode_overview = details.overview
        return match

    async def resolve(self, candidate: ParsedCandidate) -> ResolverResult:
        """Resolve one candidate. Never raises for provider failures."""
        providers = self.provider_order()
        if not providers:
            return ResolverResult(
                success=False,
                error="No metadata provider configured",
                error_kind=ResolverUnavailable.kind,
            )

        first_error: Optional[MediaBotError] = None
        for provider in providers:
            try:
                matches = await self.lookup(provider, candidate)
            except MediaBotError as e:
                logger.info(f"{provider.provider_id}: lookup for '{candidate.title}' failed: {e.message}")
                if first_error is None:
                    first_error = e
                continue

            best = matches[0]
            logger.info(
                f"Resolved '{candidate.source_filename}' -> '{best.title}' "
                f"via {provider.provider_id} ({best.confidence:.2f})"
            )
            return ResolverResult(
                success=True,
                matches=matches,
                best_match=best,
                provider_id=provider.provider_id,
            )

        return ResolverResult(
            success=False,
            error=first_error.message,
            error_kind=first_error.kind,
            provider_id=providers[0].provider_id,
        )

    async def resolve_batch(
        self, candidates: list[ParsedCandidate], cancel_token=None
    ) -> list[ResolverResult]:
        """Resolve candidates one at a time with a delay between files."""
        results = []
        for index, candidate in enumerate(candidates):
            if is_cancelled(cancel_token):
                results.append(ResolverResult(
                    success=False, error="Operation cancelled", error_kind="cancelled"
                ))
                continue

            if index > 0 and self.delay > 0:
                await asyncio.sleep(self.delay)
            results.append(await self.resolve(candidate))
        return results
