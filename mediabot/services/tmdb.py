"""TMDB API client service."""

import asyncio
import logging
from typing import Optional
from datetime import datetime, timedelta

import httpx

from ..config import settings
from .errors import ResolverNetworkError, ResolverUnavailable
from .parser import MediaKind
from .providers import (
    EpisodeDetails,
    MatchCandidate,
    MetadataProvider,
    calculate_confidence,
    year_from_date,
)

logger = logging.getLogger(__name__)


class TMDBService(MetadataProvider):
    """Service for interacting with The Movie Database API."""

    provider_id = "tmdb"

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "",
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url or settings.tmdb_base_url
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._cache: dict = {}
        self._cache_expiry: dict = {}
        self._rate_limit_remaining = 40
        self._rate_limit_reset: Optional[datetime] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(self, endpoint: str, params: dict = None) -> dict:
        """Make a request to TMDB API with rate limiting."""
        if not self.api_key:
            raise ResolverUnavailable("TheMovieDB API key not configured")

        # Check cache
        cache_key = f"{endpoint}:{params}"
        if cache_key in self._cache:
            if datetime.utcnow() < self._cache_expiry.get(cache_key, datetime.min):
                return self._cache[cache_key]

        # Rate limiting
        if self._rate_limit_remaining <= 1 and self._rate_limit_reset:
            wait_time = (self._rate_limit_reset - datetime.utcnow()).total_seconds()
            if wait_time > 0:
                await asyncio.sleep(wait_time)

        client = await self._get_client()
        params = dict(params or {})
        params["api_key"] = self.api_key

        try:
            response = await client.get(f"{self.base_url}{endpoint}", params=params)
        except httpx.HTTPError as e:
            logger.warning(f"TMDB request to {endpoint} failed: {e}")
            raise ResolverNetworkError(f"Network error: {e}") from e

        # Update rate limit info
        if "X-RateLimit-Remaining" in response.headers:
            self._rate_limit_remaining = int(response.headers["X-RateLimit-Remaining"])
        if "X-RateLimit-Reset" in response.headers:
            self._rate_limit_reset = datetime.fromtimestamp(
                int(response.headers["X-RateLimit-Reset"])
            )

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ResolverNetworkError(
                f"API request failed: {response.status_code}"
            ) from e
        data = response.json()

        # Cache response for 1 hour
        self._cache[cache_key] = data
        self._cache_expiry[cache_key] = datetime.utcnow() + timedelta(hours=1)

        return data

    async def search_movies(self, query: str, year: int = None) -> dict:
        """Search for movies by title, optionally filtered by release year."""
        params = {"query": query}
        if year:
            params["year"] = year
        return await self._request("/search/movie", params)

    async def search_shows(self, query: str, page: int = 1, year: int = None) -> dict:
        """Search for TV shows by name, optionally filtered by first air date year."""
        params = {"query": query, "page": page}
        if year:
            params["first_air_date_year"] = year
        return await self._request("/search/tv", params)

    async def search(
        self, query: str, kind: MediaKind, year: Optional[int] = None
    ) -> list[MatchCandidate]:
        if kind == MediaKind.MOVIE:
            data = await self.search_movies(query, year)
            title_key, date_key = "title", "release_date"
        else:
            # Year filtering is too strict for shows whose year is part of the release name
            data = await self.search_shows(query)
            title_key, date_key = "name", "first_air_date"

        matches = []
        for item in data.get("results", [])[: settings.max_provider_results]:
            found_title = item.get(title_key) or item.get("title") or item.get("name") or ""
            found_year = year_from_date(item.get(date_key))
            matches.append(MatchCandidate(
                provider_id=self.provider_id,
                external_id=str(item.get("id")),
                title=found_title,
                kind=MediaKind.MOVIE if kind == MediaKind.MOVIE else MediaKind.TV,
                confidence=calculate_confidence(query, found_title, year, found_year),
                year=found_year,
                overview=item.get("overview"),
            ))
        return matches

    async def get_episode(
        self, external_id: str, season: int, episode: int
    ) -> Optional[EpisodeDetails]:
        """Get details for a specific episode."""
        try:
            data = await self._request(
                f"/tv/{external_id}/season/{season}/episode/{episode}"
            )
        except ResolverNetworkError as e:
            if isinstance(e.__cause__, httpx.HTTPStatusError) and e.__cause__.response.status_code == 404:
                logger.debug(f"Episode S{season}E{episode} not found for TMDB show {external_id}")
                return None
            raise

        return EpisodeDetails(
            season=data.get("season_number", season),
            episode=data.get("episode_number", episode),
            title=data.get("name"),
            overview=data.get("overview"),
            air_date=data.get("air_date"),
        )

    async def test_api_key(self) -> dict:
        """Validate the API key against the configuration endpoint."""
        if not self.api_key:
            return {"success": False, "error": "API key is required"}
        try:
            data = await self._request("/configuration")
        except ResolverNetworkError as e:
            return {"success": False, "error": e.message}
        return {
            "success": True,
            "message": "TheMovieDB API key is valid",
            "data": {"has_image_config": bool(data.get("images"))},
        }
