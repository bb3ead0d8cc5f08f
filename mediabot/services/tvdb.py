"""TVDB API client service."""

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


class TVDBService(MetadataProvider):
    """Service for interacting with TheTVDB API v4."""

    provider_id = "tvdb"

    def __init__(
        self,
        api_key: str = "",
        base_url: str = "",
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url or settings.tvdb_base_url
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._cache: dict = {}
        self._cache_expiry: dict = {}
        self._token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None

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

    async def login(self):
        """Authenticate with TVDB API and store bearer token."""
        if not self.api_key:
            raise ResolverUnavailable("TheTVDB API key not configured")

        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/login",
                json={"apikey": self.api_key},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ResolverNetworkError(f"Login failed: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ResolverNetworkError(f"Network error: {e}") from e

        data = response.json()
        self._token = data["data"]["token"]
        # Token valid for 24 hours, refresh after 23
        self._token_expiry = datetime.utcnow() + timedelta(hours=23)

    async def _ensure_token(self):
        """Ensure we have a valid token, refreshing if needed."""
        if not self._token or not self._token_expiry or datetime.utcnow() >= self._token_expiry:
            await self.login()

    async def _request(self, endpoint: str, params: dict = None) -> dict:
        """Make a GET request to TVDB API with authentication."""
        if not self.api_key:
            raise ResolverUnavailable("TheTVDB API key not configured")

        # Check cache
        cache_key = f"{endpoint}:{params}"
        if cache_key in self._cache:
            if datetime.utcnow() < self._cache_expiry.get(cache_key, datetime.min):
                return self._cache[cache_key]

        await self._ensure_token()

        client = await self._get_client()
        headers = {"Authorization": f"Bearer {self._token}"}

        try:
            response = await client.get(
                f"{self.base_url}{endpoint}",
                params=params or {},
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ResolverNetworkError(f"API request failed: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.warning(f"TVDB request to {endpoint} failed: {e}")
            raise ResolverNetworkError(f"Network error: {e}") from e
        data = response.json()

        # Cache response for 1 hour
        self._cache[cache_key] = data
        self._cache_expiry[cache_key] = datetime.utcnow() + timedelta(hours=1)

        return data

    @staticmethod
    def _item_id(item: dict) -> Optional[str]:
        # Search returns ids like "series-12345"
        raw = item.get("tvdb_id") or item.get("id")
        if raw is None:
            return None
        return str(raw).replace("series-", "").replace("movie-", "")

    async def search(
        self, query: str, kind: MediaKind, year: Optional[int] = None
    ) -> list[MatchCandidate]:
        search_type = "movie" if kind == MediaKind.MOVIE else "series"
        params = {"query": query, "type": search_type}
        if year and kind == MediaKind.MOVIE:
            params["year"] = year
        data = await self._request("/search", params=params)

        matches = []
        for item in data.get("data", [])[: settings.max_provider_results]:
            external_id = self._item_id(item)
            if not external_id:
                continue

            # Prefer English name from translations
            translations = item.get("translations", {}) or {}
            found_title = translations.get("eng") or item.get("name") or "Unknown"

            overview_translations = item.get("overviewTranslations", {}) or {}
            eng_overview = overview_translations.get("eng") if isinstance(overview_translations, dict) else None

            found_year = year_from_date(item.get("year") or item.get("first_air_time"))
            matches.append(MatchCandidate(
                provider_id=self.provider_id,
                external_id=external_id,
                title=found_title,
                kind=MediaKind.MOVIE if kind == MediaKind.MOVIE else MediaKind.TV,
                confidence=calculate_confidence(query, found_title, year, found_year),
                year=found_year,
                overview=eng_overview or item.get("overview"),
            ))
        return matches

    async def get_episode(
        self, external_id: str, season: int, episode: int
    ) -> Optional[EpisodeDetails]:
        """Look up one episode from the official season ordering."""
        data = await self._request(
            f"/series/{external_id}/episodes/official",
            params={"season": season, "episodeNumber": episode},
        )
        for ep in data.get("data", {}).get("episodes", []):
            if ep.get("seasonNumber") == season and ep.get("number") == episode:
                return EpisodeDetails(
                    season=season,
                    episode=episode,
                    title=ep.get("name"),
                    overview=ep.get("overview"),
                    air_date=ep.get("aired"),
                )
        return None

    async def test_api_key(self) -> dict:
        """Validate the API key by logging in."""
        if not self.api_key:
            return {"success": False, "error": "API key is required"}
        try:
            await self.login()
        except ResolverNetworkError as e:
            return {"success": False, "error": e.message}
        return {"success": True, "message": "TheTVDB API key is valid"}
