"""Trakt API client for search, history and device authentication."""

import json
import logging
import time
from typing import Any, Dict, List, Optional, Type, TypeVar
from urllib.parse import quote

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from .config import BASE_URL, TraktConfig
from .trakt_models import (
    DeviceCode, Episode, HistoryItem, Movie, SearchResult, Show,
    SyncResponse, Token, WatchedItem
)


API_VERSION = "2"
DEFAULT_TIMEOUT = 30

SENSITIVE_KEYS = {
    "access_token", "refresh_token", "client_secret", "device_code",
    "code", "token",
}

T = TypeVar("T")


class TraktError(Exception):
    """Base class for failures talking to the Trakt API."""
    pass


class TraktAPIError(TraktError):
    """The Trakt API answered with an HTTP status >= 400.

    The response body is not kept since Trakt may echo credentials back in
    error payloads.
    """

    def __init__(self, status_code: int, method: str, path: str):
        self.status_code = status_code
        self.method = method
        self.path = path
        super().__init__(
            f"trakt API error: {method} {path} returned status {status_code}"
        )

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class TraktTransportError(TraktError):
    """Network, timeout or JSON encode/decode failure."""
    pass


class TraktClient:
    """Trakt API client."""

    def __init__(self, config: Optional[TraktConfig] = None, base_url: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or TraktConfig()
        self.base_url = (base_url or self.config.base_url or BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else self.config.timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.logger = logging.getLogger("trakt_client")

    @property
    def is_configured(self) -> bool:
        """True when an API client id is available."""
        return self.config.is_configured

    @property
    def is_authenticated(self) -> bool:
        """True when an OAuth access token is available."""
        return self.config.is_authenticated

    def _mask_sensitive_data(self, data: Any) -> Any:
        """Mask sensitive data in API requests/responses for logging."""
        if isinstance(data, dict):
            masked_data = {}
            for key, value in data.items():
                if key.lower() in SENSITIVE_KEYS:
                    masked_data[key] = "***MASKED***"
                else:
                    masked_data[key] = self._mask_sensitive_data(value)
            return masked_data
        if isinstance(data, list):
            return [self._mask_sensitive_data(item) for item in data]
        return data

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "trakt-api-version": API_VERSION,
            "trakt-api-key": self.config.client_id,
        }
        if self.config.access_token:
            headers["Authorization"] = f"Bearer {self.config.access_token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "TraktClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(self, method: str, path: str, body: Any = None,
                       params: Optional[Dict[str, Any]] = None) -> Any:
        """Make a single HTTP request and return the decoded JSON body."""
        content = None
        if body is not None:
            try:
                content = json.dumps(body)
            except (TypeError, ValueError) as e:
                raise TraktTransportError(f"encode request body for {method} {path}: {e}") from e

        self.logger.debug(f"trakt request method={method} path={path} params={params}")
        if body is not None:
            self.logger.debug(f"Request Data: {json.dumps(self._mask_sensitive_data(body))}")

        client = await self._get_client()
        start_time = time.time()
        try:
            response = await client.request(
                method, path, content=content, params=params, headers=self._headers()
            )
        except httpx.HTTPError as e:
            duration = time.time() - start_time
            self.logger.error(f"trakt HTTP error method={method} path={path} duration={duration:.3f}s error={e!r}")
            raise TraktTransportError(f"http request {method} {path}: {e}") from e

        duration = time.time() - start_time
        self.logger.debug(
            f"trakt response method={method} path={path} status={response.status_code} duration={duration:.3f}s"
        )

        if response.status_code >= 400:
            self.logger.error(
                f"trakt API error status={response.status_code} method={method} path={path}"
            )
            raise TraktAPIError(response.status_code, method, path)

        if not response.content:
            return None

        try:
            data = response.json()
        except ValueError as e:
            raise TraktTransportError(f"decode response from {method} {path}: {e}") from e

        self.logger.debug(f"Response Data: {json.dumps(self._mask_sensitive_data(data))}")
        return data

    def _decode(self, data: Any, model: Type[T], method: str, path: str) -> T:
        try:
            return TypeAdapter(model).validate_python(data)
        except ValidationError as e:
            raise TraktTransportError(f"decode response from {method} {path}: {e}") from e

    async def _get(self, path: str, model: Type[T], params: Optional[Dict[str, Any]] = None) -> T:
        data = await self._request("GET", path, params=params)
        return self._decode(data, model, "GET", path)

    async def _post(self, path: str, body: Any, model: Type[T]) -> T:
        if isinstance(body, BaseModel):
            body = body.model_dump(mode="json", exclude_unset=True)
        data = await self._request("POST", path, body=body)
        if data is None:
            data = {}
        return self._decode(data, model, "POST", path)

    async def search(self, query: str, search_type: str = "") -> List[SearchResult]:
        """Search for shows and/or movies by text.

        Args:
            query: Free-text title or keywords
            search_type: "show", "movie" or empty for both

        Returns:
            Results ranked by relevance score
        """
        if not search_type:
            search_type = "show,movie"
        data = await self._request("GET", f"/search/{search_type}", params={"query": query})
        return self._decode(data or [], List[SearchResult], "GET", f"/search/{search_type}")

    async def get_history(self, history_type: str = "", limit: int = 0) -> List[HistoryItem]:
        """Retrieve watch history, newest first.

        Args:
            history_type: "shows", "movies" or empty for everything
            limit: Maximum number of items; 0 leaves it to the API default
        """
        path = "/sync/history"
        if history_type:
            path = f"/sync/history/{quote(history_type, safe='')}"

        params = {}
        if limit > 0:
            params["limit"] = limit

        data = await self._request("GET", path, params=params or None)
        return self._decode(data or [], List[HistoryItem], "GET", path)

    async def add_to_history(self, item: WatchedItem) -> SyncResponse:
        """Add items to watch history."""
        return await self._post("/sync/history", item, SyncResponse)

    async def remove_from_history(self, item: WatchedItem) -> SyncResponse:
        """Remove items from watch history."""
        return await self._post("/sync/history/remove", item, SyncResponse)

    async def get_show(self, show_id: str) -> Show:
        """Fetch a show by Trakt id or slug."""
        return await self._get(f"/shows/{quote(str(show_id), safe='')}", Show)

    async def get_movie(self, movie_id: str) -> Movie:
        """Fetch a movie by Trakt id or slug."""
        return await self._get(f"/movies/{quote(str(movie_id), safe='')}", Movie)

    async def get_episode(self, show_id: str, season: int, episode: int) -> Episode:
        """Fetch one episode of a show by season and episode number."""
        path = f"/shows/{quote(str(show_id), safe='')}/seasons/{season}/episodes/{episode}"
        return await self._get(path, Episode)

    async def get_device_code(self) -> DeviceCode:
        """Start the OAuth device flow."""
        body = {"client_id": self.config.client_id}
        return await self._post("/oauth/device/code", body, DeviceCode)

    async def poll_for_token(self, device_code: str) -> Token:
        """Exchange an authorized device code for an access token.

        Trakt answers 400 while the user has not yet authorized, which
        surfaces here as a ``TraktAPIError``.
        """
        body = {
            "code": device_code,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        return await self._post("/oauth/device/token", body, Token)
