"""Qobuz API client for qobuzfav.

This module wraps the handful of Qobuz endpoints the favorites tooling needs:
- Logging in with email + MD5 password hash (or reusing a user_auth_token)
- Searching playlists and listing the user's own playlists
- Paging through playlist tracks and favorite tracks
- Adding and removing favorite tracks in bulk

Every paged call takes an explicit (limit, offset) pair and returns the raw
items of that single page; walking the pages is the caller's business.

Note: Qobuz does not have a public API. This implementation uses the
undocumented API endpoints similar to qobuz-dl and other community projects.
"""
import asyncio
import hashlib
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .helperClasses import Playlist, Track, UserInputs


# Qobuz API base URL
QOBUZ_API_BASE = "https://www.qobuz.com/api.json/0.2"


class QobuzAuthError(Exception):
    """Authentication error with Qobuz API."""
    pass


class QobuzAPIError(Exception):
    """General API error from Qobuz."""
    pass


def hash_password(password: str) -> str:
    """Return the MD5 hex digest Qobuz expects in place of the password."""
    # nosec B324 - MD5 required by external API, not used for security
    return hashlib.md5(  # noqa: S324
        password.encode("utf-8"), usedforsecurity=False
    ).hexdigest()


class QobuzClient:
    """Async client for Qobuz API with authentication support."""

    def __init__(
        self,
        app_id: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        user_auth_token: Optional[str] = None,
        request_timeout_seconds: int = 10,
        max_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
    ):
        self.app_id = app_id
        self.username = username
        self.password = password
        self._user_auth_token = user_auth_token
        self.request_timeout_seconds = request_timeout_seconds
        self.max_retries = max_retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self._session: Optional[aiohttp.ClientSession] = None
        self._user_id: Optional[str] = None

    @property
    def user_auth_token(self) -> Optional[str]:
        """Get the user authentication token."""
        return self._user_auth_token

    @property
    def user_id(self) -> Optional[str]:
        """Get the authenticated user's ID."""
        return self._user_id

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def _get_base_params(self) -> Dict[str, str]:
        """Get base request parameters."""
        return {"app_id": self.app_id}

    def _get_auth_params(self) -> Dict[str, str]:
        """Get authentication parameters for authenticated requests."""
        params = self._get_base_params()
        if self._user_auth_token:
            params["user_auth_token"] = self._user_auth_token
        return params

    async def _request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        require_auth: bool = True,
        method: str = "GET",
    ) -> Dict[str, Any]:
        """Make an authenticated request to the Qobuz API."""
        session = await self._get_session()
        url = f"{QOBUZ_API_BASE}/{endpoint}"

        request_params = self._get_auth_params() if require_auth else self._get_base_params()
        if params:
            request_params.update(params)

        send = session.post if method == "POST" else session.get

        for attempt in range(self.max_retries + 1):
            try:
                async with send(url, params=request_params) as response:
                    if response.status == 401:
                        raise QobuzAuthError("Invalid credentials or unauthorized")
                    if response.status == 403:
                        raise QobuzAuthError(
                            "Access denied. Check your app credentials and user token."
                        )
                    if response.status == 429 or response.status >= 500:
                        if attempt < self.max_retries:
                            retry_after = response.headers.get("Retry-After")
                            delay = (
                                float(retry_after)
                                if retry_after
                                else self.retry_backoff_seconds * (2 ** attempt)
                            )
                            await asyncio.sleep(delay)
                            continue
                    if response.status != 200:
                        text = await response.text()
                        raise QobuzAPIError(
                            f"API request failed with status {response.status}: {text}"
                        )

                    data = await response.json()

                    # API-level errors come back with a 200 status
                    if "error" in data:
                        error_msg = data.get("message", str(data["error"]))
                        raise QobuzAPIError(f"API error: {error_msg}")

                    return data

            except aiohttp.ClientError as e:
                if attempt < self.max_retries:
                    delay = self.retry_backoff_seconds * (2 ** attempt)
                    await asyncio.sleep(delay)
                    continue
                raise QobuzAPIError(f"Network error: {e}")

        raise QobuzAPIError("Max retries exceeded")

    async def login(self, email: str, password_hash: str) -> str:
        """Log in with an email and an already hashed password.

        Returns the Qobuz user ID and keeps the issued token on the client.
        Raises QobuzAuthError when Qobuz rejects the credentials.
        """
        try:
            response = await self._request(
                "user/login",
                params={"email": email, "password": password_hash},
                require_auth=False,
            )
        except QobuzAPIError as e:
            raise QobuzAuthError(f"Login rejected: {e}") from e

        user_auth_token = response.get("user_auth_token")
        user_id = (response.get("user") or {}).get("id")
        if not user_auth_token or user_id is None:
            raise QobuzAuthError("No user_auth_token in Qobuz login response")

        self._user_auth_token = user_auth_token
        self._user_id = str(user_id)
        logging.info("Successfully authenticated with Qobuz as user %s", self._user_id)
        return self._user_id

    async def authenticate(self) -> bool:
        """Authenticate with a stored token or the configured username/password.

        Returns True if authentication succeeds, False otherwise.
        """
        if self._user_auth_token:
            try:
                response = await self._request("user/get")
                user_id = response.get("id")
                if user_id is not None:
                    self._user_id = str(user_id)
                return True
            except QobuzAuthError:
                logging.warning("Existing Qobuz token is invalid, re-authenticating")
                self._user_auth_token = None

        if not self.username or not self.password:
            return False

        try:
            await self.login(self.username, hash_password(self.password))
            return True
        except QobuzAuthError as e:
            logging.error("Qobuz authentication failed: %s", e)
            return False

    async def search_playlists(
        self, query: str, limit: int = 20, offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Search the Qobuz catalog for playlists matching a query."""
        params = {"query": query, "limit": limit, "offset": offset}
        response = await self._request("playlist/search", params=params)
        return response.get("playlists", {}).get("items", []) or []

    async def get_user_playlists_page(
        self, limit: int = 50, offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Fetch one page of the authenticated user's playlists."""
        params = {"limit": limit, "offset": offset}
        response = await self._request("playlist/getUserPlaylists", params=params)
        return response.get("playlists", {}).get("items", []) or []

    async def get_playlist_page(
        self, playlist_id: str, limit: int = 50, offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Fetch one page of tracks from a playlist."""
        params = {
            "playlist_id": playlist_id,
            "limit": limit,
            "offset": offset,
            "extra": "tracks",
        }
        response = await self._request("playlist/get", params=params)
        return response.get("tracks", {}).get("items", []) or []

    async def get_favorites_page(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Fetch one page of the user's favorite tracks."""
        params = {
            "user_id": user_id,
            "type": "tracks",
            "limit": limit,
            "offset": offset,
        }
        response = await self._request("favorite/getUserFavorites", params=params)
        return response.get("tracks", {}).get("items", []) or []

    async def add_favorites(self, track_ids: List[str]) -> Optional[Dict[str, Any]]:
        """Add tracks to the user's favorites in one call."""
        params = {"track_ids": ",".join(track_ids)}
        return await self._request("favorite/create", params=params, method="POST")

    async def delete_favorites(self, track_ids: List[str]) -> Optional[Dict[str, Any]]:
        """Remove tracks from the user's favorites in one call."""
        params = {"track_ids": ",".join(track_ids)}
        return await self._request("favorite/delete", params=params, method="POST")


def build_client(user_inputs: UserInputs) -> QobuzClient:
    """Create a Qobuz client instance from the configured settings."""
    return QobuzClient(
        app_id=user_inputs.qobuz_app_id or "",
        username=user_inputs.qobuz_username,
        password=user_inputs.qobuz_password,
        user_auth_token=user_inputs.qobuz_user_auth_token,
        request_timeout_seconds=(
            user_inputs.qobuz_request_timeout_seconds or 10
        ),
        max_retries=(user_inputs.qobuz_max_retries or 3),
        retry_backoff_seconds=(
            user_inputs.qobuz_retry_backoff_seconds or 1.0
        ),
    )


def _extract_track_metadata(
    track_data: Dict[str, Any], default_album: Optional[str] = None
) -> Track:
    """Extract Track metadata from Qobuz API response.

    A missing album becomes ``default_album``.
    """
    track_id = track_data.get("id")
    title = track_data.get("title") or "Unknown Title"

    performer = track_data.get("performer")
    artist = "Unknown Artist"
    if isinstance(performer, dict) and performer.get("name"):
        artist = performer["name"]

    album_data = track_data.get("album")
    album = default_album
    if isinstance(album_data, dict) and album_data.get("title"):
        album = album_data["title"]

    duration = track_data.get("duration")

    return Track(
        id=str(track_id) if track_id is not None else "",
        title=title,
        artist=artist,
        album=album,
        duration=int(duration) if isinstance(duration, (int, float)) else None,
    )


def _pick_image(image_value: Any) -> Optional[str]:
    if isinstance(image_value, list) and image_value:
        return image_value[0]
    if isinstance(image_value, dict) and image_value:
        return (
            image_value.get("large")
            or image_value.get("medium")
            or image_value.get("small")
            or next(iter(image_value.values()), None)
        )
    if isinstance(image_value, str) and image_value:
        return image_value
    return None


def _extract_playlist_metadata(playlist_data: Dict[str, Any]) -> Playlist:
    """Extract Playlist metadata from Qobuz API response."""
    playlist_id = playlist_data.get("id")
    owner = playlist_data.get("owner")
    owner_id = owner.get("id") if isinstance(owner, dict) else None

    image_url = (
        _pick_image(playlist_data.get("image_rectangle"))
        or _pick_image(playlist_data.get("images300"))
        or _pick_image(playlist_data.get("image"))
    )

    return Playlist(
        id=str(playlist_id) if playlist_id is not None else "",
        name=playlist_data.get("name") or "Unknown Playlist",
        tracks_count=playlist_data.get("tracks_count") or 0,
        description=playlist_data.get("description") or None,
        image_url=image_url,
        owner_id=str(owner_id) if owner_id is not None else None,
    )
