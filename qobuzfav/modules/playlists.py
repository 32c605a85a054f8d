"""Playlist lookup for the import flow."""
import logging
from typing import List

from .helperClasses import Playlist, Track, UserInputs
from .paging import walk_pages
from .qobuz import QobuzAPIError, QobuzAuthError, _extract_playlist_metadata, _extract_track_metadata
from .sessions import UserSession


class QobuzPlaylistService:
    def __init__(self, user_inputs: UserInputs):
        self.user_inputs = user_inputs

    async def search_playlists(
        self,
        session: UserSession,
        search_term: str,
        limit: int = 20,
        prioritize_user_playlists: bool = False,
    ) -> List[Playlist]:
        """Search Qobuz playlists by name.

        With ``prioritize_user_playlists`` the playlists owned by the session's
        user come first; relative order is otherwise kept.
        """
        try:
            raw_playlists = await session.client.search_playlists(search_term, limit, 0)
        except (QobuzAuthError, QobuzAPIError) as e:
            logging.error("Qobuz playlist search for '%s' failed: %s", search_term, e)
            return []

        playlists = [_extract_playlist_metadata(data) for data in raw_playlists]
        logging.info("Found %d Qobuz playlists for '%s'", len(playlists), search_term)

        if not prioritize_user_playlists:
            return playlists

        own = [p for p in playlists if p.owner_id == session.user_id]
        others = [p for p in playlists if p.owner_id != session.user_id]
        return own + others

    async def list_user_playlists(self, session: UserSession) -> List[Playlist]:
        """Fetch all playlists owned by the session's user."""
        async def fetch_page(offset: int, limit: int):
            return await session.client.get_user_playlists_page(limit, offset)

        raw_playlists = await walk_pages(
            fetch_page,
            page_size=self.user_inputs.page_size,
            delay_seconds=self.user_inputs.page_delay_seconds,
            description="user playlists",
        )
        return [_extract_playlist_metadata(data) for data in raw_playlists]

    async def get_playlist_tracks(self, session: UserSession, playlist_id: str) -> List[Track]:
        """Fetch every track of a playlist."""

        async def fetch_page(offset: int, limit: int):
            return await session.client.get_playlist_page(playlist_id, limit, offset)

        raw_tracks = await walk_pages(
            fetch_page,
            page_size=self.user_inputs.page_size,
            delay_seconds=self.user_inputs.page_delay_seconds,
            description=f"tracks of playlist {playlist_id}",
        )
        tracks = [_extract_track_metadata(data) for data in raw_tracks]
        logging.info("Fetched %d tracks from Qobuz playlist %s", len(tracks), playlist_id)
        return tracks
