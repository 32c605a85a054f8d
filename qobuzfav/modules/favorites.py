"""Bulk favorites operations for qobuzfav.

This module holds the transfer and cleanup pipeline:
- Importing the tracks of several playlists into the user's favorites
- Deleting all favorites, or only those matching a text query
- Previewing and searching favorites with the same filter

Imports and deletions report through a ProgressTracker. They never raise
for upstream failures: a failed page ends that listing early, a failed batch
is retried one track at a time, and whatever happened shows up in the
counters of the final snapshot.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Set

from .helperClasses import PreviewResult, SearchResult, Track, UserInputs
from .paging import walk_pages
from .playlists import QobuzPlaylistService
from .progress import ProgressSink, ProgressTracker
from .qobuz import _extract_track_metadata
from .sessions import UserSession

UNKNOWN_ALBUM = "Unknown Album"

MutateBatch = Callable[[List[str]], Awaitable[Optional[Any]]]


def filter_tracks(tracks: Iterable[Track], query: Optional[str]) -> List[Track]:
    """Keep the tracks whose title, artist or album contains ``query``.

    Matching is case-insensitive. An empty or missing query keeps everything.
    """
    tracks = list(tracks)
    if not query:
        return tracks
    needle = query.lower()
    return [
        track
        for track in tracks
        if needle in track.title.lower()
        or needle in track.artist.lower()
        or (track.album is not None and needle in track.album.lower())
    ]


def chunk(items: Sequence[str], size: int) -> List[List[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class QobuzFavoritesService:
    """Runs imports and deletions against one session's favorites."""

    def __init__(
        self,
        user_inputs: UserInputs,
        playlist_service: Optional[QobuzPlaylistService] = None,
    ):
        self.user_inputs = user_inputs
        self.playlist_service = playlist_service or QobuzPlaylistService(user_inputs)

    # ============================================================
    # Listing and filtering
    # ============================================================

    async def get_all_favorites(self, session: UserSession) -> List[Track]:
        async def fetch_page(offset: int, limit: int):
            return await session.client.get_favorites_page(session.user_id, limit, offset)

        raw_tracks = await walk_pages(
            fetch_page,
            page_size=self.user_inputs.page_size,
            delay_seconds=self.user_inputs.page_delay_seconds,
            description="favorite tracks",
        )
        tracks = [
            _extract_track_metadata(data, default_album=UNKNOWN_ALBUM) for data in raw_tracks
        ]
        logging.info("Fetched %d favorite tracks for user %s", len(tracks), session.user_id)
        return tracks

    async def list_favorites(self, session: UserSession) -> List[Track]:
        return await self.get_all_favorites(session)

    async def search_favorites(
        self,
        session: UserSession,
        query: Optional[str],
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult:
        """Return one page of the favorites matching ``query``."""
        matches = filter_tracks(await self.get_all_favorites(session), query)
        return SearchResult(
            total_count=len(matches),
            tracks=matches[offset:offset + limit],
            has_more=offset + limit < len(matches),
        )

    async def preview_filtered(self, session: UserSession, query: Optional[str]) -> PreviewResult:
        """Count the favorites matching ``query`` and sample the first few."""
        matches = filter_tracks(await self.get_all_favorites(session), query)
        return PreviewResult(
            total_count=len(matches),
            sample_tracks=matches[:self.user_inputs.preview_sample_size],
        )

    # ============================================================
    # Collection and batch mutation
    # ============================================================

    async def collect_track_ids(
        self,
        session: UserSession,
        playlist_ids: Sequence[str],
        tracker: ProgressTracker,
    ) -> Set[str]:
        """Gather the unique track ids of several playlists."""
        track_ids: Set[str] = set()
        total = len(playlist_ids)

        for index, playlist_id in enumerate(playlist_ids, start=1):
            await tracker.emit(f"Loading tracks from playlist {index}/{total}...")
            try:
                tracks = await self.playlist_service.get_playlist_tracks(session, playlist_id)
                track_ids.update(track.id for track in tracks if track.id)
            except Exception as e:
                logging.error("Skipping playlist %s: %s", playlist_id, e)

            if index < total:
                await asyncio.sleep(self.user_inputs.playlist_delay_seconds)

        logging.info(
            "Collected %d unique tracks from %d playlist(s)", len(track_ids), total
        )
        return track_ids

    async def mutate_in_batches(
        self,
        track_ids: List[str],
        mutate: MutateBatch,
        tracker: ProgressTracker,
        batch_label: str = "Processing",
    ) -> None:
        """Apply ``mutate`` to ``track_ids`` in fixed-size batches.

        A batch whose call raises is replayed one id at a time, so a single
        bad id only costs itself. Every kind of batch failure is handled the
        same way.
        """
        batches = chunk(track_ids, self.user_inputs.batch_size)
        total_batches = len(batches)

        for index, batch in enumerate(batches, start=1):
            await tracker.emit(f"{batch_label} batch {index}/{total_batches}...")

            try:
                response = await mutate(batch)
            except Exception as e:
                logging.warning(
                    "Batch %d/%d failed (%s), retrying %d tracks one by one",
                    index, total_batches, e, len(batch),
                )
                await self._mutate_one_by_one(batch, mutate, tracker)
            else:
                if response is not None:
                    tracker.record(successful=len(batch))
                else:
                    logging.warning("Batch %d/%d returned no response", index, total_batches)
                    tracker.record(failed=len(batch))

            await tracker.emit(f"Batch {index}/{total_batches} completed")

            if index < total_batches:
                await asyncio.sleep(self.user_inputs.batch_delay_seconds)

    async def _mutate_one_by_one(
        self,
        batch: List[str],
        mutate: MutateBatch,
        tracker: ProgressTracker,
    ) -> None:
        for position, track_id in enumerate(batch):
            if position:
                await asyncio.sleep(self.user_inputs.item_delay_seconds)
            try:
                await mutate([track_id])
            except Exception as e:
                logging.debug("Track %s failed: %s", track_id, e)
                tracker.record(failed=1)
            else:
                tracker.record(successful=1)

    # ============================================================
    # Pipeline runs
    # ============================================================

    async def run_import(
        self,
        session: UserSession,
        playlist_ids: Sequence[str],
        sink: ProgressSink,
    ) -> None:
        """Add the tracks of ``playlist_ids`` to the user's favorites."""
        tracker = ProgressTracker(sink)
        await self._run(tracker, "Import", self._import(session, playlist_ids, tracker))

    async def run_delete_all(self, session: UserSession, sink: ProgressSink) -> None:
        """Remove every favorite track."""
        tracker = ProgressTracker(sink)
        await self._run(tracker, "Delete", self._delete(session, None, tracker))

    async def run_delete_filtered(
        self,
        session: UserSession,
        query: Optional[str],
        sink: ProgressSink,
    ) -> None:
        """Remove the favorite tracks matching ``query``."""
        tracker = ProgressTracker(sink)
        await self._run(tracker, "Delete", self._delete(session, query, tracker))

    async def _run(self, tracker: ProgressTracker, name: str, pipeline: Awaitable[None]) -> None:
        try:
            await pipeline
        except Exception as e:
            logging.exception("%s run failed", name)
            if not tracker.completed:
                await tracker.complete(f"{name} failed", error_message=str(e))

    async def _import(
        self,
        session: UserSession,
        playlist_ids: Sequence[str],
        tracker: ProgressTracker,
    ) -> None:
        await tracker.emit("Starting import process...")

        if not playlist_ids:
            await tracker.complete(
                "No tracks found to import",
                error_message="No playlists were selected",
            )
            return

        track_ids = await self.collect_track_ids(session, playlist_ids, tracker)
        if not track_ids:
            await tracker.complete(
                "No tracks found to import",
                error_message="No tracks were found in the selected playlists",
            )
            return

        tracker.set_total(len(track_ids))
        await tracker.emit(f"Adding {len(track_ids)} tracks to favorites...")
        await self.mutate_in_batches(
            list(track_ids), session.client.add_favorites, tracker, "Processing"
        )
        await tracker.complete("Import completed!")
        logging.info(
            "Import finished for user %s: %d added, %d failed",
            session.user_id, tracker.successful_tracks, tracker.failed_tracks,
        )

    async def _delete(
        self,
        session: UserSession,
        query: Optional[str],
        tracker: ProgressTracker,
    ) -> None:
        if query:
            await tracker.emit("Loading and filtering favorites...")
        else:
            await tracker.emit("Loading current favorites...")

        # Always re-read favorites so nothing stale gets deleted
        favorites = filter_tracks(await self.get_all_favorites(session), query)
        track_ids = [track.id for track in favorites if track.id]

        if not track_ids:
            if query:
                await tracker.complete(
                    "No matching favorites found to delete",
                    error_message=f"No favorites match '{query}'",
                )
            else:
                await tracker.complete(
                    "No favorites found to delete",
                    error_message="There are no favorite tracks to delete",
                )
            return

        tracker.set_total(len(track_ids))
        await tracker.emit(f"Deleting {len(track_ids)} tracks from favorites...")
        await self.mutate_in_batches(
            track_ids, session.client.delete_favorites, tracker, "Deleting"
        )
        await tracker.complete("Delete completed!")
        logging.info(
            "Delete finished for user %s: %d removed, %d failed",
            session.user_id, tracker.successful_tracks, tracker.failed_tracks,
        )
