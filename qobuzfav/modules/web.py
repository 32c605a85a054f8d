"""FastAPI application serving the favorites tools to the browser.

Long operations (import, delete) are started as background tasks and answer
202 right away; their progress goes out over the ``/hub/progress`` websocket
to the connection named in the ``X-Connection-Id`` header.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Awaitable, Callable, List, Optional, Set

from fastapi import Depends, FastAPI, Header, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from .auth import QobuzAuthService
from .favorites import QobuzFavoritesService
from .helperClasses import Playlist, Track, UserInputs
from .playlists import QobuzPlaylistService
from .progress import ConnectionManager, ConnectionProgressSink
from .qobuz import QobuzClient
from .schemas import (
    AcceptedResponse,
    FavoritesList,
    ImportRequest,
    LoginRequest,
    LoginResponse,
    PlaylistSummary,
    PreviewResultModel,
    SearchResultModel,
    TrackSummary,
    ValidateResponse,
)
from .sessions import SessionStore, UserSession


def _track_summary(track: Track) -> TrackSummary:
    return TrackSummary(**asdict(track))


def _playlist_summary(playlist: Playlist) -> PlaylistSummary:
    return PlaylistSummary(
        id=playlist.id,
        name=playlist.name,
        tracks_count=playlist.tracks_count,
        description=playlist.description,
        image_url=playlist.image_url,
    )


def _parse_origins(raw_origins: Optional[str]) -> List[str]:
    if not raw_origins:
        return []
    return [origin.strip() for origin in raw_origins.split(",") if origin.strip()]


class QobuzFavWebApp:
    def __init__(
        self,
        user_inputs: UserInputs,
        session_store: Optional[SessionStore] = None,
        client_factory: Optional[Callable[[UserInputs], QobuzClient]] = None,
    ):
        self.user_inputs = user_inputs
        self.auth_service = QobuzAuthService(
            user_inputs, store=session_store, client_factory=client_factory
        )
        self.playlist_service = QobuzPlaylistService(user_inputs)
        self.favorites_service = QobuzFavoritesService(user_inputs, self.playlist_service)
        self.ws_manager = ConnectionManager()
        self._tasks: Set[asyncio.Task] = set()

        self.app = FastAPI(title="qobuzfav", lifespan=self._lifespan)

        origins = _parse_origins(user_inputs.cors_origins)
        if origins:
            self.app.add_middleware(
                CORSMiddleware,
                allow_origins=origins,
                allow_credentials="*" not in origins,
                allow_methods=["*"],
                allow_headers=["*"],
            )

        self._setup_routes()

        if user_inputs.static_dir:
            self.app.mount(
                "/",
                StaticFiles(directory=user_inputs.static_dir, html=True),
                name="frontend",
            )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        yield
        if self._tasks:
            logging.info("Waiting for %d running operation(s) to stop", len(self._tasks))
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.auth_service.close_all()

    # ============================================================
    # Background runs
    # ============================================================

    def start_run(self, name: str, session: UserSession, run: Awaitable[None]) -> asyncio.Task:
        """Run an operation in the background on the session's client."""
        self.auth_service.begin_run(session)
        task = asyncio.create_task(self._tracked(session, run), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._run_finished)
        logging.info("Started %s", name)
        return task

    async def _tracked(self, session: UserSession, run: Awaitable[None]) -> None:
        try:
            await run
        finally:
            await self.auth_service.end_run(session)

    def _run_finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logging.warning("%s was cancelled", task.get_name())
            return
        error = task.exception()
        if error is not None:
            logging.error("%s crashed: %s", task.get_name(), error)
        else:
            logging.info("%s finished", task.get_name())

    async def serve_progress(self, websocket: WebSocket) -> None:
        """Hold a progress connection open until the client goes away."""
        connection_id = await self.ws_manager.connect(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            self.ws_manager.disconnect(connection_id)

    # ============================================================
    # Request helpers
    # ============================================================

    def require_session(
        self, x_session_id: Optional[str] = Header(default=None)
    ) -> UserSession:
        if not x_session_id:
            raise HTTPException(status_code=401, detail="Session ID is required")
        session = self.auth_service.get_session(x_session_id)
        if session is None:
            raise HTTPException(status_code=401, detail="Invalid or expired session")
        return session

    def require_connection(self, connection_id: Optional[str]) -> str:
        if not connection_id:
            raise HTTPException(status_code=400, detail="Progress connection ID is required")
        if not self.ws_manager.is_connected(connection_id):
            raise HTTPException(status_code=400, detail="Progress connection is not open")
        return connection_id

    def _setup_routes(self) -> None:
        app = self.app
        require_session = self.require_session

        # --- AUTH ---

        @app.post("/api/auth/login", response_model=LoginResponse)
        async def login(request: LoginRequest):
            if not (request.email or "").strip() or not (request.password or "").strip():
                return JSONResponse(
                    status_code=400,
                    content=LoginResponse(
                        success=False, error_message="Email and password are required"
                    ).model_dump(by_alias=True),
                )

            session = await self.auth_service.login(request.email.strip(), request.password)
            if session is None:
                return JSONResponse(
                    status_code=401,
                    content=LoginResponse(
                        success=False, error_message="Invalid email or password"
                    ).model_dump(by_alias=True),
                )
            return LoginResponse(
                user_id=session.user_id, session_id=session.session_id, success=True
            )

        @app.post("/api/auth/logout")
        async def logout(x_session_id: Optional[str] = Header(default=None)):
            await self.auth_service.logout(x_session_id)
            return {}

        @app.get("/api/auth/validate", response_model=ValidateResponse)
        async def validate(session: UserSession = Depends(require_session)):
            return ValidateResponse(user_id=session.user_id)

        # --- PLAYLISTS ---

        @app.get("/api/playlists/search", response_model=List[PlaylistSummary])
        async def search_playlists(
            search_term: Optional[str] = Query(default=None, alias="searchTerm"),
            limit: int = 20,
            prioritize_user_playlists: bool = Query(default=True, alias="prioritizeUserPlaylists"),
            session: UserSession = Depends(require_session),
        ):
            if not search_term or not search_term.strip():
                raise HTTPException(status_code=400, detail="Search term is required")
            playlists = await self.playlist_service.search_playlists(
                session, search_term.strip(), limit, prioritize_user_playlists
            )
            return [_playlist_summary(p) for p in playlists]

        @app.get("/api/playlists/mine", response_model=List[PlaylistSummary])
        async def my_playlists(session: UserSession = Depends(require_session)):
            playlists = await self.playlist_service.list_user_playlists(session)
            return [_playlist_summary(p) for p in playlists]

        @app.get("/api/playlists/{playlist_id}/tracks", response_model=List[TrackSummary])
        async def playlist_tracks(
            playlist_id: str, session: UserSession = Depends(require_session)
        ):
            if not playlist_id.strip():
                raise HTTPException(status_code=400, detail="Playlist ID is required")
            tracks = await self.playlist_service.get_playlist_tracks(session, playlist_id)
            return [_track_summary(t) for t in tracks]

        # --- FAVORITES ---

        @app.post("/api/favorites/import", status_code=202, response_model=AcceptedResponse)
        async def import_playlists(
            request: ImportRequest,
            session: UserSession = Depends(require_session),
            x_connection_id: Optional[str] = Header(default=None),
        ):
            connection_id = self.require_connection(x_connection_id)
            playlist_ids = [pid for pid in request.playlist_ids if pid and pid.strip()]
            if not playlist_ids:
                raise HTTPException(status_code=400, detail="At least one playlist ID is required")

            sink = ConnectionProgressSink(self.ws_manager, connection_id)
            self.start_run(
                f"import for user {session.user_id}",
                session,
                self.favorites_service.run_import(session, playlist_ids, sink),
            )
            return AcceptedResponse(
                message="Import process started", playlist_count=len(playlist_ids)
            )

        @app.get("/api/favorites/current", response_model=FavoritesList)
        async def current_favorites(session: UserSession = Depends(require_session)):
            try:
                tracks = await self.favorites_service.list_favorites(session)
            except Exception as e:
                logging.error("Listing favorites failed: %s", e)
                raise HTTPException(status_code=400, detail=f"Failed to get favorites: {e}")
            return FavoritesList(count=len(tracks), tracks=[_track_summary(t) for t in tracks])

        @app.get("/api/favorites/search", response_model=SearchResultModel)
        async def search_favorites(
            query: Optional[str] = None,
            limit: int = 50,
            offset: int = 0,
            session: UserSession = Depends(require_session),
        ):
            if limit < 1 or offset < 0:
                raise HTTPException(status_code=400, detail="Invalid limit or offset")
            try:
                result = await self.favorites_service.search_favorites(
                    session, query, limit, offset
                )
            except Exception as e:
                logging.error("Searching favorites failed: %s", e)
                raise HTTPException(status_code=400, detail=f"Failed to search favorites: {e}")
            return SearchResultModel(
                total_count=result.total_count,
                tracks=[_track_summary(t) for t in result.tracks],
                has_more=result.has_more,
            )

        @app.get("/api/favorites/preview", response_model=PreviewResultModel)
        async def preview_favorites(
            query: Optional[str] = None,
            session: UserSession = Depends(require_session),
        ):
            try:
                result = await self.favorites_service.preview_filtered(session, query)
            except Exception as e:
                logging.error("Previewing favorites failed: %s", e)
                raise HTTPException(
                    status_code=400, detail=f"Failed to preview filtered favorites: {e}"
                )
            return PreviewResultModel(
                total_count=result.total_count,
                sample_tracks=[_track_summary(t) for t in result.sample_tracks],
            )

        @app.delete(
            "/api/favorites/delete-filtered", status_code=202, response_model=AcceptedResponse
        )
        async def delete_filtered(
            query: Optional[str] = None,
            session: UserSession = Depends(require_session),
            x_connection_id: Optional[str] = Header(default=None),
        ):
            connection_id = self.require_connection(x_connection_id)
            sink = ConnectionProgressSink(self.ws_manager, connection_id)
            self.start_run(
                f"filtered delete for user {session.user_id}",
                session,
                self.favorites_service.run_delete_filtered(session, query, sink),
            )
            return AcceptedResponse(message="Filtered delete process started")

        @app.delete(
            "/api/favorites/delete-all", status_code=202, response_model=AcceptedResponse
        )
        async def delete_all(
            session: UserSession = Depends(require_session),
            x_connection_id: Optional[str] = Header(default=None),
        ):
            connection_id = self.require_connection(x_connection_id)
            sink = ConnectionProgressSink(self.ws_manager, connection_id)
            self.start_run(
                f"delete all for user {session.user_id}",
                session,
                self.favorites_service.run_delete_all(session, sink),
            )
            return AcceptedResponse(message="Delete process started")

        # --- PROGRESS HUB ---

        @app.websocket("/hub/progress")
        async def progress_hub(websocket: WebSocket):
            await self.serve_progress(websocket)


def create_app(
    user_inputs: UserInputs,
    session_store: Optional[SessionStore] = None,
    client_factory: Optional[Callable[[UserInputs], QobuzClient]] = None,
) -> FastAPI:
    return QobuzFavWebApp(user_inputs, session_store, client_factory).app
