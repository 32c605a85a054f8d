#!/usr/bin/env python3
import argparse
import asyncio
import getpass
import logging
import sys
from typing import Callable, List, Optional

import uvicorn

from modules.favorites import QobuzFavoritesService
from modules.helperClasses import Playlist, UserInputs
from modules.playlists import QobuzPlaylistService
from modules.progress import LoggingProgressSink
from modules.qobuz import QobuzAuthError, QobuzClient, build_client, hash_password
from modules.sessions import UserSession
from modules.web import create_app
from settings import QobuzFavSettings, build_user_inputs


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )


async def open_session(
    client: QobuzClient,
    email: Optional[str],
    password: Optional[str],
) -> Optional[UserSession]:
    """Log in with email/password, or fall back to the configured credentials."""
    if email and password:
        try:
            user_id = await client.login(email, hash_password(password))
        except QobuzAuthError as e:
            logging.error("Login failed: %s", e)
            return None
        return UserSession(user_id=user_id, client=client)

    if not await client.authenticate() or not client.user_id:
        logging.error("Login failed: no valid Qobuz credentials or token")
        return None
    return UserSession(user_id=client.user_id, client=client)


def choose_playlists(
    playlists: List[Playlist],
    select_all: bool = False,
    prompt: Callable[[str], str] = input,
) -> List[Playlist]:
    """Let the user pick one playlist by number, or 'A' for all of them."""
    if not playlists:
        return []
    if select_all:
        return list(playlists)

    print(f"\nFound {len(playlists)} playlists:")
    for number, playlist in enumerate(playlists, start=1):
        print(f"{number}. {playlist.name} ({playlist.tracks_count} tracks)")

    choice = prompt("\nEnter playlist number to process (or 'A' for all): ").strip()
    if choice.upper() == "A":
        return list(playlists)
    if choice.isdigit() and 1 <= int(choice) <= len(playlists):
        return [playlists[int(choice) - 1]]

    logging.warning("Invalid choice: %r", choice)
    return []


def _credentials(args, user_inputs: UserInputs):
    email = args.email or user_inputs.qobuz_username
    password = user_inputs.qobuz_password
    if args.email and not password:
        password = getpass.getpass("Password: ")
    return email, password


async def import_command(args, user_inputs: UserInputs) -> int:
    client = build_client(user_inputs)
    try:
        session = await open_session(client, *_credentials(args, user_inputs))
        if session is None:
            return 1

        playlist_service = QobuzPlaylistService(user_inputs)
        favorites_service = QobuzFavoritesService(user_inputs, playlist_service)

        playlist_ids = list(args.playlist or [])
        if args.search:
            found = await playlist_service.search_playlists(
                session, args.search, args.limit, prioritize_user_playlists=True
            )
            if not found:
                logging.warning("No playlists found for '%s'", args.search)
            playlist_ids.extend(p.id for p in choose_playlists(found, args.all))

        if not playlist_ids:
            logging.error("No playlists selected, nothing to import")
            return 1

        sink = LoggingProgressSink()
        await favorites_service.run_import(session, playlist_ids, sink)
        return 0
    finally:
        await client.close()


async def cleanup_command(args, user_inputs: UserInputs) -> int:
    client = build_client(user_inputs)
    try:
        session = await open_session(client, *_credentials(args, user_inputs))
        if session is None:
            return 1

        favorites_service = QobuzFavoritesService(user_inputs)
        preview = await favorites_service.preview_filtered(session, args.query)
        if preview.total_count == 0:
            logging.info("No favorites match, nothing to delete")
            return 0

        print(f"\n{preview.total_count} favorite track(s) will be deleted, for example:")
        for track in preview.sample_tracks:
            print(f"  - {track.title} by {track.artist}")

        if not args.yes:
            answer = input("\nDelete them? [y/N]: ").strip().lower()
            if answer not in ("y", "yes"):
                logging.info("Aborted")
                return 0

        sink = LoggingProgressSink()
        if args.query:
            await favorites_service.run_delete_filtered(session, args.query, sink)
        else:
            await favorites_service.run_delete_all(session, sink)
        return 0
    finally:
        await client.close()


def serve_command(args, user_inputs: UserInputs) -> int:
    app = create_app(user_inputs)
    uvicorn.run(
        app,
        host=args.host or user_inputs.web_host,
        port=args.port or user_inputs.web_port,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qobuzfav",
        description="Move Qobuz playlist tracks into favorites and clean favorites up",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the web app")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)

    import_parser = subparsers.add_parser(
        "import", help="Add the tracks of playlists to your favorites"
    )
    import_parser.add_argument("--email", type=str, default=None,
                               help="Qobuz account email (prompts for the password)")
    import_parser.add_argument("--playlist", action="append", metavar="ID",
                               help="Playlist ID to import, can be repeated")
    import_parser.add_argument("--search", type=str, default=None,
                               help="Search playlists by name and pick from the results")
    import_parser.add_argument("--all", action="store_true",
                               help="Import every playlist found by --search")
    import_parser.add_argument("--limit", type=int, default=20,
                               help="Maximum number of search results")

    cleanup = subparsers.add_parser("cleanup", help="Delete favorites")
    cleanup.add_argument("--email", type=str, default=None,
                         help="Qobuz account email (prompts for the password)")
    cleanup.add_argument("--query", type=str, default=None,
                         help="Only delete favorites whose title, artist or album contains this")
    cleanup.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = QobuzFavSettings()
    configure_logging(settings.log_level, settings.log_file)
    user_inputs = build_user_inputs(settings)

    if not user_inputs.qobuz_app_id:
        logging.error("QOBUZ_APP_ID is not set")
        return 1

    try:
        if args.command == "serve":
            return serve_command(args, user_inputs)
        if args.command == "import":
            return asyncio.run(import_command(args, user_inputs))
        return asyncio.run(cleanup_command(args, user_inputs))
    except KeyboardInterrupt:
        logging.info("Shutting down gracefully...")
        return 130


if __name__ == "__main__":
    sys.exit(main())
