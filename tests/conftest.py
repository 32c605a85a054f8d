import pathlib
import sys

import pytest
import aiohttp

qobuzfav_path = pathlib.Path(__file__).resolve().parents[1] / "qobuzfav"
sys.path.insert(0, str(qobuzfav_path))

from modules.helperClasses import UserInputs
from modules.progress import ProgressSink


@pytest.fixture(autouse=True, scope="session")
def add_qobuzfav_to_path():
    yield
    sys.path.remove(str(qobuzfav_path))


class RecordingSink(ProgressSink):
    """Keeps every snapshot it receives, in order."""

    def __init__(self):
        self.updates = []

    async def send(self, update):
        self.updates.append(update)

    @property
    def final(self):
        return self.updates[-1]

    @property
    def statuses(self):
        return [update.current_status for update in self.updates]


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def user_inputs():
    """UserInputs with all pacing delays disabled."""
    return UserInputs(
        qobuz_app_id="test-app-id",
        page_delay_seconds=0,
        playlist_delay_seconds=0,
        batch_delay_seconds=0,
        item_delay_seconds=0,
    )


_tracked_sessions = []
_original_client_session = aiohttp.ClientSession


def _tracking_client_session(*args, **kwargs):
    session = _original_client_session(*args, **kwargs)
    _tracked_sessions.append(session)
    return session


def pytest_sessionstart(session):
    aiohttp.ClientSession = _tracking_client_session


def pytest_sessionfinish(session, exitstatus):
    try:
        import asyncio
        try:
            asyncio.run(_close_tracked_sessions())
        except RuntimeError:
            loop = asyncio.new_event_loop()
            try:
                loop.run_until_complete(_close_tracked_sessions())
            finally:
                loop.close()
    except Exception:
        pass
    try:
        aiohttp.ClientSession = _original_client_session
    except Exception:
        pass


async def _close_tracked_sessions():
    for session in list(_tracked_sessions):
        if not session.closed:
            try:
                await session.close()
            except Exception:
                pass
