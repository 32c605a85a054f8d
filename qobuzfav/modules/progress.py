"""Progress reporting for long running favorites operations.

A run owns one ProgressTracker. Every time the tracker emits, an immutable
ProgressUpdate snapshot is handed to the run's ProgressSink. In the web app
the sink pushes the snapshot to exactly one websocket connection; the CLI
writes it to the log instead.
"""
import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from fastapi import WebSocket

from .helperClasses import ProgressUpdate

PROGRESS_MESSAGE_TYPE = "ProgressUpdate"


def progress_to_dict(update: ProgressUpdate) -> Dict[str, Any]:
    """Serialize a snapshot with the camelCase keys the frontend reads."""
    return {
        "totalTracks": update.total_tracks,
        "processedTracks": update.processed_tracks,
        "successfulTracks": update.successful_tracks,
        "failedTracks": update.failed_tracks,
        "currentStatus": update.current_status,
        "isCompleted": update.is_completed,
        "errorMessage": update.error_message,
    }


class ProgressSink(ABC):
    """Destination for the snapshots of a single run."""

    @abstractmethod
    async def send(self, update: ProgressUpdate) -> None:
        raise NotImplementedError


class LoggingProgressSink(ProgressSink):
    async def send(self, update: ProgressUpdate) -> None:
        if update.error_message:
            logging.warning("%s (%s)", update.current_status, update.error_message)
            return
        logging.info(
            "%s [%d/%d processed, %d ok, %d failed]",
            update.current_status,
            update.processed_tracks,
            update.total_tracks,
            update.successful_tracks,
            update.failed_tracks,
        )


class ProgressTracker:
    """Cumulative counters of one run.

    Counters only grow, and the tracker completes exactly once. Emitting
    after completion is a programming error.
    """

    def __init__(self, sink: ProgressSink):
        self.sink = sink
        self.total_tracks = 0
        self.processed_tracks = 0
        self.successful_tracks = 0
        self.failed_tracks = 0
        self.completed = False

    def snapshot(
        self,
        status: str,
        is_completed: bool = False,
        error_message: Optional[str] = None,
    ) -> ProgressUpdate:
        return ProgressUpdate(
            total_tracks=self.total_tracks,
            processed_tracks=self.processed_tracks,
            successful_tracks=self.successful_tracks,
            failed_tracks=self.failed_tracks,
            current_status=status,
            is_completed=is_completed,
            error_message=error_message,
        )

    def set_total(self, total: int) -> None:
        if total < self.total_tracks:
            raise ValueError("total_tracks cannot decrease")
        self.total_tracks = total

    def record(self, successful: int = 0, failed: int = 0) -> None:
        if successful < 0 or failed < 0:
            raise ValueError("progress counters only increase")
        self.successful_tracks += successful
        self.failed_tracks += failed
        self.processed_tracks += successful + failed

    async def emit(self, status: str) -> None:
        if self.completed:
            raise RuntimeError("Run already completed")
        await self.sink.send(self.snapshot(status))

    async def complete(self, status: str, error_message: Optional[str] = None) -> None:
        if self.completed:
            raise RuntimeError("Run already completed")
        self.completed = True
        await self.sink.send(
            self.snapshot(status, is_completed=True, error_message=error_message)
        )


class ConnectionManager:
    """Open progress websockets, addressable by connection id."""

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self._send_locks: Dict[str, asyncio.Lock] = {}

    async def connect(self, websocket: WebSocket) -> str:
        await websocket.accept()
        connection_id = str(uuid.uuid4())
        self.active_connections[connection_id] = websocket
        self._send_locks[connection_id] = asyncio.Lock()
        await websocket.send_json({"type": "Connected", "connectionId": connection_id})
        logging.debug("Progress connection %s opened", connection_id)
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        self.active_connections.pop(connection_id, None)
        self._send_locks.pop(connection_id, None)
        logging.debug("Progress connection %s closed", connection_id)

    def is_connected(self, connection_id: Optional[str]) -> bool:
        return bool(connection_id) and connection_id in self.active_connections

    async def send(self, connection_id: str, message: Dict[str, Any]) -> bool:
        """Send one message to one connection, in order. False if undeliverable."""
        websocket = self.active_connections.get(connection_id)
        lock = self._send_locks.get(connection_id)
        if websocket is None or lock is None:
            return False
        try:
            async with lock:
                await websocket.send_json(message)
            return True
        except Exception as e:
            logging.debug("Dropping message for connection %s: %s", connection_id, e)
            self.disconnect(connection_id)
            return False


class ConnectionProgressSink(ProgressSink):
    """Pushes every snapshot of a run to the connection that started it."""

    def __init__(self, manager: ConnectionManager, connection_id: str):
        self.manager = manager
        self.connection_id = connection_id

    async def send(self, update: ProgressUpdate) -> None:
        delivered = await self.manager.send(
            self.connection_id,
            {"type": PROGRESS_MESSAGE_TYPE, "data": progress_to_dict(update)},
        )
        if not delivered:
            logging.debug(
                "Progress connection %s is gone, snapshot '%s' dropped",
                self.connection_id, update.current_status,
            )
