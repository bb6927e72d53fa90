from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Connection:
    """One authenticated socket joined to a project room."""

    websocket: WebSocket
    project_id: str
    user: Dict[str, Any]
    project: Optional[Dict[str, Any]] = None

    @property
    def label(self) -> str:
        return str(self.user.get("email", "unknown"))

    async def emit(self, event: str, data: Any) -> None:
        await self.websocket.send_json({"event": event, "data": data})


class ConnectionManager:
    """
    Owns the project-id -> connections mapping for the server process.

    Sends that fail drop the connection from its room; the receive loop of that
    connection will notice the closed socket on its own.
    """

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[Connection]] = {}
        self._lock = asyncio.Lock()

    async def join(self, conn: Connection) -> None:
        async with self._lock:
            self._rooms.setdefault(conn.project_id, set()).add(conn)
        logger.info("User %s joined room %s", conn.label, conn.project_id)

    async def leave(self, conn: Connection) -> None:
        async with self._lock:
            room = self._rooms.get(conn.project_id)
            if room is None:
                return
            room.discard(conn)
            if not room:
                del self._rooms[conn.project_id]

    async def members(self, project_id: str) -> List[Connection]:
        async with self._lock:
            return list(self._rooms.get(project_id, ()))

    async def send(self, conn: Connection, event: str, data: Any) -> bool:
        try:
            await conn.emit(event, data)
            return True
        except Exception as e:  # noqa: BLE001
            logger.warning("Error sending %s to %s: %s", event, conn.label, e)
            await self.leave(conn)
            return False

    async def broadcast(
        self,
        project_id: str,
        event: str,
        data: Any,
        exclude: Optional[Connection] = None,
    ) -> int:
        """Send to every member of the room except ``exclude``. Returns the delivery count."""
        delivered = 0
        for conn in await self.members(project_id):
            if conn is exclude:
                continue
            if await self.send(conn, event, data):
                delivered += 1
        return delivered

    async def close_all(self, code: int = 1001) -> None:
        async with self._lock:
            conns = [conn for room in self._rooms.values() for conn in room]
            self._rooms.clear()
        for conn in conns:
            try:
                await conn.websocket.close(code=code)
            except Exception as e:  # noqa: BLE001
                logger.debug("Error closing connection for %s: %s", conn.label, e)
