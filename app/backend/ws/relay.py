from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from fastapi import HTTPException, WebSocket, WebSocketDisconnect
from pymongo.errors import PyMongoError

from ai_service import AIClient
from auth import TokenService, extract_token
from config import Settings
from database import Database, is_valid_id
from file_tree import count_files, is_file_tree
from models import AIInterimMessage, AIResultMessage, ChatMessage, ErrorMessage, RelayMessage, Sender
from ws.connection_manager import Connection, ConnectionManager
from ws.message_cache import MessageCache

logger = logging.getLogger(__name__)

AI_TRIGGER = "@ai"
INTERIM_TEXT = "I'm thinking about your request... This may take a moment."
MAX_MESSAGE_LENGTH = 10000
MAX_PROMPT_LENGTH = 1000
MAX_SEARCH_LENGTH = 100
HISTORY_PAGE = 100
POLICY_VIOLATION = 1008

HANDLER_ERRORS = {
    "join-project": "JOIN_PROJECT_ERROR",
    "project-message": "MESSAGE_HANDLING_ERROR",
    "load-more-messages": "LOAD_MORE_MESSAGES_ERROR",
    "search-messages": "SEARCH_MESSAGES_ERROR",
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def parse_ai_reply(reply: str, prompt: str) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Split a model reply into user-facing text and an optional file tree.

    JSON objects (bare or fenced) are read for ``text`` and ``fileTree``; anything
    else is shown verbatim.
    """
    fallback = f'I\'ve processed your request for "{prompt}" but couldn\'t generate detailed text.'
    raw = (reply or "").strip()
    match = _FENCE_RE.match(raw)
    candidate = match.group(1) if match else raw
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return raw or fallback, None
    if not isinstance(parsed, dict):
        return raw or fallback, None

    text = parsed.get("text")
    if not isinstance(text, str) or not text.strip():
        text = fallback
    tree = parsed.get("fileTree")
    if not tree or not is_file_tree(tree):
        tree = None
    return text, tree


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class ProjectRelay:
    """
    Real-time chat relay for project rooms.

    Frames are JSON objects ``{"event": name, "data": payload}`` in both directions.
    A chat message goes to every other member of the room; messages containing the
    AI trigger additionally start a background AI request whose interim notice and
    final reply go to the whole room.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        cache: MessageCache,
        db: Database,
        ai: AIClient,
        tokens: TokenService,
        settings: Settings,
    ) -> None:
        self.manager = manager
        self.cache = cache
        self.db = db
        self.ai = ai
        self.tokens = tokens
        self.settings = settings
        self._ai_tasks: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Callable[[Connection, Any], Awaitable[None]]] = {
            "join-project": self.on_join_project,
            "project-message": self.on_project_message,
            "load-more-messages": self.on_load_more_messages,
            "search-messages": self.on_search_messages,
        }

    # Connection lifecycle
    async def serve(self, websocket: WebSocket) -> None:
        conn = await self.handshake(websocket)
        if conn is None:
            return

        await websocket.accept()
        await self.manager.join(conn)
        try:
            await self.send_history(conn)
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                text = message.get("text")
                if text is None:
                    await self._error(conn, "INVALID_FRAME", "Frames must be JSON text")
                    continue
                try:
                    frame = json.loads(text)
                except ValueError:
                    await self._error(conn, "INVALID_FRAME", "Frames must be JSON objects")
                    continue
                await self.dispatch(conn, frame)
        except WebSocketDisconnect as e:
            logger.info("User %s disconnected from room %s (code %s)", conn.label, conn.project_id, e.code)
        finally:
            await self.manager.leave(conn)

    async def handshake(self, websocket: WebSocket) -> Optional[Connection]:
        project_id = websocket.query_params.get("projectId")
        if not is_valid_id(project_id):
            await websocket.close(code=POLICY_VIOLATION, reason="Invalid or missing projectId")
            return None

        try:
            project = await self.db.get_project(project_id)
            if project is None:
                logger.warning("Project with ID %s not found", project_id)
        except PyMongoError as e:
            logger.error("Database error finding project %s: %s", project_id, e)
            project = None

        token = extract_token(
            websocket.cookies,
            websocket.query_params.get("token"),
            websocket.headers.get("authorization"),
        )
        try:
            user = await self.tokens.authenticate(token)
        except HTTPException as e:
            logger.warning("Socket authentication failed for room %s: %s", project_id, e.detail)
            await websocket.close(code=POLICY_VIOLATION, reason=f"Authentication error: {e.detail}")
            return None

        return Connection(websocket=websocket, project_id=project_id, user=user, project=project)

    async def dispatch(self, conn: Connection, frame: Any) -> None:
        if not isinstance(frame, dict):
            await self._error(conn, "INVALID_FRAME", "Frames must be JSON objects")
            return
        event = frame.get("event")
        handler = self._handlers.get(event) if isinstance(event, str) else None
        if handler is None:
            await self._error(conn, "UNKNOWN_EVENT", f"Unknown event: {event}")
            return
        try:
            await handler(conn, frame.get("data") or {})
        except Exception:  # noqa: BLE001
            logger.exception("Error handling %s from %s in room %s", event, conn.label, conn.project_id)
            await self._error(conn, HANDLER_ERRORS[event], f"Failed to handle {event}")

    async def send_history(self, conn: Connection) -> None:
        total, messages = await self.cache.history(conn.project_id, limit=HISTORY_PAGE)
        if messages:
            await self.manager.send(conn, "load-messages", {"messages": messages, "totalCount": total})

    async def shutdown(self) -> None:
        tasks = list(self._ai_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.manager.close_all()

    # Events
    async def on_join_project(self, conn: Connection, data: Any) -> None:
        requested = data.get("projectId") if isinstance(data, dict) else None
        if requested and requested != conn.project_id:
            await self._error(conn, "INVALID_PROJECT", "Connected to a different project")
            return
        await self.manager.send(conn, "project-joined", {"projectId": conn.project_id})

    async def on_project_message(self, conn: Connection, data: Any) -> None:
        if not isinstance(data, dict) or not data.get("message"):
            await self._error(conn, "INVALID_MESSAGE", "Message data is required")
            return

        body = str(data["message"])[:MAX_MESSAGE_LENGTH]
        sender = Sender(_id=str(conn.user.get("id") or conn.label), email=conn.label)
        message = ChatMessage(message=body, sender=sender)
        wire = message.to_wire()

        await self.cache.store(conn.project_id, wire)
        await self.manager.broadcast(conn.project_id, "project-message", wire, exclude=conn)

        if AI_TRIGGER in body:
            self.schedule_ai_request(conn, body)

    async def on_load_more_messages(self, conn: Connection, data: Any) -> None:
        data = data if isinstance(data, dict) else {}
        offset = max(0, _as_int(data.get("offset"), 0))
        limit = min(100, max(1, _as_int(data.get("limit"), 50)))
        messages = await self.cache.list(conn.project_id, offset=offset, limit=limit)
        await self.manager.send(conn, "more-messages-loaded", messages)

    async def on_search_messages(self, conn: Connection, data: Any) -> None:
        term = data.get("searchTerm") if isinstance(data, dict) else None
        if not isinstance(term, str) or not term.strip():
            await self.manager.send(conn, "search-results", [])
            return
        results = await self.cache.search(conn.project_id, term.strip()[:MAX_SEARCH_LENGTH])
        await self.manager.send(conn, "search-results", results)

    # AI requests
    def schedule_ai_request(self, conn: Connection, body: str) -> asyncio.Task:
        task = asyncio.create_task(self.handle_ai_request(conn, body))
        self._ai_tasks.add(task)
        task.add_done_callback(self._ai_tasks.discard)
        return task

    async def handle_ai_request(self, conn: Connection, body: str) -> RelayMessage:
        """Publish one interim notice and exactly one terminal reply for ``body``."""
        await self.publish(conn.project_id, AIInterimMessage(message=INTERIM_TEXT))

        try:
            prompt = body.replace(AI_TRIGGER, "", 1).strip()
            if not prompt:
                raise ValueError("Empty prompt provided")
            prompt = prompt[:MAX_PROMPT_LENGTH]
            reply = await self.ai.generate_result(prompt, timeout=self.settings.ai_timeout_seconds)
            text, file_tree = parse_ai_reply(reply, prompt)
        except HTTPException as e:
            logger.error("AI processing error in room %s: %s", conn.project_id, e.detail)
            return await self._publish_ai_error(conn.project_id, str(e.detail))
        except ValueError as e:
            return await self._publish_ai_error(conn.project_id, str(e))
        except Exception as e:  # noqa: BLE001
            logger.exception("Unexpected AI processing error in room %s", conn.project_id)
            return await self._publish_ai_error(conn.project_id, str(e) or e.__class__.__name__)

        result = AIResultMessage(message=text, fileTree=file_tree)
        await self.publish(conn.project_id, result)

        if file_tree and conn.project is not None:
            await self.save_file_tree(conn, file_tree)
        return result

    async def save_file_tree(self, conn: Connection, file_tree: Dict[str, Any]) -> None:
        try:
            project = await self.db.update_file_tree(conn.project_id, file_tree)
        except PyMongoError as e:
            logger.error("Error saving file tree to project %s: %s", conn.project_id, e)
            await self._error(conn, "UPDATE_FILE_TREE_ERROR", "Failed to update project file tree")
            return
        if project is None:
            logger.warning("Project %s vanished before its file tree could be saved", conn.project_id)
            return
        conn.project = project
        logger.info("Updated project %s with new file tree (%d files)", conn.project_id, count_files(file_tree))
        await self.notify_project_update(project)

    async def notify_project_update(self, project: Dict[str, Any]) -> None:
        await self.manager.broadcast(project["id"], "project-update", project)

    async def publish(self, project_id: str, message: RelayMessage) -> None:
        """Store ``message`` and send it to the whole room."""
        wire = message.to_wire()
        await self.cache.store(project_id, wire)
        await self.manager.broadcast(project_id, "project-message", wire)

    async def _publish_ai_error(self, project_id: str, reason: str) -> ErrorMessage:
        error = ErrorMessage(message=f"Error: {reason}. Please try again with a more specific prompt.")
        await self.publish(project_id, error)
        return error

    async def _error(self, conn: Connection, error_type: str, message: str) -> None:
        await self.manager.send(conn, "error", {"type": error_type, "message": message})
