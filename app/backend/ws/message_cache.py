from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 24 * 60 * 60

# Pops expired heads one at a time, re-reading each head inside the script so
# concurrent trims never remove a live message.
TRIM_EXPIRED_SCRIPT = """
local removed = 0
local now = tonumber(ARGV[1])
while true do
    local head = redis.call("LINDEX", KEYS[1], 0)
    if not head then
        break
    end
    local ok, msg = pcall(cjson.decode, head)
    local expires = nil
    if ok and type(msg) == "table" then
        expires = tonumber(msg["expiresAt"])
    end
    if expires and expires > now then
        break
    end
    redis.call("LPOP", KEYS[1])
    removed = removed + 1
end
return removed
"""


class MessageCache:
    """
    Per-project chat history kept in a Redis list under ``project:{id}:messages``.

    Messages are appended in arrival order and stamped with ``expiresAt``. Since the
    retention window is fixed, expired messages always form a prefix of the list;
    reads skip anything past its deadline and drop the expired prefix with a script
    that re-checks each head, so overlapping reads never lose live messages.

    Every operation is best-effort: a Redis outage is logged and degrades to an
    empty result instead of raising.
    """

    def __init__(
        self,
        client: Redis,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._clock = clock

    @staticmethod
    def key(project_id: str) -> str:
        return f"project:{project_id}:messages"

    async def store(self, project_id: str, message: Dict[str, Any]) -> bool:
        entry = dict(message)
        entry.setdefault("expiresAt", self._clock() + self._ttl)
        key = self.key(project_id)
        try:
            await self._client.rpush(key, json.dumps(entry))
            await self._client.expire(key, self._ttl)
            return True
        except RedisError as e:
            logger.warning("Failed to store message for project %s: %s", project_id, e)
            return False

    async def list(self, project_id: str, offset: int = 0, limit: int = 50) -> List[Dict[str, Any]]:
        offset = max(0, offset)
        if limit <= 0:
            return []
        messages = await self._live_messages(project_id)
        return messages[offset:offset + limit]

    async def search(self, project_id: str, term: str) -> List[Dict[str, Any]]:
        needle = (term or "").lower()
        if not needle:
            return []
        results = []
        for msg in await self._live_messages(project_id):
            body = str(msg.get("message", "")).lower()
            sender = msg.get("sender") or {}
            label = str(sender.get("email", "")).lower() if isinstance(sender, dict) else ""
            if needle in body or needle in label:
                results.append(msg)
        return results

    async def count(self, project_id: str) -> int:
        return len(await self._live_messages(project_id))

    async def history(self, project_id: str, limit: int = 100) -> Tuple[int, List[Dict[str, Any]]]:
        """Return the live message count and the oldest ``limit`` messages from one read."""
        messages = await self._live_messages(project_id)
        return len(messages), messages[:max(0, limit)]

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def _live_messages(self, project_id: str) -> List[Dict[str, Any]]:
        key = self.key(project_id)
        try:
            raw = await self._client.lrange(key, 0, -1)
        except RedisError as e:
            logger.warning("Failed to read messages for project %s: %s", project_id, e)
            return []

        now = self._clock()
        messages: List[Dict[str, Any]] = []
        saw_expired_head = False
        for item in raw:
            msg = self._decode(item)
            if msg is None or msg.get("expiresAt", 0) <= now:
                if not messages:
                    saw_expired_head = True
                continue
            messages.append(msg)

        if saw_expired_head:
            try:
                await self._client.eval(TRIM_EXPIRED_SCRIPT, 1, key, now)
            except RedisError as e:
                logger.warning("Failed to trim expired messages for project %s: %s", project_id, e)
        return messages

    @staticmethod
    def _decode(item: Any) -> Optional[Dict[str, Any]]:
        if isinstance(item, bytes):
            item = item.decode("utf-8", errors="replace")
        try:
            msg = json.loads(item)
        except (TypeError, ValueError):
            logger.warning("Skipping undecodable cached message")
            return None
        return msg if isinstance(msg, dict) else None
