import asyncio
import copy
import json
from typing import Any, Dict, List, Optional

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError
from redis.exceptions import ConnectionError as RedisConnectionError

from auth import TokenService
from config import Settings
from ws.connection_manager import Connection, ConnectionManager
from ws.message_cache import MessageCache
from ws.relay import ProjectRelay


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for the handful of redis.asyncio calls the app makes."""

    def __init__(self):
        self.lists: Dict[str, List[str]] = {}
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.down = False
        self.yield_on_read = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def ping(self):
        self._check()
        return True

    async def rpush(self, key, *values):
        self._check()
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def lrange(self, key, start, end):
        self._check()
        items = self.lists.get(key, [])
        end = len(items) if end == -1 else end + 1
        snapshot = list(items[start:end])
        if self.yield_on_read:
            # Give other readers a turn, as a network round trip would.
            await asyncio.sleep(0)
        return snapshot

    async def eval(self, script, numkeys, key, now):
        """Runs the expired-head trim script atomically against the list."""
        self._check()
        items = self.lists.get(key, [])
        removed = 0
        while items:
            try:
                head = json.loads(items[0])
            except ValueError:
                head = None
            expires = head.get("expiresAt") if isinstance(head, dict) else None
            if isinstance(expires, (int, float)) and expires > now:
                break
            items.pop(0)
            removed += 1
        return removed

    async def llen(self, key):
        self._check()
        return len(self.lists.get(key, []))

    async def expire(self, key, seconds):
        self._check()
        self.ttls[key] = seconds
        return True

    async def set(self, key, value, ex=None):
        self._check()
        self.values[key] = value
        if ex:
            self.ttls[key] = ex
        return True

    async def exists(self, key):
        self._check()
        return int(key in self.values or key in self.lists)

    async def aclose(self):
        pass


class FakeWebSocket:
    def __init__(self, query_params=None, cookies=None, headers=None):
        self.query_params = query_params or {}
        self.cookies = cookies or {}
        self.headers = headers or {}
        self.sent: List[Dict[str, Any]] = []
        self.accepted = False
        self.closed_with: Optional[int] = None
        self.close_reason: Optional[str] = None
        self.broken = False
        self.incoming: asyncio.Queue = asyncio.Queue()

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("socket is closed")
        self.sent.append(data)

    async def receive(self):
        item = await self.incoming.get()
        if item is None:
            return {"type": "websocket.disconnect", "code": 1000}
        if isinstance(item, bytes):
            return {"type": "websocket.receive", "bytes": item}
        return {"type": "websocket.receive", "text": item}

    async def close(self, code=1000, reason=None):
        self.closed_with = code
        self.close_reason = reason

    def events(self, name: str) -> List[Any]:
        return [frame["data"] for frame in self.sent if frame["event"] == name]


class FakeDatabase:
    """Projects and users kept in dicts, shaped like database.Database results."""

    def __init__(self):
        self.projects: Dict[str, Dict[str, Any]] = {}
        self.users: Dict[str, Dict[str, Any]] = {}
        self.fail_writes = False

    def add_project(self, name="demo", users=None, file_tree=None) -> Dict[str, Any]:
        project_id = str(ObjectId())
        self.projects[project_id] = {
            "id": project_id,
            "name": name,
            "users": list(users or []),
            "fileTree": file_tree or {},
        }
        return copy.deepcopy(self.projects[project_id])

    async def get_project(self, project_id):
        project = self.projects.get(project_id)
        return copy.deepcopy(project) if project else None

    async def get_projects_for_user(self, user_id):
        return [copy.deepcopy(p) for p in self.projects.values() if user_id in p["users"]]

    async def create_project(self, name, user_id):
        if any(p["name"] == name for p in self.projects.values()):
            raise DuplicateKeyError("duplicate name")
        return self.add_project(name=name, users=[user_id])

    async def add_users_to_project(self, project_id, user_ids):
        project = self.projects.get(project_id)
        if not project:
            return None
        for user_id in user_ids:
            if user_id not in project["users"]:
                project["users"].append(user_id)
        return copy.deepcopy(project)

    async def update_file_tree(self, project_id, file_tree):
        if self.fail_writes:
            raise PyMongoError("write failed")
        project = self.projects.get(project_id)
        if not project:
            return None
        project["fileTree"] = copy.deepcopy(file_tree)
        return copy.deepcopy(project)

    async def delete_project(self, project_id):
        return self.projects.pop(project_id, None) is not None

    async def create_user(self, email, password_hash):
        if any(u["email"] == email for u in self.users.values()):
            raise DuplicateKeyError("duplicate email")
        user_id = str(ObjectId())
        self.users[user_id] = {"id": user_id, "email": email, "password": password_hash}
        return {"id": user_id, "email": email}

    async def get_user_by_email(self, email, include_password=False):
        for user in self.users.values():
            if user["email"] == email:
                found = dict(user)
                if not include_password:
                    found.pop("password")
                return found
        return None

    async def get_all_users(self, exclude_user_id=None):
        return [
            {"id": u["id"], "email": u["email"]}
            for u in self.users.values()
            if u["id"] != exclude_user_id
        ]


class FakeAI:
    def __init__(self, reply: str = '{"text": "done"}', error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.prompts: List[str] = []
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, messages, max_tokens=8000, timeout=None):
        self.calls.append({"messages": messages, "max_tokens": max_tokens})
        if self.error:
            raise self.error
        return self.reply

    async def generate_result(self, prompt, timeout=None):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.reply


@pytest.fixture
def settings():
    return Settings(jwt_secret="test-secret", ai_timeout_seconds=0.2, gemini_api_key="test-key")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis, clock):
    return MessageCache(fake_redis, ttl_seconds=24 * 60 * 60, clock=clock)


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def fake_ai():
    return FakeAI()


@pytest.fixture
def tokens(fake_redis, settings):
    return TokenService(fake_redis, settings)


@pytest.fixture
def manager():
    return ConnectionManager()


@pytest.fixture
def relay(manager, cache, fake_db, fake_ai, tokens, settings):
    return ProjectRelay(manager, cache, fake_db, fake_ai, tokens, settings)


@pytest.fixture
def project(fake_db):
    return fake_db.add_project(name="p1", users=["u1", "u2"])


def make_connection(project, email, user_id=None):
    return Connection(
        websocket=FakeWebSocket(),
        project_id=project["id"],
        user={"email": email, "id": user_id or email},
        project=project,
    )
