import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from config import settings

logger = logging.getLogger(__name__)


def is_valid_id(value: Any) -> bool:
    return isinstance(value, str) and ObjectId.is_valid(value)


def serialize(doc: Optional[Dict]) -> Optional[Dict]:
    """Replace Mongo's ``_id`` with a string ``id`` and render datetimes as ISO strings."""
    if doc is None:
        return None
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for key in ("created_at", "updated_at"):
        if isinstance(doc.get(key), datetime):
            doc[key] = doc[key].isoformat()
    doc.pop("password", None)
    return doc


class Database:
    def __init__(self, mongo_uri: Optional[str] = None, db_name: Optional[str] = None):
        self.client = AsyncIOMotorClient(mongo_uri or settings.mongo_uri)
        self.db = self.client[db_name or settings.db_name]
        self.users = self.db.users
        self.projects = self.db.projects

    async def ensure_indexes(self) -> None:
        """Create the unique indexes on user email and project name"""
        try:
            await self.users.create_index("email", unique=True)
            await self.projects.create_index("name", unique=True)
            await self.projects.create_index("users")
        except PyMongoError as e:
            logger.error("Error creating indexes: %s", e)

    async def ping(self) -> bool:
        try:
            await self.client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.error("MongoDB ping failed: %s", e)
            return False

    def close(self) -> None:
        self.client.close()

    # Users
    async def create_user(self, email: str, password_hash: str) -> Dict:
        """Create a user; raises DuplicateKeyError if the email is taken"""
        now = datetime.now(timezone.utc)
        user_data = {"email": email, "password": password_hash, "created_at": now}
        result = await self.users.insert_one(user_data)
        user_data["_id"] = result.inserted_id
        return serialize(user_data)

    async def get_user_by_email(self, email: str, include_password: bool = False) -> Optional[Dict]:
        user = await self.users.find_one({"email": email})
        if user is None:
            return None
        password = user.get("password")
        user = serialize(user)
        if include_password:
            user["password"] = password
        return user

    async def get_all_users(self, exclude_user_id: Optional[str] = None) -> List[Dict]:
        query: Dict[str, Any] = {}
        if is_valid_id(exclude_user_id):
            query["_id"] = {"$ne": ObjectId(exclude_user_id)}
        users = []
        async for user in self.users.find(query).sort("email", 1):
            users.append(serialize(user))
        return users

    # Projects
    async def create_project(self, name: str, user_id: str) -> Dict:
        """Create a project owned by ``user_id``; raises DuplicateKeyError on name clash"""
        now = datetime.now(timezone.utc)
        project_data = {
            "name": name,
            "users": [user_id],
            "fileTree": {},
            "created_at": now,
            "updated_at": now,
        }
        result = await self.projects.insert_one(project_data)
        project_data["_id"] = result.inserted_id
        return serialize(project_data)

    async def get_project(self, project_id: str) -> Optional[Dict]:
        """Get a project by ID, or None when the id is malformed or unknown"""
        try:
            return serialize(await self.projects.find_one({"_id": ObjectId(project_id)}))
        except (InvalidId, TypeError):
            return None

    async def get_projects_for_user(self, user_id: str) -> List[Dict]:
        cursor = self.projects.find({"users": user_id}).sort("created_at", -1)
        projects = []
        async for project in cursor:
            projects.append(serialize(project))
        return projects

    async def add_users_to_project(self, project_id: str, user_ids: List[str]) -> Optional[Dict]:
        updated = await self.projects.find_one_and_update(
            {"_id": ObjectId(project_id)},
            {
                "$addToSet": {"users": {"$each": user_ids}},
                "$set": {"updated_at": datetime.now(timezone.utc)},
            },
            return_document=ReturnDocument.AFTER,
        )
        return serialize(updated)

    async def update_file_tree(self, project_id: str, file_tree: Dict[str, Any]) -> Optional[Dict]:
        """Replace the project's file tree. Last write wins."""
        updated = await self.projects.find_one_and_update(
            {"_id": ObjectId(project_id)},
            {"$set": {"fileTree": file_tree, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize(updated)

    async def delete_project(self, project_id: str) -> bool:
        try:
            result = await self.projects.delete_one({"_id": ObjectId(project_id)})
            return result.deleted_count > 0
        except (InvalidId, TypeError):
            return False
