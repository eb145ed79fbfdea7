import re
from typing import Any, Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from microbio_blog.crud.base import to_object_id
from microbio_blog.models.user import UserPublic

PUBLIC_FIELDS = ("first_name", "last_name", "avatar", "institution", "bio")


def to_public(user: Dict[str, Any]) -> UserPublic:
    return UserPublic(
        id=str(user["_id"]),
        first_name=user.get("first_name") or "Unknown",
        last_name=user.get("last_name") or "Author",
        avatar=user.get("avatar"),
        institution=user.get("institution"),
        bio=user.get("bio"),
    )


class UserRepository:
    """Read access to user documents; accounts are managed elsewhere."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.users

    async def get_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid}, {"password": 0})

    async def get_public_many(self, user_ids: Iterable[str]) -> Dict[str, UserPublic]:
        oids = [oid for oid in (to_object_id(u) for u in set(user_ids)) if oid is not None]
        if not oids:
            return {}
        cursor = self.collection.find({"_id": {"$in": oids}}, {"password": 0})
        return {str(user["_id"]): to_public(user) async for user in cursor}

    async def find_ids_by_name(self, query: str) -> List[str]:
        pattern = {"$regex": re.escape(query), "$options": "i"}
        cursor = self.collection.find(
            {"$or": [{"first_name": pattern}, {"last_name": pattern}]},
            {"_id": 1},
        )
        return [str(user["_id"]) async for user in cursor]

    async def search_by_name(self, query: str, limit: int = 5) -> List[Dict[str, Any]]:
        pattern = {"$regex": re.escape(query), "$options": "i"}
        cursor = self.collection.find(
            {"$or": [{"first_name": pattern}, {"last_name": pattern}]},
            {field: 1 for field in PUBLIC_FIELDS},
        ).limit(limit)
        return [user async for user in cursor]
