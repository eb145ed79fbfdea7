from typing import Optional, List, Dict, Any

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from microbio_blog.core.utils import utcnow
from microbio_blog.crud.base import to_object_id, with_string_id
from microbio_blog.crud.user import UserRepository


class CommentRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.comments
        self.users = UserRepository(db)

    async def get_raw(self, comment_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(comment_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid})

    async def get(self, comment_id: str) -> Optional[Dict[str, Any]]:
        """Comment by ID with the author's public profile attached."""
        comment = await self.get_raw(comment_id)
        if not comment:
            return None
        return (await self._expand([comment]))[0]

    async def _expand(self, comments: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        authors = await self.users.get_public_many(c.get("author_id") for c in comments)
        expanded = []
        for comment in comments:
            comment = with_string_id(comment)
            comment["author"] = authors.get(comment.pop("author_id", None))
            expanded.append(comment)
        return expanded

    async def list_by_post(
        self,
        post_id: str,
        limit: int = 50,
        offset: int = 0,
        include_replies: bool = False
    ) -> List[Dict[str, Any]]:
        """Top-level comments of a post, newest first."""
        cursor = (
            self.collection.find({"post_id": post_id, "parent_id": None})
            .sort("created_at", -1)
            .skip(offset)
            .limit(limit)
        )
        comments = await self._expand([c async for c in cursor])
        if include_replies:
            for comment in comments:
                comment["replies"] = await self.get_replies(comment["id"])
        return comments

    async def get_replies(self, parent_id: str) -> List[Dict[str, Any]]:
        """Replies to a comment, recursively, oldest first."""
        cursor = self.collection.find({"parent_id": parent_id}).sort("created_at", 1)
        replies = await self._expand([c async for c in cursor])
        for reply in replies:
            reply["replies"] = await self.get_replies(reply["id"])
        return replies

    async def count_by_post(self, post_id: str) -> int:
        return await self.collection.count_documents({"post_id": post_id, "parent_id": None})

    async def insert(self, post_id: str, author_id: str, content: str, parent_id: Optional[str]) -> str:
        now = utcnow()
        result = await self.collection.insert_one({
            "post_id": post_id,
            "author_id": author_id,
            "content": content,
            "parent_id": parent_id,
            "created_at": now,
            "updated_at": now,
        })
        return str(result.inserted_id)

    async def update_content(self, comment_id: str, content: str) -> None:
        await self.collection.update_one(
            {"_id": ObjectId(comment_id)},
            {"$set": {"content": content, "updated_at": utcnow()}}
        )

    async def delete(self, comment_id: str) -> bool:
        """Delete a comment and its whole reply subtree."""
        await self._delete_replies(comment_id)
        result = await self.collection.delete_one({"_id": ObjectId(comment_id)})
        return result.deleted_count > 0

    async def _delete_replies(self, parent_id: str) -> None:
        cursor = self.collection.find({"parent_id": parent_id}, {"_id": 1})
        reply_ids = [reply["_id"] async for reply in cursor]
        for reply_id in reply_ids:
            await self._delete_replies(str(reply_id))
            await self.collection.delete_one({"_id": reply_id})
