from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from microbio_blog.core.utils import utcnow
from microbio_blog.crud.base import to_object_id
from microbio_blog.crud.category import CategoryRepository
from microbio_blog.crud.user import UserRepository
from microbio_blog.models.post import PostView

SortSpec = Sequence[Tuple[str, int]]


class PostRepository:
    """Storage access for posts.

    Returns raw documents for the write path and fully resolved ``PostView``
    objects (author and category expanded) for the read path.
    """

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.posts
        self.comments = db.comments
        self.users = UserRepository(db)
        self.categories = CategoryRepository(db)

    async def get(self, post_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(post_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid})

    async def get_by_identifier(self, identifier: str) -> Optional[Dict[str, Any]]:
        """Look a post up by id first, then by slug."""
        post = await self.get(identifier)
        if post is None:
            post = await self.collection.find_one({"slug": identifier.lower()})
        return post

    async def slug_exists(self, slug: str) -> bool:
        return await self.collection.find_one({"slug": slug}, {"_id": 1}) is not None

    async def insert(self, document: Dict[str, Any]) -> str:
        result = await self.collection.insert_one(document)
        return str(result.inserted_id)

    async def update_fields(self, post_id: str, fields: Dict[str, Any]) -> None:
        fields = {**fields, "updated_at": utcnow()}
        await self.collection.update_one({"_id": ObjectId(post_id)}, {"$set": fields})

    async def delete(self, post_id: str) -> bool:
        oid = ObjectId(post_id)
        await self.comments.delete_many({"post_id": post_id})
        result = await self.collection.delete_one({"_id": oid})
        return result.deleted_count > 0

    async def increment_views(self, post_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(post_id)
        if oid is None:
            return None
        return await self.collection.find_one_and_update(
            {"_id": oid},
            {"$inc": {"views": 1}},
            return_document=ReturnDocument.AFTER,
        )

    async def add_like(self, post_id: str, user_id: str) -> bool:
        """Add a like unless present. True when this call added it."""
        result = await self.collection.update_one(
            {"_id": ObjectId(post_id), "likes": {"$ne": user_id}},
            {"$addToSet": {"likes": user_id}, "$inc": {"likes_count": 1}},
        )
        return result.modified_count == 1

    async def remove_like(self, post_id: str, user_id: str) -> bool:
        """Remove a like if present. True when this call removed it."""
        result = await self.collection.update_one(
            {"_id": ObjectId(post_id), "likes": user_id},
            {"$pull": {"likes": user_id}, "$inc": {"likes_count": -1}},
        )
        return result.modified_count == 1

    async def increment_comments(self, post_id: str) -> None:
        await self.collection.update_one({"_id": ObjectId(post_id)}, {"$inc": {"comments": 1}})

    async def decrement_comments(self, post_id: str) -> None:
        # Never below zero
        await self.collection.update_one(
            {"_id": ObjectId(post_id), "comments": {"$gt": 0}},
            {"$inc": {"comments": -1}},
        )

    async def count(self, query: Dict[str, Any]) -> int:
        return await self.collection.count_documents(query)

    async def find(
        self,
        query: Dict[str, Any],
        sort: SortSpec,
        skip: int = 0,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        cursor = self.collection.find(query).sort(list(sort)).skip(skip).limit(limit)
        return [post async for post in cursor]

    async def tag_counts(self, match: Dict[str, Any], pattern: str, limit: int = 5) -> List[Dict[str, Any]]:
        pipeline = [
            {"$match": match},
            {"$unwind": "$tags"},
            {"$match": {"tags": {"$regex": pattern, "$options": "i"}}},
            {"$group": {"_id": "$tags", "count": {"$sum": 1}}},
            {"$sort": {"count": -1, "_id": 1}},
            {"$limit": limit},
        ]
        cursor = self.collection.aggregate(pipeline)
        return [row async for row in cursor]

    async def load_with_relations(
        self,
        post_id: str,
        author: bool = True,
        category: bool = True,
    ) -> Optional[PostView]:
        post = await self.get(post_id)
        if post is None:
            return None
        views = await self.to_views([post], author=author, category=category)
        return views[0]

    async def to_views(
        self,
        posts: List[Dict[str, Any]],
        author: bool = True,
        category: bool = True,
    ) -> List[PostView]:
        """Resolve authors and categories for a batch of raw posts."""
        authors = {}
        categories = {}
        if author:
            authors = await self.users.get_public_many(p.get("author_id") for p in posts)
        if category:
            categories = await self.categories.get_refs(p.get("category_id") for p in posts)

        return [
            to_view(post, authors.get(post.get("author_id")), categories.get(post.get("category_id")))
            for post in posts
        ]


def to_view(post: Dict[str, Any], author=None, category=None) -> PostView:
    data = {key: value for key, value in post.items() if key in PostView.model_fields}
    data.update(
        id=str(post["_id"]),
        excerpt=post.get("excerpt") or "",
        tags=post.get("tags") or [],
        likes=post.get("likes_count", len(post.get("likes") or [])),
        comments=max(post.get("comments") or 0, 0),
        author=author,
        category=category,
    )
    return PostView(**data)
