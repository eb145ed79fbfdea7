from typing import Any, Dict, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from microbio_blog.crud.base import to_object_id
from microbio_blog.models.category import Category, CategoryRef


def to_category(doc: Dict[str, Any]) -> Category:
    return Category(
        id=str(doc["_id"]),
        name=doc.get("name") or "Uncategorized",
        slug=doc.get("slug") or "uncategorized",
        description=doc.get("description"),
        image=doc.get("image"),
        is_active=doc.get("is_active", True),
    )


class CategoryRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.categories

    async def resolve(self, reference: str) -> Optional[Dict[str, Any]]:
        """Find a category by id or by slug."""
        if not reference:
            return None
        conditions: List[Dict[str, Any]] = [{"slug": reference.lower()}]
        oid = to_object_id(reference)
        if oid is not None:
            conditions.insert(0, {"_id": oid})
        return await self.collection.find_one({"$or": conditions})

    async def get_refs(self, category_ids: Iterable[str]) -> Dict[str, CategoryRef]:
        oids = [oid for oid in (to_object_id(c) for c in set(category_ids)) if oid is not None]
        if not oids:
            return {}
        cursor = self.collection.find({"_id": {"$in": oids}}, {"name": 1, "slug": 1})
        return {
            str(doc["_id"]): CategoryRef(
                id=str(doc["_id"]),
                name=doc.get("name") or "Uncategorized",
                slug=doc.get("slug") or "uncategorized",
            )
            async for doc in cursor
        }

    async def list_active(self) -> List[Category]:
        cursor = self.collection.find({"is_active": {"$ne": False}}).sort("name", 1)
        return [to_category(doc) async for doc in cursor]
