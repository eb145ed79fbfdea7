# tests/conftest.py
import os
from typing import Dict, List

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_LEVEL", "WARNING")
# Caching is exercised on its own in test_cache.py
os.environ["CACHE_ENABLED"] = "false"

import pytest
from bson import ObjectId
from fastapi import FastAPI
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from microbio_blog.core.deps import get_database
from microbio_blog.core.errors import MediaStorageError
from microbio_blog.core.security import create_access_token
from microbio_blog.crud.comment import CommentRepository
from microbio_blog.crud.post import PostRepository
from microbio_blog.db.mongodb import create_indexes
from microbio_blog.main import create_app
from microbio_blog.models.post import PostCreate, PostStatus
from microbio_blog.models.user import CurrentUser, UserRole
from microbio_blog.services.comments import CommentService
from microbio_blog.services.events import EventBus
from microbio_blog.services.media import UploadResult
from microbio_blog.services.posts import PostLifecycleManager

PNG_DATA_URI = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


class FakeMediaStorage:
    """In-memory stand-in for Cloudinary."""

    def __init__(self):
        self.uploads: List[str] = []
        self.deleted: List[str] = []
        self.fail_upload = False
        self.fail_delete = False

    async def upload(self, data: str, folder: str) -> UploadResult:
        if self.fail_upload:
            raise MediaStorageError("Image upload failed")
        public_id = f"microbiology-blog/{folder}/img{len(self.uploads) + 1}"
        self.uploads.append(public_id)
        return UploadResult(
            url=f"https://res.cloudinary.com/demo/image/upload/v1700000000/{public_id}.png",
            public_id=public_id,
        )

    async def delete(self, public_id: str) -> bool:
        if self.fail_delete:
            raise MediaStorageError("Image destroy failed")
        self.deleted.append(public_id)
        return True


@pytest.fixture()
async def db():
    database = AsyncMongoMockClient()["microbio_blog_test"]
    await create_indexes(database)
    return database


@pytest.fixture()
async def users(db) -> Dict[str, CurrentUser]:
    people = {
        "admin": ("Ada", "Admin", UserRole.ADMIN),
        "author": ("Rosalind", "Franklin", UserRole.RESEARCHER),
        "other": ("Louis", "Pasteur", UserRole.RESEARCHER),
        "reader": ("Rita", "Reader", UserRole.READER),
    }
    created = {}
    for key, (first, last, role) in people.items():
        oid = ObjectId()
        await db.users.insert_one({
            "_id": oid,
            "first_name": first,
            "last_name": last,
            "email": f"{key}@example.com",
            "role": role.value,
            "institution": "Institut Pasteur" if key == "other" else None,
        })
        created[key] = CurrentUser(id=str(oid), role=role, first_name=first, last_name=last)
    return created


@pytest.fixture()
async def categories(db) -> Dict[str, str]:
    ids = {}
    for name, slug in (("Bacteriology", "bacteriology"), ("Virology", "virology")):
        result = await db.categories.insert_one({"name": name, "slug": slug, "is_active": True})
        ids[slug] = str(result.inserted_id)
    return ids


@pytest.fixture()
def events() -> EventBus:
    return EventBus()


@pytest.fixture()
def media() -> FakeMediaStorage:
    return FakeMediaStorage()


@pytest.fixture()
def manager(db, media, events) -> PostLifecycleManager:
    return PostLifecycleManager(PostRepository(db), media, events)


@pytest.fixture()
def comment_service(db, events) -> CommentService:
    return CommentService(CommentRepository(db), PostRepository(db), events)


@pytest.fixture()
def make_post(manager, users, categories):
    async def _make_post(
        owner: str = "author",
        title: str = "Biofilm formation on catheters",
        status: PostStatus = PostStatus.PUBLISHED,
        **fields,
    ):
        data = PostCreate(
            title=title,
            content=fields.pop("content", "Bacteria attach to surfaces and build protective matrices"),
            category=fields.pop("category", "bacteriology"),
            status=status,
            **fields,
        )
        return await manager.create_post(users[owner], data)

    return _make_post


@pytest.fixture()
def app(db, media, events, users, categories) -> FastAPI:
    application = create_app()
    application.state.media_storage = media
    application.state.event_bus = events
    application.dependency_overrides[get_database] = lambda: db
    return application


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    # No lifespan: the database comes from the dependency override
    return TestClient(app, base_url="http://test")


@pytest.fixture()
def auth_headers(users):
    def _headers(key: str) -> Dict[str, str]:
        user = users[key]
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role.value)}"}

    return _headers
