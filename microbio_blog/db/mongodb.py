import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from microbio_blog.core.config import get_settings
from microbio_blog.core.errors import ServerError

settings = get_settings()
logger = logging.getLogger(__name__)

client = None
db = None


async def create_indexes(database: AsyncIOMotorDatabase) -> None:
    await database.posts.create_index("slug", unique=True)
    await database.posts.create_index([("status", 1), ("is_offensive", 1), ("created_at", -1)])
    await database.posts.create_index([("category_id", 1), ("status", 1), ("created_at", -1)])
    await database.posts.create_index([("author_id", 1), ("status", 1), ("created_at", -1)])
    await database.posts.create_index([("views", -1), ("likes_count", -1)])
    await database.posts.create_index("tags")
    await database.posts.create_index("keywords")
    await database.comments.create_index([("post_id", 1), ("parent_id", 1), ("created_at", -1)])
    await database.categories.create_index("slug", unique=True)
    await database.users.create_index("email", unique=True)
    await database.analytics.create_index([("date", 1), ("type", 1), ("metric", 1)])


async def connect_to_mongo():
    global client, db
    client = AsyncIOMotorClient(settings.MONGODB_URL)
    db = client[settings.MONGODB_DB_NAME]
    await create_indexes(db)
    logger.info("Connected to MongoDB database %s", settings.MONGODB_DB_NAME)


async def close_mongo_connection():
    global client
    if client:
        client.close()
        logger.info("MongoDB connection closed")


def get_database():
    if db is None:
        raise ServerError("Database connection is not initialised")
    return db
