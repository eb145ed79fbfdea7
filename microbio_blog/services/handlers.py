"""Side effects of post and comment activity.

Both handlers write to their own collections and never touch posts, so a
failure here can only cost a notification or a counter.
"""
import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from microbio_blog.core.utils import utcnow
from microbio_blog.models.events import (
    CommentCreated, PostLiked, PostPublished, PostViewed, SearchPerformed,
)
from microbio_blog.services.events import EventBus

logger = logging.getLogger(__name__)


class NotificationHandler:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.notifications

    async def _notify(
        self,
        recipient_id: str,
        sender_id: Optional[str],
        kind: str,
        post_id: str,
        message: str,
    ) -> None:
        if not recipient_id or recipient_id == sender_id:
            return
        await self.collection.insert_one({
            "recipient_id": recipient_id,
            "sender_id": sender_id,
            "type": kind,
            "post_id": post_id,
            "message": message,
            "is_read": False,
            "created_at": utcnow(),
        })
        logger.debug("Notified %s (%s) about post %s", recipient_id, kind, post_id)

    async def on_post_published(self, event: PostPublished) -> None:
        # The author's own feed entry; actor is dropped so it is never skipped
        await self._notify(
            event.author_id, None, "new_post", event.post_id,
            f'Your post "{event.title}" is now published',
        )

    async def on_post_liked(self, event: PostLiked) -> None:
        await self._notify(
            event.author_id, event.actor_id, "post_like", event.post_id,
            f'Someone liked your post "{event.title}"',
        )

    async def on_comment_created(self, event: CommentCreated) -> None:
        await self._notify(
            event.post_author_id, event.commenter_id, "new_comment", event.post_id,
            "Someone commented on your post",
        )
        if event.parent_author_id and event.parent_author_id != event.post_author_id:
            await self._notify(
                event.parent_author_id, event.commenter_id, "comment_reply", event.post_id,
                "Someone replied to your comment",
            )


class AnalyticsHandler:
    """Daily counters, one document per ``(date, type, metric)``."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.analytics

    async def bump(self, kind: str, metric: str, amount: int = 1) -> None:
        await self.collection.update_one(
            {"date": utcnow().strftime("%Y-%m-%d"), "type": kind, "metric": metric},
            {"$inc": {"value": amount}},
            upsert=True,
        )

    async def on_post_viewed(self, event: PostViewed) -> None:
        await self.bump("post", "views")
        await self.bump("category", f"views:{event.category_id}")

    async def on_post_liked(self, event: PostLiked) -> None:
        await self.bump("post", "likes")

    async def on_post_published(self, event: PostPublished) -> None:
        await self.bump("post", "published")

    async def on_comment_created(self, event: CommentCreated) -> None:
        await self.bump("post", "comments")

    async def on_search(self, event: SearchPerformed) -> None:
        await self.bump("search", "queries")
        if event.results == 0:
            await self.bump("search", "empty_results")


def register_handlers(bus: EventBus, db: AsyncIOMotorDatabase) -> None:
    notifications = NotificationHandler(db)
    analytics = AnalyticsHandler(db)

    bus.subscribe(PostPublished, notifications.on_post_published)
    bus.subscribe(PostLiked, notifications.on_post_liked)
    bus.subscribe(CommentCreated, notifications.on_comment_created)

    bus.subscribe(PostViewed, analytics.on_post_viewed)
    bus.subscribe(PostLiked, analytics.on_post_liked)
    bus.subscribe(PostPublished, analytics.on_post_published)
    bus.subscribe(CommentCreated, analytics.on_comment_created)
    bus.subscribe(SearchPerformed, analytics.on_search)
    logger.info("Registered notification and analytics handlers")
