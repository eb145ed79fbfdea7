"""Domain events published by the post and comment services.

Handlers subscribe by event class; the payloads carry ids only so that a
handler can never mutate the post it is reacting to.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from microbio_blog.core.utils import utcnow


class DomainEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    occurred_at: datetime = Field(default_factory=utcnow)


class PostEvent(DomainEvent):
    post_id: str
    author_id: str
    actor_id: Optional[str] = None


class PostCreated(PostEvent):
    title: str
    category_id: str


class PostPublished(PostEvent):
    title: str
    category_id: str


class PostArchived(PostEvent):
    reason: str = ""
    moderated: bool = False


class PostUnarchived(PostEvent):
    status: str
    moderated: bool = False


class PostFlagged(PostEvent):
    reason: str = ""


class PostFlagCleared(PostEvent):
    pass


class PostLiked(PostEvent):
    title: str


class PostViewed(PostEvent):
    category_id: str


class PostDeleted(PostEvent):
    pass


class CommentCreated(DomainEvent):
    comment_id: str
    post_id: str
    post_author_id: str
    commenter_id: str
    parent_author_id: Optional[str] = None


class SearchPerformed(DomainEvent):
    query: str
    results: int
    actor_id: Optional[str] = None
