import logging
from typing import Any, Dict, Optional

from microbio_blog.core.cache import ResponseCache
from microbio_blog.core.errors import AuthorizationError, NotFoundError, ValidationError
from microbio_blog.crud.comment import CommentRepository
from microbio_blog.crud.post import PostRepository
from microbio_blog.models.comment import (
    Comment, CommentCreate, CommentList, CommentUpdate, CommentWithReplies,
)
from microbio_blog.models.events import CommentCreated
from microbio_blog.models.user import CurrentUser
from microbio_blog.services.events import EventBus
from microbio_blog.services.visibility import can_view

logger = logging.getLogger(__name__)


class CommentService:
    """Threaded comments on posts.

    Only top-level comments count towards ``posts.comments``; replies hang off
    their parent and go away with it.
    """

    def __init__(
        self,
        comments: CommentRepository,
        posts: PostRepository,
        events: EventBus,
        cache: Optional[ResponseCache] = None,
    ):
        self.comments = comments
        self.posts = posts
        self.events = events
        self.cache = cache

    def _invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate("/posts", "/comments")

    async def _visible_post(self, post_id: str, user: Optional[CurrentUser]) -> Dict[str, Any]:
        post = await self.posts.get(post_id)
        if post is None or not can_view(post, user):
            raise NotFoundError("Post not found")
        return post

    async def _get_raw_or_404(self, comment_id: str) -> Dict[str, Any]:
        comment = await self.comments.get_raw(comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        return comment

    async def create_comment(self, user: CurrentUser, data: CommentCreate) -> Comment:
        content = data.content.strip()
        if not content:
            raise ValidationError("Comment content cannot be empty")

        post = await self._visible_post(data.post_id, user)

        parent = None
        if data.parent_id:
            parent = await self.comments.get_raw(data.parent_id)
            if parent is None:
                raise NotFoundError("Parent comment not found")
            if parent["post_id"] != data.post_id:
                raise ValidationError("Parent comment belongs to a different post")

        comment_id = await self.comments.insert(data.post_id, user.id, content, data.parent_id)
        if parent is None:
            await self.posts.increment_comments(data.post_id)

        logger.info("Comment %s added to post %s by %s", comment_id, data.post_id, user.id)
        self.events.publish(CommentCreated(
            comment_id=comment_id,
            post_id=data.post_id,
            post_author_id=post["author_id"],
            commenter_id=user.id,
            parent_author_id=parent["author_id"] if parent else None,
        ))
        self._invalidate()
        return Comment(**await self.comments.get(comment_id))

    async def get_comment(self, user: Optional[CurrentUser], comment_id: str) -> Comment:
        raw = await self._get_raw_or_404(comment_id)
        await self._visible_post(raw["post_id"], user)
        return Comment(**await self.comments.get(comment_id))

    async def get_comment_with_replies(self, user: Optional[CurrentUser], comment_id: str) -> CommentWithReplies:
        comment = await self.get_comment(user, comment_id)
        replies = await self.comments.get_replies(comment_id)
        return CommentWithReplies(**comment.model_dump(), replies=replies)

    async def list_post_comments(
        self,
        user: Optional[CurrentUser],
        post_id: str,
        limit: int = 50,
        offset: int = 0,
        include_replies: bool = True,
    ) -> CommentList:
        await self._visible_post(post_id, user)
        items = await self.comments.list_by_post(post_id, limit, offset, include_replies)
        return CommentList(
            total=await self.comments.count_by_post(post_id),
            limit=limit,
            offset=offset,
            items=items,
        )

    async def update_comment(self, user: CurrentUser, comment_id: str, data: CommentUpdate) -> Comment:
        content = data.content.strip()
        if not content:
            raise ValidationError("Comment content cannot be empty")

        raw = await self._get_raw_or_404(comment_id)
        if raw["author_id"] != user.id:
            raise AuthorizationError("You can only edit your own comments")

        await self.comments.update_content(comment_id, content)
        self._invalidate()
        return Comment(**await self.comments.get(comment_id))

    async def delete_comment(self, user: CurrentUser, comment_id: str) -> None:
        raw = await self._get_raw_or_404(comment_id)
        if raw["author_id"] != user.id and not user.is_admin:
            raise AuthorizationError("You do not have permission to delete this comment")

        await self.comments.delete(comment_id)
        if raw.get("parent_id") is None:
            await self.posts.decrement_comments(raw["post_id"])

        logger.info("Comment %s deleted by %s", comment_id, user.id)
        self._invalidate()
