"""Post lifecycle: creation, edits, archive/unarchive, offense flags, counters
and the visibility-filtered read side.

Every operation checks, in this order: the input itself (400), that the post
exists (404), then the caller's rights (403). Side effects (notifications,
analytics) go out as domain events and can never fail the operation.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from pymongo.errors import DuplicateKeyError

from microbio_blog.core.cache import ResponseCache
from microbio_blog.core.errors import (
    AuthorizationError, ConflictError, MediaStorageError, NotFoundError, ValidationError,
)
from microbio_blog.core.utils import (
    derived_content_fields, generate_slug, is_base64_image, is_hosted_url, parse_sort,
    parse_tags, total_pages, unique_slug_suffix, utcnow,
)
from microbio_blog.crud.post import PostRepository
from microbio_blog.models.events import (
    PostArchived, PostCreated, PostDeleted, PostFlagCleared, PostFlagged, PostLiked,
    PostPublished, PostUnarchived, PostViewed, SearchPerformed,
)
from microbio_blog.models.post import (
    LikeResult, PostCreate, PostList, PostPatch, PostStatus, PostView, SearchInfo,
    SearchResults, SearchSuggestion, SearchType, SuggestionList, SuggestionType, ViewCount,
)
from microbio_blog.models.user import AUTHOR_ROLES, CurrentUser
from microbio_blog.services.events import EventBus
from microbio_blog.services.media import MediaStorage, public_id_from_url
from microbio_blog.services.visibility import (
    author_filter, can_manage, can_view, feed_filter, is_owner, public_filter,
)

logger = logging.getLogger(__name__)

IMAGE_FOLDER = "posts"
MAX_PAGE_SIZE = 100
CREATABLE_STATUSES = (PostStatus.DRAFT, PostStatus.PUBLISHED)
UNARCHIVE_TARGETS = (PostStatus.DRAFT, PostStatus.PUBLISHED)
NOT_FOUND_MESSAGE = "Post not found"
HIDDEN_MESSAGE = "Post not found. It may have been deleted or you may not have access."


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def _check_image_reference(image: Optional[str]) -> None:
    if image and not (is_base64_image(image) or is_hosted_url(image)):
        raise ValidationError("Image must be a hosted URL or a base64-encoded image")


def _text_pattern(query: str) -> Dict[str, str]:
    return {"$regex": re.escape(query), "$options": "i"}


class PostLifecycleManager:
    def __init__(
        self,
        posts: PostRepository,
        media: MediaStorage,
        events: EventBus,
        cache: Optional[ResponseCache] = None,
    ):
        self.posts = posts
        self.categories = posts.categories
        self.users = posts.users
        self.media = media
        self.events = events
        self.cache = cache

    # -- helpers ---------------------------------------------------------

    async def _get_or_404(self, post_id: str) -> Dict[str, Any]:
        post = await self.posts.get(post_id)
        if post is None:
            raise NotFoundError(NOT_FOUND_MESSAGE)
        return post

    async def _view(self, post_id: str) -> PostView:
        view = await self.posts.load_with_relations(post_id, author=True, category=True)
        if view is None:
            raise NotFoundError(NOT_FOUND_MESSAGE)
        return view

    async def _resolve_category(self, reference: str) -> str:
        category = await self.categories.resolve(reference)
        if category is None:
            raise ValidationError("Selected category does not exist")
        return str(category["_id"])

    async def _unique_slug(self, title: str) -> str:
        base = generate_slug(title)
        slug = base
        attempt = 0
        while await self.posts.slug_exists(slug):
            attempt += 1
            slug = f"{base}-{unique_slug_suffix()}" + (f"-{attempt}" if attempt > 1 else "")
        return slug

    async def _discard_image(self, public_id: Optional[str]) -> None:
        if not public_id:
            return
        try:
            await self.media.delete(public_id)
        except Exception:
            logger.exception("Failed to delete image %s", public_id)

    def _invalidate(self, *extra: str) -> None:
        if self.cache is not None:
            self.cache.invalidate("/posts", *extra)

    def _publish_published(self, post: Dict[str, Any], actor: CurrentUser) -> None:
        self.events.publish(PostPublished(
            post_id=str(post["_id"]),
            author_id=post["author_id"],
            actor_id=actor.id,
            title=post["title"],
            category_id=post["category_id"],
        ))

    def _moderation_stamp(self, post: Dict[str, Any], user: CurrentUser) -> Dict[str, Any]:
        """Admin acting on somebody else's post leaves a moderation trail."""
        if user.is_admin and not is_owner(post, user):
            return {"moderated_by": user.id, "moderated_at": utcnow()}
        return {}

    async def _page(
        self,
        query: Dict[str, Any],
        sort: str,
        page: int,
        limit: int,
    ) -> PostList:
        if page < 1:
            raise ValidationError("Page must be 1 or greater")
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")
        try:
            sort_spec = parse_sort(sort)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        total = await self.posts.count(query)
        docs = await self.posts.find(query, sort_spec, skip=(page - 1) * limit, limit=limit)
        return PostList(
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages(total, limit),
            items=await self.posts.to_views(docs),
        )

    async def _narrow_by_category(self, query: Dict[str, Any], category: Optional[str]) -> None:
        if not category or category == "all":
            return
        found = await self.categories.resolve(category)
        # An unknown category matches nothing rather than everything
        query["category_id"] = str(found["_id"]) if found else category

    async def _search_conditions(self, text: str, search_type: SearchType) -> List[Dict[str, Any]]:
        pattern = _text_pattern(text)
        if search_type == SearchType.TITLE:
            return [{"title": pattern}]
        if search_type == SearchType.CONTENT:
            return [{"content": pattern}]
        if search_type == SearchType.TAGS:
            return [{"tags": pattern}]

        author_ids = await self.users.find_ids_by_name(text)
        if search_type == SearchType.AUTHOR:
            return [{"author_id": {"$in": author_ids}}]

        conditions = [
            {"title": pattern},
            {"excerpt": pattern},
            {"content": pattern},
            {"tags": pattern},
        ]
        if author_ids:
            conditions.append({"author_id": {"$in": author_ids}})
        return conditions

    # -- write side ------------------------------------------------------

    async def create_post(self, user: CurrentUser, data: PostCreate) -> PostView:
        title = _clean(data.title)
        content = _clean(data.content)
        if not title:
            raise ValidationError("Title is required")
        if not content:
            raise ValidationError("Content is required")
        if not _clean(data.category):
            raise ValidationError("Category is required")
        if data.status not in CREATABLE_STATUSES:
            raise ValidationError('New posts must be "draft" or "published"')
        _check_image_reference(data.image)

        if user.role not in AUTHOR_ROLES:
            raise AuthorizationError("Only researchers and administrators can create posts")

        category_id = await self._resolve_category(_clean(data.category))
        excerpt = _clean(data.excerpt)

        image_url = None
        image_id = None
        if is_base64_image(data.image):
            # Best effort: the post is created without an image if this fails
            try:
                uploaded = await self.media.upload(data.image, IMAGE_FOLDER)
                image_url, image_id = uploaded.url, uploaded.public_id
            except MediaStorageError as exc:
                logger.warning("Image upload failed while creating post '%s': %s", title, exc.message)
        elif data.image:
            image_url = data.image

        now = utcnow()
        document = {
            "title": title,
            "slug": await self._unique_slug(title),
            "excerpt": excerpt,
            "content": content,
            "featured_image": image_url,
            "featured_image_id": image_id,
            "tags": parse_tags(data.tags),
            "category_id": category_id,
            "author_id": user.id,
            "status": data.status.value,
            "featured": False,
            "published_at": now if data.status == PostStatus.PUBLISHED else None,
            "last_edited_at": None,
            "archive_reason": None,
            "moderated_by": None,
            "moderated_at": None,
            "is_offensive": False,
            "offense_reason": None,
            "offense_reported_by": None,
            "offense_reported_at": None,
            "offense_resolved_by": None,
            "offense_resolved_at": None,
            "views": 0,
            "likes": [],
            "likes_count": 0,
            "comments": 0,
            "created_at": now,
            "updated_at": now,
            **derived_content_fields(title, excerpt, content),
        }

        try:
            post_id = await self.posts.insert(document)
        except DuplicateKeyError as exc:
            await self._discard_image(image_id)
            raise ConflictError("A post with this slug already exists") from exc
        except Exception:
            await self._discard_image(image_id)
            raise

        document["_id"] = post_id
        logger.info("Post %s created by %s as %s", post_id, user.id, data.status.value)
        self.events.publish(PostCreated(
            post_id=post_id, author_id=user.id, actor_id=user.id, title=title, category_id=category_id,
        ))
        if data.status == PostStatus.PUBLISHED:
            self._publish_published(document, user)
        self._invalidate()
        return await self._view(post_id)

    async def update_post(self, user: CurrentUser, post_id: str, patch: PostPatch) -> PostView:
        fields = {k: v for k, v in patch.model_dump(exclude_unset=True).items() if v is not None}
        for name in ("title", "content"):
            if name in fields and not _clean(fields[name]):
                raise ValidationError(f"{name.capitalize()} cannot be empty")
        _check_image_reference(fields.get("image"))

        post = await self._get_or_404(post_id)
        if not can_manage(post, user):
            raise AuthorizationError("Not authorized to update this post")

        now = utcnow()
        update: Dict[str, Any] = {"last_edited_at": now}
        for name in ("title", "excerpt", "content"):
            if name in fields:
                update[name] = _clean(fields[name])
        if "category" in fields:
            update["category_id"] = await self._resolve_category(_clean(fields["category"]))
        if "tags" in fields:
            update["tags"] = parse_tags(fields["tags"])

        first_publication = False
        if "status" in fields:
            new_status = fields["status"]
            update["status"] = new_status.value
            if new_status != PostStatus(post["status"]):
                update.update(self._moderation_stamp(post, user))
                if post["status"] == PostStatus.ARCHIVED.value:
                    update["archive_reason"] = None
            if new_status == PostStatus.PUBLISHED and not post.get("published_at"):
                update["published_at"] = now
                first_publication = True

        if any(name in update for name in ("title", "excerpt", "content")):
            update.update(derived_content_fields(
                update.get("title", post["title"]),
                update.get("excerpt", post.get("excerpt") or ""),
                update.get("content", post["content"]),
            ))

        uploaded = None
        image = fields.get("image")
        if is_base64_image(image):
            try:
                uploaded = await self.media.upload(image, IMAGE_FOLDER)
            except MediaStorageError as exc:
                raise ValidationError("Image upload failed; the current image was kept", error=exc.message) from exc
            update["featured_image"] = uploaded.url
            update["featured_image_id"] = uploaded.public_id
        elif image and image != post.get("featured_image"):
            update["featured_image"] = image
            update["featured_image_id"] = None

        try:
            await self.posts.update_fields(post_id, update)
        except Exception:
            if uploaded is not None:
                await self._discard_image(uploaded.public_id)
            raise

        # Old asset goes only once the replacement is saved
        old_image_id = post.get("featured_image_id")
        if uploaded is not None and post.get("featured_image"):
            old_image_id = old_image_id or public_id_from_url(post["featured_image"])
        if old_image_id and update.get("featured_image", post.get("featured_image")) != post.get("featured_image"):
            await self._discard_image(old_image_id)

        logger.info("Post %s updated by %s (%s)", post_id, user.id, ", ".join(sorted(fields)) or "no fields")
        if first_publication:
            self._publish_published({**post, **update}, user)
        self._invalidate()
        return await self._view(post_id)

    async def archive_post(self, user: CurrentUser, post_id: str, reason: str = "") -> PostView:
        post = await self._get_or_404(post_id)
        if not can_manage(post, user):
            raise AuthorizationError("Not authorized to archive this post")

        stamp = self._moderation_stamp(post, user)
        await self.posts.update_fields(post_id, {
            "status": PostStatus.ARCHIVED.value,
            "archive_reason": _clean(reason),
            **stamp,
        })

        logger.info("Post %s archived by %s%s", post_id, user.id, " (moderation)" if stamp else "")
        self.events.publish(PostArchived(
            post_id=post_id, author_id=post["author_id"], actor_id=user.id,
            reason=_clean(reason), moderated=bool(stamp),
        ))
        self._invalidate()
        return await self._view(post_id)

    async def unarchive_post(self, user: CurrentUser, post_id: str, target_status: str = "draft") -> PostView:
        try:
            target = PostStatus(target_status)
        except ValueError:
            target = None
        if target not in UNARCHIVE_TARGETS:
            raise ValidationError('Invalid status. Must be "draft" or "published"')

        post = await self._get_or_404(post_id)
        if not can_manage(post, user):
            raise AuthorizationError("Not authorized to unarchive this post")

        stamp = self._moderation_stamp(post, user)
        update: Dict[str, Any] = {"status": target.value, "archive_reason": None, **stamp}
        first_publication = target == PostStatus.PUBLISHED and not post.get("published_at")
        if first_publication:
            update["published_at"] = utcnow()
        await self.posts.update_fields(post_id, update)

        logger.info("Post %s unarchived to %s by %s", post_id, target.value, user.id)
        self.events.publish(PostUnarchived(
            post_id=post_id, author_id=post["author_id"], actor_id=user.id,
            status=target.value, moderated=bool(stamp),
        ))
        if first_publication:
            self._publish_published({**post, **update}, user)
        self._invalidate()
        return await self._view(post_id)

    async def mark_offensive(self, user: CurrentUser, post_id: str, reason: str = "") -> PostView:
        post = await self._get_or_404(post_id)
        if not user.is_admin:
            raise AuthorizationError("Only administrators can mark posts as offensive")

        await self.posts.update_fields(post_id, {
            "is_offensive": True,
            "offense_reason": _clean(reason),
            "offense_reported_by": user.id,
            "offense_reported_at": utcnow(),
            "offense_resolved_by": None,
            "offense_resolved_at": None,
        })

        logger.info("Post %s marked offensive by %s", post_id, user.id)
        self.events.publish(PostFlagged(
            post_id=post_id, author_id=post["author_id"], actor_id=user.id, reason=_clean(reason),
        ))
        self._invalidate()
        return await self._view(post_id)

    async def remove_offense(self, user: CurrentUser, post_id: str) -> PostView:
        post = await self._get_or_404(post_id)
        if not user.is_admin:
            raise AuthorizationError("Only administrators can remove offenses from posts")

        # Reporter fields stay for the audit trail
        await self.posts.update_fields(post_id, {
            "is_offensive": False,
            "offense_reason": None,
            "offense_resolved_by": user.id,
            "offense_resolved_at": utcnow(),
        })

        logger.info("Offense removed from post %s by %s", post_id, user.id)
        self.events.publish(PostFlagCleared(post_id=post_id, author_id=post["author_id"], actor_id=user.id))
        self._invalidate()
        return await self._view(post_id)

    async def set_featured(self, user: CurrentUser, post_id: str, featured: bool) -> PostView:
        await self._get_or_404(post_id)
        if not user.is_admin:
            raise AuthorizationError("Only administrators can feature posts")

        await self.posts.update_fields(post_id, {"featured": featured})
        self._invalidate()
        return await self._view(post_id)

    async def delete_post(self, user: CurrentUser, post_id: str) -> None:
        post = await self._get_or_404(post_id)
        if not can_manage(post, user):
            raise AuthorizationError("Not authorized to delete this post")

        await self.posts.delete(post_id)
        if post.get("featured_image"):
            await self._discard_image(
                post.get("featured_image_id") or public_id_from_url(post["featured_image"])
            )

        logger.info("Post %s deleted by %s", post_id, user.id)
        self.events.publish(PostDeleted(post_id=post_id, author_id=post["author_id"], actor_id=user.id))
        self._invalidate("/comments")

    # -- counters --------------------------------------------------------

    async def toggle_like(self, user: CurrentUser, post_id: str) -> LikeResult:
        post = await self._get_or_404(post_id)

        if await self.posts.remove_like(post_id, user.id):
            is_liked = False
        else:
            is_liked = True
            if await self.posts.add_like(post_id, user.id):
                self.events.publish(PostLiked(
                    post_id=post_id, author_id=post["author_id"], actor_id=user.id, title=post["title"],
                ))

        fresh = await self._get_or_404(post_id)
        likes = fresh.get("likes_count", len(fresh.get("likes") or []))
        self._invalidate()
        return LikeResult(likes=likes, is_liked=is_liked)

    async def increment_view(self, post_id: str, user: Optional[CurrentUser] = None) -> ViewCount:
        post = await self.posts.increment_views(post_id)
        if post is None:
            raise NotFoundError(NOT_FOUND_MESSAGE)

        self.events.publish(PostViewed(
            post_id=post_id,
            author_id=post["author_id"],
            actor_id=user.id if user else None,
            category_id=post["category_id"],
        ))
        return ViewCount(views=post["views"])

    # -- read side -------------------------------------------------------

    async def get_post(self, user: Optional[CurrentUser], identifier: str) -> PostView:
        post = await self.posts.get_by_identifier(identifier)
        if post is None or not can_view(post, user):
            raise NotFoundError(HIDDEN_MESSAGE)
        return (await self.posts.to_views([post]))[0]

    async def list_posts(
        self,
        user: Optional[CurrentUser],
        page: int = 1,
        limit: int = 10,
        category: Optional[str] = None,
        author: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
        sort: str = "-created_at",
    ) -> PostList:
        query = feed_filter(user, author_id=author, status=status)
        await self._narrow_by_category(query, category)
        if _clean(search):
            conditions = await self._search_conditions(_clean(search), SearchType.ALL)
            query = {"$and": [query, {"$or": conditions}]}
        return await self._page(query, sort, page, limit)

    async def get_featured_posts(self, limit: int = 6) -> List[PostView]:
        query = {**public_filter(), "featured": True}
        docs = await self.posts.find(query, [("created_at", -1)], limit=min(max(limit, 1), MAX_PAGE_SIZE))
        return await self.posts.to_views(docs)

    async def get_popular_posts(self, limit: int = 5) -> List[PostView]:
        docs = await self.posts.find(
            public_filter(),
            [("views", -1), ("likes_count", -1)],
            limit=min(max(limit, 1), MAX_PAGE_SIZE),
        )
        return await self.posts.to_views(docs)

    async def get_related_posts(self, user: Optional[CurrentUser], post_id: str, limit: int = 4) -> List[PostView]:
        post = await self.posts.get(post_id)
        if post is None or not can_view(post, user):
            raise NotFoundError(NOT_FOUND_MESSAGE)

        related_by = [{"category_id": post["category_id"]}]
        if post.get("tags"):
            related_by.append({"tags": {"$in": post["tags"]}})
        if post.get("keywords"):
            related_by.append({"keywords": {"$in": post["keywords"]}})

        query = {**public_filter(), "_id": {"$ne": post["_id"]}, "$or": related_by}
        docs = await self.posts.find(
            query,
            [("views", -1), ("created_at", -1)],
            limit=min(max(limit, 1), MAX_PAGE_SIZE),
        )
        return await self.posts.to_views(docs)

    async def get_posts_by_author(
        self,
        user: Optional[CurrentUser],
        author_id: str,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> PostList:
        return await self._page(author_filter(author_id, user, status), "-created_at", page, limit)

    async def search_posts(
        self,
        user: Optional[CurrentUser],
        text: str,
        search_type: SearchType = SearchType.ALL,
        category: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        sort: str = "-created_at",
    ) -> SearchResults:
        text = _clean(text)
        if not text:
            raise ValidationError("Search query is required")

        query = public_filter()
        await self._narrow_by_category(query, category)
        conditions = await self._search_conditions(text, search_type)
        query["$or"] = conditions

        result = await self._page(query, sort, page, limit)
        matched_authors = None
        if search_type == SearchType.AUTHOR:
            matched_authors = len(conditions[0]["author_id"]["$in"])

        self.events.publish(SearchPerformed(
            query=text, results=result.total, actor_id=user.id if user else None,
        ))
        return SearchResults(
            **result.model_dump(exclude={"items"}),
            items=result.items,
            search_info=SearchInfo(
                query=text,
                search_type=search_type,
                results_count=len(result.items),
                matched_authors=matched_authors,
            ),
        )

    async def get_search_suggestions(
        self,
        text: str,
        suggestion_type: SuggestionType = SuggestionType.ALL,
    ) -> SuggestionList:
        text = _clean(text)
        result = SuggestionList(query=text, type=suggestion_type)
        if len(text) < 2:
            return result

        wanted = {suggestion_type} if suggestion_type != SuggestionType.ALL else set(SuggestionType)
        authors: List[SearchSuggestion] = []
        titles: List[SearchSuggestion] = []
        tags: List[SearchSuggestion] = []

        if SuggestionType.AUTHORS in wanted:
            for author in await self.users.search_by_name(text, limit=5):
                name = " ".join(p for p in (author.get("first_name"), author.get("last_name")) if p)
                authors.append(SearchSuggestion(
                    type="author", display=name, value=name, id=str(author["_id"]),
                    avatar=author.get("avatar"), institution=author.get("institution"),
                ))

        if SuggestionType.TITLES in wanted:
            docs = await self.posts.find(
                {**public_filter(), "title": _text_pattern(text)}, [("views", -1)], limit=5,
            )
            titles = [
                SearchSuggestion(
                    type="title", display=doc["title"], value=doc["title"], id=str(doc["_id"]),
                    slug=doc["slug"], image=doc.get("featured_image"),
                )
                for doc in docs
            ]

        if SuggestionType.TAGS in wanted:
            rows = await self.posts.tag_counts(public_filter(), re.escape(text), limit=5)
            tags = [
                SearchSuggestion(type="tag", display=f"#{row['_id']}", value=row["_id"], count=row["count"])
                for row in rows
            ]

        result.suggestions = (authors + titles + tags)[:10]
        result.counts = {"authors": len(authors), "titles": len(titles), "tags": len(tags)}
        return result

    async def get_moderation_queue(
        self,
        user: CurrentUser,
        status: Optional[str] = None,
        offensive: Optional[bool] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        sort: Optional[str] = None,
    ) -> PostList:
        """Every post regardless of status or flag, for administrators."""
        if not user.is_admin:
            raise AuthorizationError("Only administrators can view the moderation queue")

        query: Dict[str, Any] = {}
        if status and status != "all":
            query["status"] = status
        if offensive is not None:
            query["is_offensive"] = offensive
        if _clean(search):
            pattern = _text_pattern(_clean(search))
            query["$or"] = [
                {"title": pattern},
                {"excerpt": pattern},
                {"content": pattern},
                {"offense_reason": pattern},
            ]
        if sort is None:
            sort = "-offense_reported_at" if offensive else "-created_at"
        return await self._page(query, sort, page, limit)
