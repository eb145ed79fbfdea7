"""Who may see which post.

Public readers see ``published`` posts that are not flagged offensive. The
owner and admins can open any post directly. Admins also see flagged
published posts in the general feed; the other browse surfaces (featured,
popular, related, search) only list public posts, and admins get a separate
moderation queue for drafts and archived posts.
"""
from typing import Any, Dict, Optional

from microbio_blog.models.post import PostStatus
from microbio_blog.models.user import CurrentUser


def public_filter() -> Dict[str, Any]:
    return {"status": PostStatus.PUBLISHED.value, "is_offensive": False}


def is_owner(post: Dict[str, Any], user: Optional[CurrentUser]) -> bool:
    return user is not None and post.get("author_id") == user.id


def is_publicly_visible(post: Dict[str, Any]) -> bool:
    return post.get("status") == PostStatus.PUBLISHED.value and not post.get("is_offensive", False)


def can_view(post: Dict[str, Any], user: Optional[CurrentUser]) -> bool:
    if is_publicly_visible(post):
        return True
    return user is not None and (user.is_admin or is_owner(post, user))


def can_manage(post: Dict[str, Any], user: CurrentUser) -> bool:
    """Owner or admin: update, archive, unarchive, delete."""
    return user.is_admin or is_owner(post, user)


def feed_filter(
    user: Optional[CurrentUser],
    author_id: Optional[str] = None,
    status: Optional[str] = None,
) -> Dict[str, Any]:
    """Filter for the general post listing.

    An author browsing their own posts sees every status (narrowed by
    ``status`` when given) including flagged ones. Admins get every
    published post, flagged or not. Everyone else gets the public filter.
    """
    if author_id and user is not None and author_id == user.id:
        query: Dict[str, Any] = {"author_id": author_id}
        if status and status != "all":
            query["status"] = status
        return query

    if user is not None and user.is_admin:
        query = {"status": PostStatus.PUBLISHED.value}
    else:
        query = public_filter()
    if author_id:
        query["author_id"] = author_id
    return query


def author_filter(
    author_id: str,
    user: Optional[CurrentUser],
    status: Optional[str] = None,
) -> Dict[str, Any]:
    """Filter for an author's post list.

    Flagged posts are always hidden here. The status filter is honoured only
    for the author and admins; other callers only see published posts.
    """
    query: Dict[str, Any] = {"author_id": author_id, "is_offensive": False}
    privileged = user is not None and (user.is_admin or user.id == author_id)
    if not privileged:
        query["status"] = PostStatus.PUBLISHED.value
    elif status and status != "all":
        query["status"] = status
    return query
