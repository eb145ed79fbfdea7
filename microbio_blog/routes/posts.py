from typing import Annotated, List, Optional
from fastapi import APIRouter, Body, Depends, Path, Query, status

from microbio_blog.core.deps import (
    AdminUserDep, CommentServiceDep, CurrentUserDep, OptionalUserDep, PostServiceDep,
    pagination_params,
)
from microbio_blog.models.comment import CommentList
from microbio_blog.models.common import ApiResponse
from microbio_blog.models.post import (
    ArchiveRequest, FeatureRequest, LikeResult, OffenseRequest, PostCreate, PostList,
    PostPatch, PostView, SearchResults, SearchType, SuggestionList, SuggestionType,
    UnarchiveRequest, ViewCount,
)

router = APIRouter()


@router.post("", response_model=ApiResponse[PostView], status_code=status.HTTP_201_CREATED)
async def create_post_route(
    post_data: Annotated[PostCreate, Body(...)],
    current_user: CurrentUserDep,
    service: PostServiceDep
):
    """Create a post. Researchers and administrators only."""
    post = await service.create_post(current_user, post_data)
    return ApiResponse(message="Post created successfully", data=post)


@router.get("", response_model=ApiResponse[PostList])
async def get_posts_route(
    current_user: OptionalUserDep,
    service: PostServiceDep,
    pagination: Annotated[dict, Depends(pagination_params)],
    category: Annotated[Optional[str], Query()] = None,
    author: Annotated[Optional[str], Query()] = None,
    post_status: Annotated[Optional[str], Query(alias="status")] = None,
    search: Annotated[Optional[str], Query()] = None,
    sort: Annotated[str, Query()] = "-created_at"
):
    """Public feed; an author filtering on themselves sees all their posts."""
    posts = await service.list_posts(
        current_user,
        page=pagination["page"],
        limit=pagination["limit"],
        category=category,
        author=author,
        status=post_status,
        search=search,
        sort=sort,
    )
    return ApiResponse(message="Posts retrieved successfully", data=posts)


@router.get("/featured", response_model=ApiResponse[List[PostView]])
async def get_featured_posts_route(
    service: PostServiceDep,
    limit: Annotated[int, Query(ge=1, le=50)] = 6
):
    posts = await service.get_featured_posts(limit)
    return ApiResponse(message="Featured posts retrieved successfully", data=posts)


@router.get("/popular", response_model=ApiResponse[List[PostView]])
async def get_popular_posts_route(
    service: PostServiceDep,
    limit: Annotated[int, Query(ge=1, le=50)] = 5
):
    posts = await service.get_popular_posts(limit)
    return ApiResponse(message="Popular posts retrieved successfully", data=posts)


@router.get("/search", response_model=ApiResponse[SearchResults])
async def search_posts_route(
    current_user: OptionalUserDep,
    service: PostServiceDep,
    pagination: Annotated[dict, Depends(pagination_params)],
    q: Annotated[str, Query()] = "",
    search_type: Annotated[SearchType, Query(alias="type")] = SearchType.ALL,
    category: Annotated[Optional[str], Query()] = None,
    sort: Annotated[str, Query()] = "-created_at"
):
    results = await service.search_posts(
        current_user,
        q,
        search_type=search_type,
        category=category,
        page=pagination["page"],
        limit=pagination["limit"],
        sort=sort,
    )
    return ApiResponse(message=f'Found {results.total} posts matching "{results.search_info.query}"', data=results)


@router.get("/search/suggestions", response_model=ApiResponse[SuggestionList])
async def search_suggestions_route(
    service: PostServiceDep,
    q: Annotated[str, Query()] = "",
    suggestion_type: Annotated[SuggestionType, Query(alias="type")] = SuggestionType.ALL
):
    suggestions = await service.get_search_suggestions(q, suggestion_type)
    return ApiResponse(message="Search suggestions retrieved successfully", data=suggestions)


@router.get("/moderation", response_model=ApiResponse[PostList])
async def moderation_queue_route(
    current_user: AdminUserDep,
    service: PostServiceDep,
    pagination: Annotated[dict, Depends(pagination_params)],
    post_status: Annotated[Optional[str], Query(alias="status")] = None,
    offensive: Annotated[Optional[bool], Query()] = None,
    search: Annotated[Optional[str], Query()] = None,
    sort: Annotated[Optional[str], Query()] = None
):
    """Every post regardless of status or offense flag."""
    posts = await service.get_moderation_queue(
        current_user,
        status=post_status,
        offensive=offensive,
        search=search,
        page=pagination["page"],
        limit=pagination["limit"],
        sort=sort,
    )
    return ApiResponse(message="Moderation queue retrieved successfully", data=posts)


@router.get("/author/{author_id}", response_model=ApiResponse[PostList])
async def get_posts_by_author_route(
    author_id: Annotated[str, Path(...)],
    current_user: OptionalUserDep,
    service: PostServiceDep,
    pagination: Annotated[dict, Depends(pagination_params)],
    post_status: Annotated[Optional[str], Query(alias="status")] = None
):
    posts = await service.get_posts_by_author(
        current_user, author_id, status=post_status, page=pagination["page"], limit=pagination["limit"],
    )
    return ApiResponse(message="Author posts retrieved successfully", data=posts)


@router.get("/{identifier}", response_model=ApiResponse[PostView])
async def get_post_route(
    identifier: Annotated[str, Path(...)],
    current_user: OptionalUserDep,
    service: PostServiceDep
):
    """Post by ID or slug."""
    post = await service.get_post(current_user, identifier)
    return ApiResponse(message="Post retrieved successfully", data=post)


@router.get("/{post_id}/related", response_model=ApiResponse[List[PostView]])
async def get_related_posts_route(
    post_id: Annotated[str, Path(...)],
    current_user: OptionalUserDep,
    service: PostServiceDep,
    limit: Annotated[int, Query(ge=1, le=20)] = 4
):
    posts = await service.get_related_posts(current_user, post_id, limit)
    return ApiResponse(message="Related posts retrieved successfully", data=posts)


@router.put("/{post_id}", response_model=ApiResponse[PostView])
async def update_post_route(
    post_id: Annotated[str, Path(...)],
    post_data: Annotated[PostPatch, Body(...)],
    current_user: CurrentUserDep,
    service: PostServiceDep
):
    """
    Update a post.
    Authors can update their own posts, administrators any post.
    """
    post = await service.update_post(current_user, post_id, post_data)
    return ApiResponse(message="Post updated successfully", data=post)


@router.delete("/{post_id}", response_model=ApiResponse)
async def delete_post_route(
    post_id: Annotated[str, Path(...)],
    current_user: CurrentUserDep,
    service: PostServiceDep
):
    """
    Delete a post together with its comments and stored image.
    Authors can delete their own posts, administrators any post.
    """
    await service.delete_post(current_user, post_id)
    return ApiResponse(message="Post deleted successfully")


@router.patch("/{post_id}/archive", response_model=ApiResponse[PostView])
async def archive_post_route(
    post_id: Annotated[str, Path(...)],
    current_user: CurrentUserDep,
    service: PostServiceDep,
    body: Annotated[Optional[ArchiveRequest], Body()] = None
):
    reason = body.reason if body else ""
    post = await service.archive_post(current_user, post_id, reason)
    return ApiResponse(message="Post archived successfully", data=post)


@router.patch("/{post_id}/unarchive", response_model=ApiResponse[PostView])
async def unarchive_post_route(
    post_id: Annotated[str, Path(...)],
    current_user: CurrentUserDep,
    service: PostServiceDep,
    body: Annotated[Optional[UnarchiveRequest], Body()] = None
):
    target = body.status if body else "draft"
    post = await service.unarchive_post(current_user, post_id, target)
    return ApiResponse(message=f"Post unarchived and set to {post.status.value}", data=post)


@router.post("/{post_id}/offensive", response_model=ApiResponse[PostView])
async def mark_offensive_route(
    post_id: Annotated[str, Path(...)],
    current_user: CurrentUserDep,
    service: PostServiceDep,
    body: Annotated[Optional[OffenseRequest], Body()] = None
):
    reason = body.reason if body else ""
    post = await service.mark_offensive(current_user, post_id, reason)
    return ApiResponse(message="Post marked as offensive", data=post)


@router.delete("/{post_id}/offensive", response_model=ApiResponse[PostView])
async def remove_offense_route(
    post_id: Annotated[str, Path(...)],
    current_user: CurrentUserDep,
    service: PostServiceDep
):
    post = await service.remove_offense(current_user, post_id)
    return ApiResponse(message="Offense removed from post", data=post)


@router.patch("/{post_id}/featured", response_model=ApiResponse[PostView])
async def set_featured_route(
    post_id: Annotated[str, Path(...)],
    body: Annotated[FeatureRequest, Body(...)],
    current_user: CurrentUserDep,
    service: PostServiceDep
):
    post = await service.set_featured(current_user, post_id, body.featured)
    message = "Post featured" if body.featured else "Post removed from featured"
    return ApiResponse(message=message, data=post)


@router.post("/{post_id}/like", response_model=ApiResponse[LikeResult])
async def toggle_like_route(
    post_id: Annotated[str, Path(...)],
    current_user: CurrentUserDep,
    service: PostServiceDep
):
    result = await service.toggle_like(current_user, post_id)
    return ApiResponse(message="Post liked" if result.is_liked else "Post unliked", data=result)


@router.post("/{post_id}/view", response_model=ApiResponse[ViewCount])
async def increment_view_route(
    post_id: Annotated[str, Path(...)],
    current_user: OptionalUserDep,
    service: PostServiceDep
):
    result = await service.increment_view(post_id, current_user)
    return ApiResponse(message="View recorded", data=result)


@router.get("/{post_id}/comments", response_model=ApiResponse[CommentList])
async def get_post_comments_route(
    post_id: Annotated[str, Path(...)],
    current_user: OptionalUserDep,
    service: CommentServiceDep,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
    include_replies: Annotated[bool, Query()] = True
):
    """Top-level comments of a post, newest first, with their reply threads."""
    comments = await service.list_post_comments(current_user, post_id, limit, offset, include_replies)
    return ApiResponse(message="Comments retrieved successfully", data=comments)
