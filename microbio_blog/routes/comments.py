from typing import Annotated
from fastapi import APIRouter, Body, Path, status

from microbio_blog.core.deps import CommentServiceDep, CurrentUserDep, OptionalUserDep
from microbio_blog.models.comment import Comment, CommentCreate, CommentUpdate, CommentWithReplies
from microbio_blog.models.common import ApiResponse

router = APIRouter()


@router.post("", response_model=ApiResponse[Comment], status_code=status.HTTP_201_CREATED)
async def create_comment_route(
    comment_data: Annotated[CommentCreate, Body(...)],
    current_user: CurrentUserDep,
    service: CommentServiceDep
):
    """Comment on a post, or reply to a comment when ``parent_id`` is set."""
    comment = await service.create_comment(current_user, comment_data)
    return ApiResponse(message="Comment added successfully", data=comment)


@router.get("/{comment_id}", response_model=ApiResponse[Comment])
async def get_comment_route(
    comment_id: Annotated[str, Path(...)],
    current_user: OptionalUserDep,
    service: CommentServiceDep
):
    comment = await service.get_comment(current_user, comment_id)
    return ApiResponse(message="Comment retrieved successfully", data=comment)


@router.get("/{comment_id}/replies", response_model=ApiResponse[CommentWithReplies])
async def get_comment_with_replies_route(
    comment_id: Annotated[str, Path(...)],
    current_user: OptionalUserDep,
    service: CommentServiceDep
):
    comment = await service.get_comment_with_replies(current_user, comment_id)
    return ApiResponse(message="Comment retrieved successfully", data=comment)


@router.put("/{comment_id}", response_model=ApiResponse[Comment])
async def update_comment_route(
    comment_id: Annotated[str, Path(...)],
    comment_data: Annotated[CommentUpdate, Body(...)],
    current_user: CurrentUserDep,
    service: CommentServiceDep
):
    """Users can only edit their own comments."""
    comment = await service.update_comment(current_user, comment_id, comment_data)
    return ApiResponse(message="Comment updated successfully", data=comment)


@router.delete("/{comment_id}", response_model=ApiResponse)
async def delete_comment_route(
    comment_id: Annotated[str, Path(...)],
    current_user: CurrentUserDep,
    service: CommentServiceDep
):
    """
    Delete a comment and all of its replies.
    Authors can delete their own comments, administrators any comment.
    """
    await service.delete_comment(current_user, comment_id)
    return ApiResponse(message="Comment deleted successfully")
