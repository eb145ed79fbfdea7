from typing import Optional, List
from pydantic import BaseModel, Field
from datetime import datetime

from microbio_blog.models.user import UserPublic


class CommentBase(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    post_id: str


class CommentCreate(CommentBase):
    parent_id: Optional[str] = None


class CommentUpdate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)


class Comment(CommentBase):
    id: str
    author: Optional[UserPublic] = None
    parent_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class CommentWithReplies(Comment):
    replies: List['CommentWithReplies'] = []


class CommentList(BaseModel):
    total: int
    limit: int
    offset: int
    items: List[CommentWithReplies]


# Self-referencing model
CommentWithReplies.model_rebuild()
