from datetime import datetime
from typing import List, Optional, Union
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict

from microbio_blog.models.category import CategoryRef
from microbio_blog.models.user import UserPublic


class PostStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class SearchType(str, Enum):
    ALL = "all"
    TITLE = "title"
    CONTENT = "content"
    AUTHOR = "author"
    TAGS = "tags"


class SuggestionType(str, Enum):
    ALL = "all"
    AUTHORS = "authors"
    TITLES = "titles"
    TAGS = "tags"


class PostCreate(BaseModel):
    title: str = Field(..., max_length=200)
    excerpt: Optional[str] = Field(None, max_length=300)
    content: str
    # Category id or slug
    category: str
    tags: Union[List[str], str, None] = None
    status: PostStatus = PostStatus.DRAFT
    # Hosted URL or an inline data:image/...;base64 payload
    image: Optional[str] = None


class PostPatch(BaseModel):
    """Mutable post fields. Anything else in the body is rejected."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=200)
    excerpt: Optional[str] = Field(None, max_length=300)
    content: Optional[str] = Field(None, min_length=1)
    category: Optional[str] = None
    tags: Union[List[str], str, None] = None
    status: Optional[PostStatus] = None
    image: Optional[str] = None


class ArchiveRequest(BaseModel):
    reason: str = Field("", max_length=200)


class UnarchiveRequest(BaseModel):
    # Checked by the lifecycle manager so a bad value maps to ValidationError
    status: str = PostStatus.DRAFT.value


class OffenseRequest(BaseModel):
    reason: str = Field("", max_length=500)


class FeatureRequest(BaseModel):
    featured: bool


class PostView(BaseModel):
    """A post with its author and category resolved."""
    id: str
    slug: str
    title: str
    excerpt: str = ""
    content: str
    featured_image: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    category: Optional[CategoryRef] = None
    author: Optional[UserPublic] = None
    status: PostStatus
    featured: bool = False
    word_count: int = 0
    read_time: int = 1
    keywords: List[str] = Field(default_factory=list)
    views: int = 0
    likes: int = 0
    comments: int = 0
    published_at: Optional[datetime] = None
    last_edited_at: Optional[datetime] = None
    archive_reason: Optional[str] = None
    moderated_by: Optional[str] = None
    moderated_at: Optional[datetime] = None
    is_offensive: bool = False
    offense_reason: Optional[str] = None
    offense_reported_by: Optional[str] = None
    offense_reported_at: Optional[datetime] = None
    offense_resolved_by: Optional[str] = None
    offense_resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PostList(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    items: List[PostView]


class SearchInfo(BaseModel):
    query: str
    search_type: SearchType
    results_count: int
    matched_authors: Optional[int] = None


class SearchResults(PostList):
    search_info: SearchInfo


class SearchSuggestion(BaseModel):
    type: str
    display: str
    value: str
    id: Optional[str] = None
    slug: Optional[str] = None
    image: Optional[str] = None
    avatar: Optional[str] = None
    institution: Optional[str] = None
    count: Optional[int] = None


class SuggestionList(BaseModel):
    query: str
    type: SuggestionType
    suggestions: List[SearchSuggestion] = Field(default_factory=list)
    counts: dict = Field(default_factory=dict)


class LikeResult(BaseModel):
    likes: int
    is_liked: bool


class ViewCount(BaseModel):
    views: int
