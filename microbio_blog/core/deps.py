from typing import Annotated, Dict, Optional

from fastapi import Depends, HTTPException, Query, Request, status
from fastapi.security import OAuth2PasswordBearer
from motor.motor_asyncio import AsyncIOMotorDatabase

from microbio_blog.core.cache import ResponseCache
from microbio_blog.core.config import get_settings
from microbio_blog.core.security import decode_access_token
from microbio_blog.crud.comment import CommentRepository
from microbio_blog.crud.post import PostRepository
from microbio_blog.crud.user import UserRepository
from microbio_blog.db.mongodb import get_database
from microbio_blog.models.user import CurrentUser, UserRole
from microbio_blog.services.comments import CommentService
from microbio_blog.services.events import EventBus
from microbio_blog.services.media import MediaStorage
from microbio_blog.services.posts import PostLifecycleManager

settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_PREFIX}/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_PREFIX}/auth/login", auto_error=False)


async def _load_user(token: str, db: AsyncIOMotorDatabase) -> Optional[CurrentUser]:
    token_data = decode_access_token(token)
    if token_data is None:
        return None
    user = await UserRepository(db).get_by_id(token_data.user_id)
    if user is None:
        return None
    return CurrentUser(
        id=str(user["_id"]),
        role=user.get("role", UserRole.READER),
        first_name=user.get("first_name"),
        last_name=user.get("last_name"),
        email=user.get("email"),
    )


async def get_current_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    db: Annotated[AsyncIOMotorDatabase, Depends(get_database)]
) -> CurrentUser:
    user = await _load_user(token, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_optional_user(
    token: Annotated[Optional[str], Depends(optional_oauth2_scheme)],
    db: Annotated[AsyncIOMotorDatabase, Depends(get_database)]
) -> Optional[CurrentUser]:
    """The caller if a valid token was sent, ``None`` for anonymous readers."""
    if not token:
        return None
    return await _load_user(token, db)


async def get_current_admin_user(
    current_user: Annotated[CurrentUser, Depends(get_current_user)]
) -> CurrentUser:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="The user doesn't have enough privileges"
        )
    return current_user


async def pagination_params(
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10
) -> Dict:
    return {"page": page, "limit": limit}


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def get_media_storage(request: Request) -> MediaStorage:
    return request.app.state.media_storage


def get_response_cache(request: Request) -> Optional[ResponseCache]:
    return getattr(request.app.state, "response_cache", None)


def get_post_service(
    db: Annotated[AsyncIOMotorDatabase, Depends(get_database)],
    media: Annotated[MediaStorage, Depends(get_media_storage)],
    events: Annotated[EventBus, Depends(get_event_bus)],
    cache: Annotated[Optional[ResponseCache], Depends(get_response_cache)],
) -> PostLifecycleManager:
    return PostLifecycleManager(PostRepository(db), media, events, cache)


def get_comment_service(
    db: Annotated[AsyncIOMotorDatabase, Depends(get_database)],
    events: Annotated[EventBus, Depends(get_event_bus)],
    cache: Annotated[Optional[ResponseCache], Depends(get_response_cache)],
) -> CommentService:
    return CommentService(CommentRepository(db), PostRepository(db), events, cache)


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]
OptionalUserDep = Annotated[Optional[CurrentUser], Depends(get_optional_user)]
AdminUserDep = Annotated[CurrentUser, Depends(get_current_admin_user)]
PostServiceDep = Annotated[PostLifecycleManager, Depends(get_post_service)]
CommentServiceDep = Annotated[CommentService, Depends(get_comment_service)]
