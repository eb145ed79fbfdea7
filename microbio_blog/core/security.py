from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from microbio_blog.core.config import get_settings
from microbio_blog.models.auth import TokenData

settings = get_settings()


def create_access_token(user_id: str, role: str, expires_minutes: Optional[int] = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[TokenData]:
    """Decode a bearer token; ``None`` when it is invalid or expired."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return TokenData(
        user_id=user_id,
        role=payload.get("role"),
        expires=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
