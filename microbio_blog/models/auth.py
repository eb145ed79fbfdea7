from datetime import datetime
from pydantic import BaseModel
from typing import Optional

from microbio_blog.models.user import UserRole


class TokenData(BaseModel):
    """Claims carried by a bearer token."""
    user_id: str
    role: Optional[UserRole] = None
    expires: datetime
