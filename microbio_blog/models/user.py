from enum import Enum
from typing import Optional

from pydantic import BaseModel


class UserRole(str, Enum):
    READER = "reader"
    RESEARCHER = "researcher"
    ADMIN = "admin"


AUTHOR_ROLES = (UserRole.RESEARCHER, UserRole.ADMIN)


class CurrentUser(BaseModel):
    """Identity resolved by the auth layer; services trust it as-is."""
    id: str
    role: UserRole
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class UserPublic(BaseModel):
    id: str
    first_name: str = "Unknown"
    last_name: str = "Author"
    avatar: Optional[str] = None
    institution: Optional[str] = None
    bio: Optional[str] = None
