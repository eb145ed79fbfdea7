from typing import Optional

from pydantic import BaseModel


class CategoryRef(BaseModel):
    id: str
    name: str = "Uncategorized"
    slug: str = "uncategorized"


class Category(CategoryRef):
    description: Optional[str] = None
    image: Optional[str] = None
    is_active: bool = True
